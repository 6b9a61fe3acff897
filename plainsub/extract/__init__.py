"""
plainsub.extract - Audio extraction from media files.

Pipeline Stage 1: decode the source with FFmpeg into a 16kHz mono 16-bit
PCM WAV, optionally through a speech enhancement filter chain.
"""

from __future__ import annotations
