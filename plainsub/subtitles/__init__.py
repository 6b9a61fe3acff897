"""
plainsub.subtitles - Subtitle file output.

Pipeline Stage 5: serialize timed cues as SubRip (.srt).
"""

from __future__ import annotations
