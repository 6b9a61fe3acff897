"""
plainsub.transcribe - Whisper transcription engine.

Pipeline Stage 3: transcribe either each detected speech segment or the
whole file with faster-whisper, producing subtitle cues timed from the start
of the source file.
"""

from __future__ import annotations
