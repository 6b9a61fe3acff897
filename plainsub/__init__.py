"""
plainsub - Offline subtitle generation toolkit.

Turns the speech in media files into SubRip subtitles through a staged
pipeline: audio extraction → speech activity detection → Whisper
recognition → optional LLM refinement → subtitle output.
"""

__version__ = "0.1.0"
