"""
plainsub.subtitles.srt - SubRip subtitle serialization.

Each cue is a sequence number, an `HH:MM:SS,mmm --> HH:MM:SS,mmm` timing
line, its text wrapped at 42 characters, and a blank separator line.
"""

from __future__ import annotations

import logging
import textwrap
from collections.abc import Iterable
from datetime import timedelta
from pathlib import Path

from plainsub.io import write_text
from plainsub.models import TranscriptionResult

logger = logging.getLogger(__name__)

MAX_LINE_LENGTH = 42

_MS = timedelta(milliseconds=1)


def format_timestamp(value: timedelta) -> str:
    """Format a duration as an SRT timestamp, truncated to the millisecond.

    Negative durations clamp to zero; hours widen past two digits.
    """
    total_ms = max(0, value // _MS)
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    seconds, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{millis:03d}"


def wrap_text(text: str, width: int = MAX_LINE_LENGTH) -> str:
    """Greedy word wrap that never splits a word."""
    if not text or len(text) <= width:
        return text
    return "\n".join(
        textwrap.wrap(text, width=width, break_long_words=False, break_on_hyphens=False)
    )


def format_record(result: TranscriptionResult) -> str:
    """Format one cue, including its trailing blank line."""
    return (
        f"{result.sequence}\n"
        f"{format_timestamp(result.start)} --> {format_timestamp(result.end)}\n"
        f"{wrap_text(result.text)}\n\n"
    )


def render_srt(results: Iterable[TranscriptionResult]) -> str:
    """Render cues as the full contents of an .srt file."""
    return "".join(format_record(r) for r in results)


def write_srt(path: Path, results: Iterable[TranscriptionResult]) -> int:
    """Write cues to an .srt file atomically, UTF-8 encoded.

    Returns:
        Number of cues written
    """
    results = list(results)
    write_text(path, render_srt(results))
    logger.info("SRT written: %d subtitles -> %s", len(results), path)
    return len(results)


def output_path_for(source: Path, output_dir: Path | None = None) -> Path:
    """Subtitle path for a source file: `<stem>.srt` beside it or in `output_dir`."""
    directory = output_dir if output_dir is not None else source.parent
    return directory / f"{source.stem}.srt"
