"""
plainsub.extract.audio - FFmpeg audio extraction.

Decodes any media file into a 16kHz mono 16-bit PCM WAV for VAD and
Whisper, reporting progress from FFmpeg's own stderr time markers.
"""

from __future__ import annotations

import logging
import re
import subprocess
import tempfile
import uuid
from collections import deque
from collections.abc import Callable
from pathlib import Path
from typing import Any

from plainsub.cancellation import CancellationToken
from plainsub.exceptions import ExtractionError, PipelineCancelled

logger = logging.getLogger(__name__)

# highpass/lowpass keep the voice band, afftdn removes stationary noise,
# loudnorm brings everything to EBU R128 loudness.
ENHANCE_FILTER = "highpass=f=200,lowpass=f=3500,afftdn=nr=0.21:nf=-25,loudnorm=I=-16:tp=-1.5"

DURATION_RE = re.compile(r"Duration:\s*(\d{2}):(\d{2}):(\d{2})\.(\d{2})")
TIME_RE = re.compile(r"time=(\d{2}):(\d{2}):(\d{2})\.(\d{2})")

STDERR_TAIL_LINES = 20


def build_ffmpeg_command(
    source_path: Path,
    output_path: Path,
    sample_rate: int = 16000,
    enhance: bool = True,
) -> list[str]:
    """Build the FFmpeg command line for mono PCM extraction."""
    cmd = [
        "ffmpeg",
        "-hide_banner",
        "-y",
        "-i",
        str(source_path),
        "-vn",
    ]
    if enhance:
        cmd += ["-af", ENHANCE_FILTER]
    cmd += [
        "-ar",
        str(sample_rate),
        "-ac",
        "1",
        "-c:a",
        "pcm_s16le",
        str(output_path),
    ]
    return cmd


def parse_ffmpeg_time(line: str, pattern: re.Pattern[str]) -> float | None:
    """Parse an HH:MM:SS.cc marker from an FFmpeg stderr line into seconds."""
    match = pattern.search(line)
    if not match:
        return None
    hours, minutes, seconds, centis = (int(g) for g in match.groups())
    return hours * 3600 + minutes * 60 + seconds + centis / 100.0


class FfmpegProgress:
    """Turns FFmpeg stderr lines into a completion fraction."""

    def __init__(self, callback: Callable[[float], None] | None = None) -> None:
        self.callback = callback
        self.total_seconds = 0.0
        self.fraction = 0.0

    def feed(self, line: str) -> float | None:
        """Consume one stderr line; return the new fraction if it moved."""
        if not self.total_seconds:
            duration = parse_ffmpeg_time(line, DURATION_RE)
            if duration:
                self.total_seconds = duration
            return None

        current = parse_ffmpeg_time(line, TIME_RE)
        if current is None:
            return None

        self.fraction = min(current / self.total_seconds, 1.0)
        if self.callback:
            self.callback(self.fraction)
        return self.fraction


def temp_audio_path(prefix: str = "plainsub_") -> Path:
    """Unique path for a temporary extracted WAV in the system temp directory."""
    return Path(tempfile.gettempdir()) / f"{prefix}{uuid.uuid4().hex}.wav"


def extract_audio(
    source_path: Path,
    output_path: Path,
    sample_rate: int = 16000,
    enhance: bool = True,
    progress: Callable[[float], None] | None = None,
    cancel: CancellationToken | None = None,
) -> dict[str, Any]:
    """Extract mono PCM audio from a media file using FFmpeg.

    Args:
        source_path: Path to source media file
        output_path: Output path for the WAV
        sample_rate: Target sample rate
        enhance: Apply the speech enhancement filter chain
        progress: Optional fraction-complete callback
        cancel: Optional cancellation token, checked per stderr line

    Returns:
        Dict with extraction results

    Raises:
        ExtractionError: If the source is missing or FFmpeg fails
        PipelineCancelled: If cancelled; the FFmpeg process is stopped
    """
    if not source_path.exists():
        raise ExtractionError(f"Source file not found: {source_path}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = build_ffmpeg_command(source_path, output_path, sample_rate, enhance)
    logger.debug("Running: %s", " ".join(cmd))

    tracker = FfmpegProgress(progress)
    tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)

    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as e:
        raise ExtractionError(f"Audio extraction failed: {e}") from e

    try:
        for line in proc.stderr:
            if cancel is not None and cancel.cancelled:
                _stop(proc)
                raise PipelineCancelled(f"Extraction of {source_path.name} cancelled")
            line = line.rstrip()
            if line:
                tail.append(line)
                tracker.feed(line)
        returncode = proc.wait()
    except BaseException:
        _stop(proc)
        output_path.unlink(missing_ok=True)
        raise
    finally:
        if proc.stderr is not None:
            proc.stderr.close()

    if returncode != 0:
        output_path.unlink(missing_ok=True)
        raise ExtractionError(
            f"FFmpeg failed for {source_path.name} (exit {returncode}): " + "\n".join(tail)
        )

    if progress:
        progress(1.0)

    return {
        "source": str(source_path),
        "audio": str(output_path),
        "sample_rate": sample_rate,
        "duration_seconds": tracker.total_seconds,
        "size_bytes": output_path.stat().st_size if output_path.exists() else 0,
    }


def _stop(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
