"""
plainsub.models - Records passed between pipeline stages.

SpeechSegment is produced by the segmenter and never mutated afterwards.
TranscriptionResult is produced by the recognition adapter; the refinement
stage may replace its text but never its sequence number or times.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path

RecognizedSpan = tuple[float, float, str]


def offset_to_seconds(offset: int, sample_rate: int) -> float:
    """Convert a sample offset to seconds, floored to the millisecond."""
    return (offset * 1000 // sample_rate) / 1000


@dataclass(frozen=True)
class SpeechSegment:
    """A contiguous range of speech, in samples and in seconds."""

    start_offset: int
    end_offset: int
    start_seconds: float
    end_seconds: float
    sample_rate: int = 16000

    def __post_init__(self) -> None:
        if self.start_offset >= self.end_offset:
            raise ValueError(
                f"Segment start ({self.start_offset}) must precede end ({self.end_offset})"
            )

    @classmethod
    def from_offsets(cls, start: int, end: int, sample_rate: int) -> SpeechSegment:
        return cls(
            start_offset=start,
            end_offset=end,
            start_seconds=offset_to_seconds(start, sample_rate),
            end_seconds=offset_to_seconds(end, sample_rate),
            sample_rate=sample_rate,
        )

    @property
    def duration_samples(self) -> int:
        return self.end_offset - self.start_offset

    @property
    def duration(self) -> float:
        return self.end_seconds - self.start_seconds


@dataclass
class TranscriptionResult:
    """One subtitle cue, timed from the start of the source file."""

    sequence: int
    start: timedelta
    end: timedelta
    text: str


class FileStatus(str, Enum):
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class FileOutcome:
    """Terminal status of one file in a batch."""

    source: Path
    output: Path | None
    status: FileStatus
    result_count: int = 0
    error: str | None = None


@dataclass
class BatchReport:
    """Per-file outcomes plus the overall status of the batch."""

    outcomes: list[FileOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status is FileStatus.DONE)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status is FileStatus.FAILED)

    @property
    def cancelled(self) -> int:
        return sum(1 for o in self.outcomes if o.status is FileStatus.CANCELLED)

    @property
    def status(self) -> FileStatus:
        if self.cancelled:
            return FileStatus.CANCELLED
        if self.failed:
            return FileStatus.FAILED
        return FileStatus.DONE
