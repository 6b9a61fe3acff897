"""
plainsub.transcribe.adapter - Per-segment recognition with file-absolute times.

Cuts each speech segment out of the extracted WAV, resamples it for the
recognizer, and shifts the recognizer's clip-relative times back onto the
timeline of the whole file. Sequence numbers run across the whole file.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from datetime import timedelta
from pathlib import Path

import numpy as np
import soundfile as sf

from plainsub.cancellation import CancellationToken, check_cancelled
from plainsub.models import SpeechSegment, TranscriptionResult
from plainsub.transcribe.engine import Recognizer

logger = logging.getLogger(__name__)

SegmentReader = Callable[[Path, SpeechSegment, int], np.ndarray]


def resample(audio: np.ndarray, orig_sr: int, target_sr: int) -> np.ndarray:
    """Resample mono audio; a no-op when the rates already match."""
    if orig_sr == target_sr or len(audio) == 0:
        return audio
    import librosa

    return librosa.resample(audio, orig_sr=orig_sr, target_sr=target_sr).astype(np.float32)


def read_segment_audio(wav_path: Path, segment: SpeechSegment, target_rate: int) -> np.ndarray:
    """Read exactly the frames of `segment` from a WAV file.

    Offsets are mapped onto the file's own rate, rounded down to whole
    frames, and clamped to the file. At least one frame is read when the
    segment starts inside the file.

    Returns:
        Mono float32 samples at `target_rate`
    """
    with sf.SoundFile(str(wav_path)) as f:
        rate = f.samplerate
        if rate == segment.sample_rate:
            start, end = segment.start_offset, segment.end_offset
        else:
            start = segment.start_offset * rate // segment.sample_rate
            end = segment.end_offset * rate // segment.sample_rate

        start = min(start, f.frames)
        end = min(end, f.frames)
        count = max(end - start, 1) if start < f.frames else 0

        f.seek(start)
        data = f.read(count, dtype="float32", always_2d=True)

    audio = data.mean(axis=1) if data.size else np.zeros(0, dtype=np.float32)
    return resample(audio, rate, target_rate)


def read_whole_audio(wav_path: Path, target_rate: int) -> np.ndarray:
    """Read a WAV file as mono float32 at `target_rate`."""
    data, rate = sf.read(str(wav_path), dtype="float32", always_2d=True)
    return resample(data.mean(axis=1), rate, target_rate)


class SegmentAdapter:
    """Feeds speech segments through a recognizer."""

    def __init__(self, recognizer: Recognizer, reader: SegmentReader = read_segment_audio) -> None:
        self.recognizer = recognizer
        self.reader = reader

    def transcribe_segments(
        self,
        wav_path: Path,
        segments: Sequence[SpeechSegment],
        cancel: CancellationToken | None = None,
        progress: Callable[[float], None] | None = None,
    ) -> Iterator[TranscriptionResult]:
        """Transcribe each segment and yield cues in file order.

        Segments the recognizer returns nothing for are skipped without
        consuming a sequence number.

        Raises:
            PipelineCancelled: If `cancel` is triggered between segments or spans
        """
        sequence = 0
        total = len(segments)

        for index, segment in enumerate(segments, start=1):
            check_cancelled(cancel)

            audio = self.reader(wav_path, segment, self.recognizer.sample_rate)
            if len(audio):
                offset = timedelta(seconds=segment.start_seconds)
                spans = self.recognizer.recognize(audio)
                try:
                    for start, end, text in spans:
                        check_cancelled(cancel)
                        sequence += 1
                        yield TranscriptionResult(
                            sequence=sequence,
                            start=offset + timedelta(seconds=start),
                            end=offset + timedelta(seconds=end),
                            text=text,
                        )
                finally:
                    _close(spans)

            if progress and total:
                progress(index / total)

        logger.debug("Recognized %d cues from %d segments", sequence, total)

    def transcribe_whole(
        self,
        wav_path: Path,
        cancel: CancellationToken | None = None,
        progress: Callable[[float], None] | None = None,
        reader: Callable[[Path, int], np.ndarray] = read_whole_audio,
    ) -> Iterator[TranscriptionResult]:
        """Transcribe a whole file in one recognizer pass."""
        audio = reader(wav_path, self.recognizer.sample_rate)
        duration = len(audio) / self.recognizer.sample_rate
        sequence = 0

        spans = self.recognizer.recognize(audio)
        try:
            for start, end, text in spans:
                check_cancelled(cancel)
                sequence += 1
                yield TranscriptionResult(
                    sequence=sequence,
                    start=timedelta(seconds=start),
                    end=timedelta(seconds=end),
                    text=text,
                )
                if progress and duration > 0:
                    progress(min(end / duration, 1.0))
        finally:
            _close(spans)


def _close(iterator: object) -> None:
    close = getattr(iterator, "close", None)
    if close is not None:
        close()
