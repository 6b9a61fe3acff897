"""
plainsub.vad.segmenter - Speech segment detection from VAD probabilities.

Turns a stream of per-window speech probabilities into the minimal set of
speech ranges. Entering speech uses `threshold`, leaving it uses
`threshold - 0.15`; short blips and short pauses are absorbed by the
minimum speech and minimum silence durations, and overlong speech is split
at the best pause seen so far.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Sequence
from pathlib import Path

import numpy as np

from plainsub.cancellation import CancellationToken, check_cancelled
from plainsub.exceptions import SegmentationError
from plainsub.models import SpeechSegment
from plainsub.vad.model import (
    SUPPORTED_SAMPLE_RATES,
    ProbabilityScorer,
    SegmenterState,
    decimation_step,
    window_size_for,
)

logger = logging.getLogger(__name__)

THRESHOLD_GAP = 0.15

Range = tuple[int, int]


class SpeechSegmenter:
    """Stateful speech activity segmenter.

    Owns the recurrent classifier state for the stream it is currently
    reading. `segment()` resets it before every run; call `reset()` yourself
    when feeding windows through `probabilities()` from a new stream.
    """

    def __init__(
        self,
        scorer: ProbabilityScorer,
        threshold: float = 0.5,
        sample_rate: int = 16000,
        min_speech_duration_ms: int = 250,
        max_speech_duration_s: float = 30.0,
        min_silence_duration_ms: int = 100,
        speech_pad_ms: int = 30,
    ) -> None:
        if sample_rate not in SUPPORTED_SAMPLE_RATES:
            raise SegmentationError(
                "Sampling rate not supported, only available for [8000, 16000]"
            )

        self.scorer = scorer
        self.sample_rate = sample_rate
        self.threshold = threshold
        self.neg_threshold = threshold - THRESHOLD_GAP
        self.window_size = window_size_for(sample_rate)
        self.min_speech_samples = sample_rate * min_speech_duration_ms / 1000
        self.speech_pad_samples = sample_rate * speech_pad_ms / 1000
        self.max_speech_samples = (
            sample_rate * max_speech_duration_s
            - self.window_size
            - 2 * self.speech_pad_samples
        )
        self.min_silence_samples = sample_rate * min_silence_duration_ms / 1000
        self.min_silence_samples_at_max_speech = sample_rate * 98 / 1000
        self.state = SegmenterState.initial()

    @classmethod
    def from_settings(cls, scorer: ProbabilityScorer, settings) -> SpeechSegmenter:
        """Build a segmenter from a VadSettings instance."""
        return cls(
            scorer,
            threshold=settings.threshold,
            min_speech_duration_ms=settings.min_speech_duration_ms,
            max_speech_duration_s=settings.max_speech_duration_s,
            min_silence_duration_ms=settings.min_silence_duration_ms,
            speech_pad_ms=settings.speech_pad_ms,
        )

    def reset(self) -> None:
        """Forget everything learned from the previous stream."""
        self.state = SegmenterState.initial()

    def _input_step(self, sample_rate: int) -> int:
        if sample_rate == self.sample_rate:
            return 1
        step = decimation_step(sample_rate)
        if step == 1 or self.sample_rate != 16000:
            raise SegmentationError(
                f"Audio at {sample_rate} Hz cannot be segmented at {self.sample_rate} Hz"
            )
        return step

    def probabilities(
        self,
        frames: Iterable[np.ndarray],
        sample_rate: int,
        cancel: CancellationToken | None = None,
        progress: Callable[[float], None] | None = None,
        total_frames: int | None = None,
    ) -> list[float]:
        """Score every window of a stream, threading classifier state through.

        A short final window is zero-padded to full length.

        Raises:
            PipelineCancelled: If `cancel` is triggered between windows
            SegmentationError: If the sample rate is unsupported
        """
        frame_length = self.window_size * self._input_step(sample_rate)
        probs: list[float] = []

        for frame in frames:
            check_cancelled(cancel)

            frame = np.asarray(frame, dtype=np.float32)
            if len(frame) < frame_length:
                frame = np.pad(frame, (0, frame_length - len(frame)))

            prob, self.state = self.scorer.score(frame, sample_rate, self.state)
            probs.append(prob)

            if progress and total_frames:
                progress(min(len(probs) / total_frames, 1.0))

        return probs

    def segment(
        self,
        frames: Iterable[np.ndarray],
        sample_rate: int,
        audio_length: int | None = None,
        cancel: CancellationToken | None = None,
        progress: Callable[[float], None] | None = None,
        total_frames: int | None = None,
    ) -> list[SpeechSegment]:
        """Segment a stream of fixed-size windows into speech ranges.

        Args:
            frames: Consecutive windows of mono float32 PCM
            sample_rate: Rate of the windows; multiples of 16000 are decimated
            audio_length: Stream length in samples at `sample_rate`
                (defaults to the number of samples read)
            cancel: Optional cancellation token, checked once per window
            progress: Optional fraction-complete callback
            total_frames: Number of windows, used for progress reporting

        Returns:
            Sorted, non-overlapping speech segments
        """
        step = self._input_step(sample_rate)
        self.reset()

        counted = _CountingFrames(frames)
        probs = self.probabilities(
            counted, sample_rate, cancel=cancel, progress=progress, total_frames=total_frames
        )

        samples = audio_length if audio_length is not None else counted.samples
        segments = self.segments_from_probabilities(probs, samples // step)

        logger.debug(
            "Detected %d speech segments in %d windows", len(segments), len(probs)
        )
        return segments

    def segment_audio(
        self,
        audio: np.ndarray,
        sample_rate: int,
        cancel: CancellationToken | None = None,
        progress: Callable[[float], None] | None = None,
    ) -> list[SpeechSegment]:
        """Segment an in-memory mono signal."""
        frame_length = self.window_size * self._input_step(sample_rate)
        total = -(-len(audio) // frame_length)
        frames = (audio[i : i + frame_length] for i in range(0, len(audio), frame_length))
        return self.segment(
            frames,
            sample_rate,
            audio_length=len(audio),
            cancel=cancel,
            progress=progress,
            total_frames=total,
        )

    def segment_file(
        self,
        wav_path: Path,
        cancel: CancellationToken | None = None,
        progress: Callable[[float], None] | None = None,
    ) -> list[SpeechSegment]:
        """Segment a PCM WAV file, reading it window by window."""
        import soundfile as sf

        with sf.SoundFile(str(wav_path)) as f:
            frame_length = self.window_size * self._input_step(f.samplerate)
            total = -(-f.frames // frame_length)
            blocks = (
                block.mean(axis=1)
                for block in f.blocks(blocksize=frame_length, dtype="float32", always_2d=True)
            )
            return self.segment(
                blocks,
                f.samplerate,
                audio_length=f.frames,
                cancel=cancel,
                progress=progress,
                total_frames=total,
            )

    def segments_from_probabilities(
        self, probs: Sequence[float], audio_length: int
    ) -> list[SpeechSegment]:
        """Run the speech/silence state machine over a probability stream.

        Pure function of its inputs and the segmenter's configuration.
        """
        ranges = self._detect(probs, audio_length)
        padded = apply_padding(ranges, self.speech_pad_samples, audio_length)
        merged = merge_ranges(padded)
        return [SpeechSegment.from_offsets(s, e, self.sample_rate) for s, e in merged if s < e]

    def _detect(self, probs: Sequence[float], audio_length: int) -> list[Range]:
        window = self.window_size
        ranges: list[Range] = []

        triggered = False
        start: int | None = None
        temp_end = 0
        prev_end = 0
        next_start = 0

        for i, prob in enumerate(probs):
            position = window * i

            if prob >= self.threshold and temp_end:
                temp_end = 0
                if next_start < prev_end:
                    next_start = position

            if prob >= self.threshold and not triggered:
                triggered = True
                start = position
                continue

            if triggered and position - start > self.max_speech_samples:
                if prev_end:
                    ranges.append((start, prev_end))
                    if next_start < prev_end:
                        triggered = False
                        start = None
                    else:
                        start = next_start
                    prev_end = next_start = temp_end = 0
                else:
                    ranges.append((start, position))
                    triggered = False
                    start = None
                    prev_end = next_start = temp_end = 0
                    continue

            if prob < self.neg_threshold and triggered:
                if not temp_end:
                    temp_end = position

                if position - temp_end > self.min_silence_samples_at_max_speech:
                    prev_end = temp_end

                if position - temp_end < self.min_silence_samples:
                    continue

                if temp_end - start > self.min_speech_samples:
                    ranges.append((start, temp_end))

                triggered = False
                start = None
                prev_end = next_start = temp_end = 0

        if start is not None and audio_length - start > self.min_speech_samples:
            ranges.append((start, len(probs) * window))

        return ranges


def apply_padding(ranges: Sequence[Range], pad: float, audio_length: int) -> list[Range]:
    """Widen speech ranges by `pad` samples without making neighbours overlap.

    When the gap between two ranges is shorter than twice the pad, it is
    split evenly between them instead. Bounds are clamped to the audio.
    """
    padded = [list(r) for r in ranges]

    for i, item in enumerate(padded):
        if i == 0:
            item[0] = int(max(0, item[0] - pad))

        if i != len(padded) - 1:
            next_item = padded[i + 1]
            silence = next_item[0] - item[1]
            if silence < 2 * pad:
                item[1] += silence // 2
                next_item[0] = max(0, next_item[0] - silence // 2)
            else:
                item[1] = int(min(audio_length, item[1] + pad))
                next_item[0] = int(max(0, next_item[0] - pad))
        else:
            item[1] = int(min(audio_length, item[1] + pad))

    return [(s, e) for s, e in padded]


def merge_ranges(ranges: Sequence[Range]) -> list[Range]:
    """Sort ranges by start and coalesce any that overlap or touch."""
    if not ranges:
        return []

    ordered = sorted(ranges, key=lambda r: r[0])
    merged: list[Range] = []
    left, right = ordered[0]

    for start, end in ordered[1:]:
        if start > right:
            merged.append((left, right))
            left, right = start, end
        else:
            right = max(right, end)

    merged.append((left, right))
    return merged


class _CountingFrames:
    """Iterate frames while counting the samples that went by."""

    def __init__(self, frames: Iterable[np.ndarray]) -> None:
        self._frames = frames
        self.samples = 0

    def __iter__(self) -> Iterator[np.ndarray]:
        for frame in self._frames:
            self.samples += len(frame)
            yield frame
