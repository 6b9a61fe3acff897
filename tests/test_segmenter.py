"""Tests for plainsub.vad.segmenter module."""

from __future__ import annotations

import numpy as np
import pytest

from plainsub.cancellation import CancellationToken
from plainsub.exceptions import PipelineCancelled, SegmentationError
from plainsub.vad.segmenter import SpeechSegmenter, apply_padding, merge_ranges

WINDOW = 512


def offsets(segments) -> list[tuple[int, int]]:
    return [(s.start_offset, s.end_offset) for s in segments]


class TestSegmentsFromProbabilities:
    def test_two_utterances_with_default_silence(self, scripted_scorer) -> None:
        probs = [0.9] * 20 + [0.1] * 20 + [0.9] * 20
        segmenter = SpeechSegmenter(scripted_scorer(probs))

        segments = segmenter.segments_from_probabilities(probs, len(probs) * WINDOW)

        assert offsets(segments) == [(0, 10720), (20000, 30720)]
        assert segments[0].start_seconds == 0.0
        assert segments[0].end_seconds == 0.67
        assert segments[1].start_seconds == 1.25
        assert segments[1].end_seconds == 1.92

    def test_long_min_silence_keeps_one_utterance(self, scripted_scorer) -> None:
        probs = [0.9] * 20 + [0.1] * 20 + [0.9] * 20
        segmenter = SpeechSegmenter(scripted_scorer(probs), min_silence_duration_ms=1000)

        segments = segmenter.segments_from_probabilities(probs, len(probs) * WINDOW)

        assert offsets(segments) == [(0, 30720)]

    def test_silence_only(self, scripted_scorer) -> None:
        probs = [0.05] * 50
        segmenter = SpeechSegmenter(scripted_scorer(probs))
        assert segmenter.segments_from_probabilities(probs, 50 * WINDOW) == []

    def test_empty_stream(self, scripted_scorer) -> None:
        segmenter = SpeechSegmenter(scripted_scorer([0.0]))
        assert segmenter.segments_from_probabilities([], 0) == []

    def test_short_blip_discarded(self, scripted_scorer) -> None:
        probs = [0.9] * 3 + [0.1] * 30
        segmenter = SpeechSegmenter(scripted_scorer(probs))
        assert segmenter.segments_from_probabilities(probs, len(probs) * WINDOW) == []

    def test_values_between_thresholds_keep_speech(self, scripted_scorer) -> None:
        probs = [0.9] * 10 + [0.4] * 30 + [0.1] * 10
        segmenter = SpeechSegmenter(scripted_scorer(probs), speech_pad_ms=0)

        segments = segmenter.segments_from_probabilities(probs, len(probs) * WINDOW)

        assert offsets(segments) == [(0, 40 * WINDOW)]

    def test_speech_until_end_is_flushed(self, scripted_scorer) -> None:
        probs = [0.1] * 10 + [0.9] * 20
        segmenter = SpeechSegmenter(scripted_scorer(probs), speech_pad_ms=0)

        segments = segmenter.segments_from_probabilities(probs, len(probs) * WINDOW)

        assert offsets(segments) == [(10 * WINDOW, 30 * WINDOW)]

    def test_overlong_speech_is_split(self, scripted_scorer) -> None:
        probs = [0.9] * 60
        segmenter = SpeechSegmenter(
            scripted_scorer(probs), max_speech_duration_s=1.0, speech_pad_ms=0
        )

        segments = segmenter.segments_from_probabilities(probs, len(probs) * WINDOW)

        assert offsets(segments) == [(0, 15872), (16384, 30720)]
        for segment in segments:
            assert segment.duration_samples <= 16000 + WINDOW

    def test_overlong_speech_splits_at_last_pause(self, scripted_scorer) -> None:
        probs = [0.9] * 20 + [0.1] * 5 + [0.9] * 40
        segmenter = SpeechSegmenter(
            scripted_scorer(probs),
            max_speech_duration_s=1.0,
            min_silence_duration_ms=500,
            speech_pad_ms=0,
        )

        segments = segmenter.segments_from_probabilities(probs, len(probs) * WINDOW)

        assert segments[0].start_offset == 0
        assert segments[0].end_offset == 20 * WINDOW
        assert segments[1].start_offset == 25 * WINDOW

    def test_segments_are_sorted_and_disjoint(self, scripted_scorer) -> None:
        probs = ([0.9] * 12 + [0.1] * 8) * 5
        segmenter = SpeechSegmenter(scripted_scorer(probs))

        segments = segmenter.segments_from_probabilities(probs, len(probs) * WINDOW)

        assert len(segments) == 5
        for a, b in zip(segments, segments[1:]):
            assert a.start_offset < a.end_offset < b.start_offset

    def test_deterministic(self, scripted_scorer) -> None:
        probs = [0.9] * 20 + [0.1] * 20 + [0.9] * 20
        segmenter = SpeechSegmenter(scripted_scorer(probs))

        first = segmenter.segments_from_probabilities(probs, len(probs) * WINDOW)
        second = segmenter.segments_from_probabilities(probs, len(probs) * WINDOW)

        assert first == second

    @pytest.mark.parametrize("seed", range(20))
    def test_random_streams_sorted_disjoint_in_bounds(self, scripted_scorer, seed: int) -> None:
        rng = np.random.default_rng(seed)
        n = int(rng.integers(1, 400))
        # Runs of speech and silence rather than independent noise
        probs = np.repeat(rng.random(n // 4 + 1), 4)[:n].tolist()
        audio_length = n * WINDOW - int(rng.integers(0, WINDOW))
        segmenter = SpeechSegmenter(
            scripted_scorer(probs),
            threshold=float(rng.uniform(0.3, 0.7)),
            min_silence_duration_ms=int(rng.integers(0, 300)),
            speech_pad_ms=int(rng.integers(0, 100)),
            max_speech_duration_s=float(rng.choice([1.0, 3.0, float("inf")])),
        )

        segments = segmenter.segments_from_probabilities(probs, audio_length)

        for segment in segments:
            assert 0 <= segment.start_offset < segment.end_offset <= audio_length
        for a, b in zip(segments, segments[1:]):
            assert a.end_offset < b.start_offset


class TestSegment:
    def test_segment_audio(self, scripted_scorer) -> None:
        probs = [0.9] * 20 + [0.1] * 20 + [0.9] * 20
        segmenter = SpeechSegmenter(scripted_scorer(probs))

        segments = segmenter.segment_audio(np.zeros(60 * WINDOW, dtype=np.float32), 16000)

        assert offsets(segments) == [(0, 10720), (20000, 30720)]

    def test_short_final_window_is_padded(self, scripted_scorer) -> None:
        scorer = scripted_scorer([0.1])
        segmenter = SpeechSegmenter(scorer)

        segmenter.segment_audio(np.zeros(WINDOW * 2 + 100, dtype=np.float32), 16000)

        assert [length for length, _, _ in scorer.calls] == [WINDOW, WINDOW, WINDOW]

    def test_final_end_clamped_to_audio_length(self, scripted_scorer) -> None:
        scorer = scripted_scorer([0.9])
        segmenter = SpeechSegmenter(scorer)

        segments = segmenter.segment_audio(np.zeros(10_000, dtype=np.float32), 16000)

        assert offsets(segments) == [(0, 10_000)]

    def test_state_reset_between_runs(self, scripted_scorer) -> None:
        scorer = scripted_scorer([0.1])
        segmenter = SpeechSegmenter(scorer)
        audio = np.zeros(4 * WINDOW, dtype=np.float32)

        segmenter.segment_audio(audio, 16000)
        assert segmenter.state.last_sample_rate == 16000

        segmenter.segment_audio(audio, 16000)
        first_state_of_second_run = scorer.calls[4][2]
        assert first_state_of_second_run.last_sample_rate == 0
        assert not first_state_of_second_run.rnn.any()

    def test_multiple_of_16k_is_decimated(self, scripted_scorer) -> None:
        scorer = scripted_scorer([0.9])
        segmenter = SpeechSegmenter(scorer)

        segments = segmenter.segment_audio(np.zeros(48000, dtype=np.float32), 48000)

        assert {length for length, _, _ in scorer.calls} == {WINDOW * 3}
        assert offsets(segments) == [(0, 16000)]
        assert segments[0].sample_rate == 16000
        assert segments[0].end_seconds == 1.0

    def test_segment_file(self, scripted_scorer, write_wav) -> None:
        path = write_wav(sample_rate=16000, seconds=1.0)
        segmenter = SpeechSegmenter(scripted_scorer([0.9]))

        segments = segmenter.segment_file(path)

        assert offsets(segments) == [(0, 16000)]

    def test_cancel_between_windows(self, scripted_scorer) -> None:
        token = CancellationToken()
        token.cancel()
        segmenter = SpeechSegmenter(scripted_scorer([0.9]))

        with pytest.raises(PipelineCancelled):
            segmenter.segment_audio(np.zeros(4 * WINDOW, dtype=np.float32), 16000, cancel=token)

    def test_progress_reported(self, scripted_scorer) -> None:
        seen: list[float] = []
        segmenter = SpeechSegmenter(scripted_scorer([0.1]))

        segmenter.segment_audio(np.zeros(4 * WINDOW, dtype=np.float32), 16000, progress=seen.append)

        assert seen == [0.25, 0.5, 0.75, 1.0]


class TestSampleRates:
    def test_unsupported_segmenter_rate(self, scripted_scorer) -> None:
        with pytest.raises(SegmentationError):
            SpeechSegmenter(scripted_scorer([0.5]), sample_rate=44100)

    def test_unsupported_input_rate(self, scripted_scorer) -> None:
        segmenter = SpeechSegmenter(scripted_scorer([0.5]))
        with pytest.raises(SegmentationError):
            segmenter.segment_audio(np.zeros(44100, dtype=np.float32), 44100)

    def test_8k_segmenter_uses_256_windows(self, scripted_scorer) -> None:
        scorer = scripted_scorer([0.1])
        segmenter = SpeechSegmenter(scorer, sample_rate=8000)

        segmenter.segment_audio(np.zeros(1024, dtype=np.float32), 8000)

        assert segmenter.window_size == 256
        assert len(scorer.calls) == 4

    def test_8k_segmenter_rejects_16k_input(self, scripted_scorer) -> None:
        segmenter = SpeechSegmenter(scripted_scorer([0.1]), sample_rate=8000)
        with pytest.raises(SegmentationError):
            segmenter.segment_audio(np.zeros(1024, dtype=np.float32), 16000)


class TestApplyPadding:
    def test_pads_both_sides(self) -> None:
        assert apply_padding([(1000, 2000)], 480, 5000) == [(520, 2480)]

    def test_short_gap_split_evenly(self) -> None:
        padded = apply_padding([(1000, 2000), (2100, 3000)], 480, 5000)
        assert padded == [(520, 2050), (2050, 3480)]

    def test_clamped_to_audio(self) -> None:
        assert apply_padding([(100, 4900)], 480, 5000) == [(0, 5000)]

    def test_empty(self) -> None:
        assert apply_padding([], 480, 5000) == []


class TestMergeRanges:
    def test_merges_touching_ranges(self) -> None:
        assert merge_ranges([(5, 10), (0, 3), (3, 4)]) == [(0, 4), (5, 10)]

    def test_merges_overlapping_ranges(self) -> None:
        assert merge_ranges([(0, 10), (5, 20), (30, 40)]) == [(0, 20), (30, 40)]

    def test_empty(self) -> None:
        assert merge_ranges([]) == []
