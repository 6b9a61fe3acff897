"""
Test configuration and shared fixtures.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import timedelta
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf
import yaml

from plainsub.models import TranscriptionResult
from plainsub.vad.model import SegmenterState


class ScriptedScorer:
    """Returns a fixed sequence of probabilities, one per window."""

    def __init__(self, probs: list[float]) -> None:
        self.probs = list(probs)
        self.calls: list[tuple[int, int, SegmenterState]] = []

    def score(
        self, frame: np.ndarray, sample_rate: int, state: SegmenterState
    ) -> tuple[float, SegmenterState]:
        index = len(self.calls) % len(self.probs)
        self.calls.append((len(frame), sample_rate, state))
        next_state = SegmenterState(
            rnn=state.rnn, last_sample_rate=sample_rate, last_batch_size=1
        )
        return self.probs[index], next_state

    def close(self) -> None:
        pass


class FakeRecognizer:
    """Recognizer returning canned spans for each call."""

    sample_rate = 16000
    backend = "cpu/int8"

    def __init__(self, responses: list[list[tuple[float, float, str]]] | None = None) -> None:
        self.responses = responses or []
        self.inputs: list[np.ndarray] = []
        self.closed = False

    def recognize(self, audio: np.ndarray) -> Iterator[tuple[float, float, str]]:
        index = len(self.inputs)
        self.inputs.append(audio)
        spans = self.responses[index] if index < len(self.responses) else []
        yield from spans

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def scripted_scorer() -> Callable[[list[float]], ScriptedScorer]:
    """Factory for a scorer that replays a probability script."""
    return ScriptedScorer


@pytest.fixture
def fake_recognizer() -> Callable[..., FakeRecognizer]:
    """Factory for a recognizer that replays canned spans."""
    return FakeRecognizer


@pytest.fixture
def write_wav(tmp_path: Path) -> Callable[..., Path]:
    """Write a mono 16-bit WAV and return its path."""

    def _write(
        samples: np.ndarray | None = None,
        sample_rate: int = 16000,
        name: str = "audio.wav",
        seconds: float = 1.0,
    ) -> Path:
        if samples is None:
            samples = np.zeros(int(sample_rate * seconds), dtype=np.float32)
        path = tmp_path / name
        sf.write(str(path), samples, sample_rate, subtype="PCM_16")
        return path

    return _write


@pytest.fixture
def sample_results() -> list[TranscriptionResult]:
    """Three cues in file order."""
    return [
        TranscriptionResult(1, timedelta(seconds=1), timedelta(seconds=2.5), "hello world"),
        TranscriptionResult(2, timedelta(seconds=3), timedelta(seconds=4), "second line"),
        TranscriptionResult(3, timedelta(seconds=5), timedelta(seconds=6.25), "third line"),
    ]


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a sample configuration dictionary."""
    return {
        "model": "small",
        "language": "en",
        "use_vad": True,
        "use_refinement": False,
        "beam_size": 3,
        "vad": {
            "threshold": 0.6,
            "min_speech_duration_ms": 200,
            "max_speech_duration_s": 20.0,
            "min_silence_duration_ms": 150,
            "speech_pad_ms": 40,
        },
        "refinement": {
            "model": "llama3.1:8b",
            "batch_size": 10,
        },
    }


@pytest.fixture
def config_file(tmp_path: Path, sample_config_dict: dict) -> Path:
    """Write sample_config_dict to plainsub.yaml."""
    path = tmp_path / "plainsub.yaml"
    with open(path, "w") as f:
        yaml.dump(sample_config_dict, f)
    return path
