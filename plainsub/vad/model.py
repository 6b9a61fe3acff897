"""
plainsub.vad.model - Silero VAD classifier running on onnxruntime.

Scores one fixed-size window of PCM at a time. The classifier is recurrent:
every call consumes the state produced by the previous call on the same
stream, and each window is prefixed with the tail of the previous one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np

from plainsub.exceptions import ModelUnavailableError, SegmentationError

logger = logging.getLogger(__name__)

SUPPORTED_SAMPLE_RATES = (8000, 16000)
STATE_SIZE = 128


def window_size_for(sample_rate: int) -> int:
    """Samples per scored window: 512 at 16 kHz, 256 at 8 kHz."""
    return 512 if sample_rate == 16000 else 256


def context_size_for(sample_rate: int) -> int:
    """Trailing samples carried into the next window: 64 at 16 kHz, 32 at 8 kHz."""
    return 64 if sample_rate == 16000 else 32


def decimation_step(sample_rate: int) -> int:
    """Integer step that brings `sample_rate` down to a supported rate.

    Raises:
        SegmentationError: If the rate is unsupported and not a multiple of 16000
    """
    if sample_rate in SUPPORTED_SAMPLE_RATES:
        return 1
    if sample_rate % 16000 == 0:
        return sample_rate // 16000
    raise SegmentationError(
        f"Unsupported sample rate {sample_rate}: only supports "
        f"{', '.join(map(str, SUPPORTED_SAMPLE_RATES))} (or multiples of 16000)"
    )


@dataclass(frozen=True)
class SegmenterState:
    """Recurrent classifier memory for a single audio stream."""

    rnn: np.ndarray
    context: np.ndarray | None = None
    last_sample_rate: int = 0
    last_batch_size: int = 0

    @classmethod
    def initial(cls, batch_size: int = 1) -> SegmenterState:
        return cls(rnn=np.zeros((2, batch_size, STATE_SIZE), dtype=np.float32))

    def reset(self) -> SegmenterState:
        return SegmenterState.initial()


def validate_input(frame: np.ndarray, sample_rate: int) -> tuple[np.ndarray, int]:
    """Normalize a window to shape (batch, samples) at a supported rate.

    Rates that are an exact multiple of 16000 are decimated by taking every
    step-th sample.

    Raises:
        SegmentationError: On bad dimensions, unsupported rates, or too-short input
    """
    x = np.asarray(frame, dtype=np.float32)
    if x.ndim == 1:
        x = x[np.newaxis, :]
    if x.ndim > 2:
        raise SegmentationError(f"Incorrect audio data dimension: {x.ndim}")

    step = decimation_step(sample_rate)
    if step > 1:
        x = x[:, ::step]
        sample_rate = 16000

    if x.shape[1] == 0 or sample_rate / x.shape[1] > 31.25:
        raise SegmentationError("Input audio is too short")

    return x, sample_rate


class ProbabilityScorer(Protocol):
    """Anything that turns one window into a speech probability."""

    def score(
        self, frame: np.ndarray, sample_rate: int, state: SegmenterState
    ) -> tuple[float, SegmenterState]: ...


class SileroScorer:
    """Silero VAD ONNX model.

    Not safe for concurrent use: one inference call at a time.
    """

    def __init__(self, model_path: Path) -> None:
        try:
            import onnxruntime
        except ImportError as e:
            raise ImportError(
                "onnxruntime not installed. Install with: pip install onnxruntime"
            ) from e

        options = onnxruntime.SessionOptions()
        options.inter_op_num_threads = 1
        options.intra_op_num_threads = 1
        options.enable_cpu_mem_arena = True

        logger.debug("Loading Silero VAD model from %s", model_path)
        self.model_path = model_path
        try:
            self._session = onnxruntime.InferenceSession(
                str(model_path),
                sess_options=options,
                providers=["CPUExecutionProvider"],
            )
        except Exception as e:
            raise ModelUnavailableError(
                "silero-vad", f"Cannot load VAD model {model_path.name}: {e}"
            ) from e

    def score(
        self, frame: np.ndarray, sample_rate: int, state: SegmenterState
    ) -> tuple[float, SegmenterState]:
        """Score one window and return its probability with the next state.

        Args:
            frame: One window of float32 PCM (512 samples at 16 kHz, 256 at 8 kHz,
                or a proportionally larger window at a multiple of 16 kHz)
            sample_rate: Sample rate of `frame`
            state: State returned by the previous call on this stream

        Returns:
            Tuple of (speech probability, updated state)

        Raises:
            SegmentationError: If the window has the wrong size or rate or inference
                fails
        """
        x, sr = validate_input(frame, sample_rate)
        window = window_size_for(sr)
        if x.shape[1] != window:
            raise SegmentationError(
                f"Provided number of samples is {x.shape[1]} "
                "(Supported values: 256 for 8000 sample rate, 512 for 16000)"
            )

        batch_size = x.shape[0]
        context_size = context_size_for(sr)

        if (
            state.last_batch_size == 0
            or (state.last_sample_rate and state.last_sample_rate != sr)
            or state.last_batch_size != batch_size
        ):
            state = SegmenterState.initial(batch_size)

        context = state.context
        if context is None:
            context = np.zeros((batch_size, context_size), dtype=np.float32)

        x = np.concatenate([context, x], axis=1)

        try:
            output, new_rnn = self._session.run(
                ["output", "stateN"],
                {
                    "input": x,
                    "sr": np.array(sr, dtype=np.int64),
                    "state": state.rnn,
                },
            )
        except Exception as e:
            raise SegmentationError(f"VAD inference failed: {e}") from e

        next_state = SegmenterState(
            rnn=np.asarray(new_rnn, dtype=np.float32),
            context=x[:, -context_size:].copy(),
            last_sample_rate=sr,
            last_batch_size=batch_size,
        )
        return float(np.asarray(output).reshape(-1)[0]), next_state

    def close(self) -> None:
        self._session = None
