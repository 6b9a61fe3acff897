"""
plainsub.transcribe.engine - faster-whisper recognizer.

Loads a CTranslate2 Whisper model on the best acceleration backend the
process can initialize and exposes it as a lazy stream of
(start, end, text) spans relative to the submitted audio.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, TypeVar

import numpy as np

from plainsub.exceptions import RecognitionError
from plainsub.models import RecognizedSpan

logger = logging.getLogger(__name__)

T = TypeVar("T")

WHISPER_SAMPLE_RATE = 16000


@dataclass(frozen=True)
class Backend:
    """A device and compute type faster-whisper can run on."""

    device: str
    compute_type: str

    def __str__(self) -> str:
        return f"{self.device}/{self.compute_type}"


BACKEND_PREFERENCE: tuple[Backend, ...] = (
    Backend("cuda", "float16"),
    Backend("cuda", "int8_float16"),
    Backend("cpu", "int8"),
    Backend("cpu", "float32"),
)

_selected_backend: Backend | None = None
_backend_lock = threading.Lock()


def loaded_backend() -> Backend | None:
    """Backend chosen by the first successful model load in this process."""
    return _selected_backend


def load_with_backend(
    load: Callable[[Backend], T],
    preference: Iterable[Backend] = BACKEND_PREFERENCE,
) -> tuple[T, Backend]:
    """Load something on the process-wide backend, choosing it on first use.

    The first call tries each backend in `preference` order and remembers the
    first one whose `load` succeeds. Every later call reuses that backend
    without probing again.

    Raises:
        RecognitionError: If no backend could be initialized
    """
    global _selected_backend

    with _backend_lock:
        if _selected_backend is not None:
            try:
                return load(_selected_backend), _selected_backend
            except Exception as e:
                raise RecognitionError(
                    f"Whisper model failed to load on {_selected_backend}: {e}"
                ) from e

        errors = []
        for backend in preference:
            try:
                loaded = load(backend)
            except Exception as e:
                logger.debug("Backend %s unavailable: %s", backend, e)
                errors.append(f"{backend}: {e}")
                continue
            _selected_backend = backend
            logger.info("Whisper backend selected: %s", backend)
            return loaded, backend

    raise RecognitionError(f"No Whisper backend could be initialized ({'; '.join(errors)})")


class Recognizer(Protocol):
    """Speech recognizer consumed by the pipeline."""

    sample_rate: int

    def recognize(self, audio: np.ndarray) -> Iterator[RecognizedSpan]: ...

    def close(self) -> None: ...


class WhisperRecognizer:
    """faster-whisper model bound to a language hint and beam size.

    Not safe for concurrent use: one transcription at a time.
    """

    sample_rate = WHISPER_SAMPLE_RATE

    def __init__(
        self,
        model_path: Path,
        language: str | None = None,
        beam_size: int = 5,
    ) -> None:
        try:
            from faster_whisper import WhisperModel
        except ImportError as e:
            raise ImportError(
                "faster-whisper not installed. Install with: pip install faster-whisper"
            ) from e

        self.model_path = model_path
        self.language = language
        self.beam_size = beam_size
        self._model, self.backend = load_with_backend(
            lambda b: WhisperModel(str(model_path), device=b.device, compute_type=b.compute_type)
        )

    def recognize(self, audio: np.ndarray) -> Iterator[RecognizedSpan]:
        """Transcribe 16kHz mono float32 audio.

        Spans are produced lazily as the model decodes; closing the iterator
        early stops decoding.

        Raises:
            RecognitionError: If the model fails
        """
        if self._model is None:
            raise RecognitionError("Recognizer has been closed")

        segments = None
        try:
            segments, _info = self._model.transcribe(
                np.asarray(audio, dtype=np.float32),
                language=self.language,
                beam_size=self.beam_size,
                vad_filter=False,
            )
            yield from _to_spans(segments)
        except RecognitionError:
            raise
        except Exception as e:
            raise RecognitionError(f"Transcription failed: {e}") from e
        finally:
            close = getattr(segments, "close", None)
            if close is not None:
                close()

    def close(self) -> None:
        self._model = None


def _to_spans(segments: Iterable[Any]) -> Iterator[RecognizedSpan]:
    """Convert faster-whisper segments into (start, end, text) spans.

    Segments with no text after stripping are dropped.
    """
    for segment in segments:
        text = (getattr(segment, "text", "") or "").strip()
        if not text:
            continue
        yield (float(segment.start), float(segment.end), text)
