"""
plainsub.pipeline - Media to subtitle orchestration.

Runs each file through extraction, speech detection, recognition, optional
refinement and serialization. Collaborators are loaded once by
`initialize()` and reused for every file in a batch.

The pipeline is synchronous. Callers that need it off their own thread run
it in a worker and signal cancellation through a CancellationToken, which is
checked between frames, segments, spans and batches.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from enum import Enum
from pathlib import Path
from typing import Any

import soundfile as sf

from plainsub.cancellation import CancellationToken, check_cancelled
from plainsub.config import PipelineOptions, RefinementSettings
from plainsub.exceptions import (
    DependencyError,
    ExtractionError,
    ModelUnavailableError,
    PipelineCancelled,
    PlainsubError,
    RecognitionError,
    RefinementError,
    SegmentationError,
)
from plainsub.extract.audio import extract_audio, temp_audio_path
from plainsub.llm.client import LLMClient, create_client_from_settings
from plainsub.llm.refine import refine_results
from plainsub.models import BatchReport, FileOutcome, FileStatus, TranscriptionResult
from plainsub.subtitles.srt import output_path_for, write_srt
from plainsub.transcribe.adapter import SegmentAdapter
from plainsub.transcribe.engine import WhisperRecognizer
from plainsub.vad.model import SileroScorer
from plainsub.vad.segmenter import SpeechSegmenter
from plainsub.validation import (
    check_ffmpeg,
    check_ollama_running,
    download_vad_model,
    download_whisper_model,
    ensure_model_artifact,
    ensure_vad_model,
    pull_ollama_model,
)

__all__ = ["CancellationToken", "PipelineStage", "TranscriptionPipeline"]

logger = logging.getLogger(__name__)

FILE_ERRORS = (ExtractionError, RecognitionError, SegmentationError, OSError, sf.SoundFileError)


class PipelineStage(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    EXTRACTING_AUDIO = "extracting_audio"
    DETECTING_SPEECH = "detecting_speech"
    TRANSCRIBING = "transcribing"
    REFINING = "refining"
    WRITING_OUTPUT = "writing_output"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class OllamaBackend:
    """Reachability check and model provisioning for a local Ollama server."""

    def check(self, settings: RefinementSettings) -> dict[str, Any]:
        return check_ollama_running(settings.model, settings.base_url)

    def pull(self, settings: RefinementSettings, status: Callable[[str], None]) -> None:
        pull_ollama_model(settings.model, settings.base_url, status=status)


def _default_recognizer(model_path: Path, options: PipelineOptions) -> WhisperRecognizer:
    return WhisperRecognizer(
        model_path, language=options.recognizer_language, beam_size=options.beam_size
    )


class TranscriptionPipeline:
    """Converts media files into .srt subtitles.

    Args:
        options: Resolved pipeline options
        status: Optional callback receiving human-readable status lines
        progress: Optional callback receiving the current stage's completion
            fraction in [0, 1]
        recognizer_factory: `(model_path, options) -> Recognizer`
        scorer_factory: `(vad_model_path) -> ProbabilityScorer`
        llm_client_factory: `(RefinementSettings) -> client with complete()`
        extractor: Same signature as `extract_audio`
        acquire_model: Whisper model downloader `(app_root, descriptor)`
        acquire_vad_model: VAD model downloader `(app_root)`
        refinement_backend: Object with `check(settings)` and
            `pull(settings, status)`
        dependency_check: Raises DependencyError when ffmpeg is unusable
    """

    def __init__(
        self,
        options: PipelineOptions,
        *,
        status: Callable[[str], None] | None = None,
        progress: Callable[[float], None] | None = None,
        recognizer_factory: Callable[[Path, PipelineOptions], Any] | None = None,
        scorer_factory: Callable[[Path], Any] | None = None,
        llm_client_factory: Callable[[RefinementSettings], Any] | None = None,
        extractor: Callable[..., Any] | None = None,
        acquire_model: Callable[..., None] | None = None,
        acquire_vad_model: Callable[..., None] | None = None,
        refinement_backend: Any | None = None,
        dependency_check: Callable[[], Any] | None = None,
    ) -> None:
        self.options = options
        self.stage = PipelineStage.IDLE

        self._status = status
        self._progress = progress
        self._recognizer_factory = recognizer_factory or _default_recognizer
        self._scorer_factory = scorer_factory or SileroScorer
        self._llm_client_factory = llm_client_factory or create_client_from_settings
        self._extractor = extractor or extract_audio
        self._acquire_model = acquire_model or download_whisper_model
        self._acquire_vad_model = acquire_vad_model or download_vad_model
        self._refinement_backend = refinement_backend or OllamaBackend()
        self._dependency_check = dependency_check or check_ffmpeg

        self.recognizer: Any = None
        self.scorer: Any = None
        self.segmenter: SpeechSegmenter | None = None
        self.llm_client: Any = None
        self._initialized = False
        self._prefix = ""

    def __enter__(self) -> TranscriptionPipeline:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _set_stage(self, stage: PipelineStage) -> None:
        if stage is not self.stage:
            logger.debug("Pipeline stage: %s -> %s", self.stage.value, stage.value)
        self.stage = stage

    def _report(self, message: str) -> None:
        message = f"{self._prefix}{message}"
        logger.info(message)
        if self._status:
            self._status(message)

    def _report_progress(self, fraction: float) -> None:
        if self._progress:
            self._progress(max(0.0, min(fraction, 1.0)))

    def initialize(self, cancel: CancellationToken | None = None) -> None:
        """Check dependencies and load every collaborator the options call for.

        Safe to call more than once; only the first call does any work.

        Raises:
            DependencyError: If ffmpeg or the refinement backend is unusable
            ModelUnavailableError: If a model cannot be found or acquired
            RecognitionError: If the recognizer fails to load on any backend
            PipelineCancelled: If cancelled while initializing
        """
        if self._initialized:
            return

        self._set_stage(PipelineStage.INITIALIZING)
        try:
            self._initialize(cancel)
        except PipelineCancelled:
            self._set_stage(PipelineStage.CANCELLED)
            raise
        except Exception:
            self._set_stage(PipelineStage.FAILED)
            self.close()
            raise

        self._initialized = True
        self._set_stage(PipelineStage.IDLE)
        self._report("Initialization complete")

    def _initialize(self, cancel: CancellationToken | None) -> None:
        options = self.options

        self._report("Checking dependencies...")
        self._dependency_check()
        check_cancelled(cancel)

        model_path = ensure_model_artifact(
            options.app_root, options.model, acquire=self._acquire_model, status=self._report
        )
        check_cancelled(cancel)

        self._report(f"Loading Whisper model: {options.model.display_name}...")
        self.recognizer = self._recognizer_factory(model_path, options)
        backend = getattr(self.recognizer, "backend", None)
        if backend is not None:
            self._report(f"Whisper model loaded on {backend}")
        check_cancelled(cancel)

        if options.use_vad:
            vad_path = ensure_vad_model(
                options.app_root, acquire=self._acquire_vad_model, status=self._report
            )
            check_cancelled(cancel)
            self._report("Loading VAD model...")
            self.scorer = self._scorer_factory(vad_path)
            self.segmenter = SpeechSegmenter.from_settings(self.scorer, options.vad)
            check_cancelled(cancel)

        if options.use_refinement:
            self.llm_client = self._initialize_refinement(options.refinement)

    def _initialize_refinement(self, settings: RefinementSettings) -> Any:
        self._report("Checking LLM backend...")
        state = self._refinement_backend.check(settings)
        if not state.get("running"):
            raise DependencyError(
                settings.backend,
                state.get("error") or "Refinement backend is not reachable",
                install_hint="Start with: ollama serve",
            )

        if not state.get("model_available"):
            self._report(f"Pulling LLM model: {settings.model}...")
            try:
                self._refinement_backend.pull(
                    settings, lambda line: self._report(f"{settings.model}: {line}")
                )
            except RefinementError as e:
                raise ModelUnavailableError(settings.model, str(e)) from e

            state = self._refinement_backend.check(settings)
            if not state.get("model_available"):
                raise ModelUnavailableError(
                    settings.model, f"Model {settings.model} still unavailable after pull"
                )

        return self._llm_client_factory(settings)

    def process_file(
        self,
        source: Path,
        output: Path,
        cancel: CancellationToken | None = None,
    ) -> FileOutcome:
        """Turn one media file into one subtitle file.

        Per-file failures and cancellation are reported in the outcome rather
        than raised. Nothing is written to `output` unless the file completes.

        Raises:
            PlainsubError: If the pipeline has not been initialized
        """
        if not self._initialized:
            raise PlainsubError("Pipeline not initialized. Call initialize() first.")

        source = Path(source)
        output = Path(output)
        temp_wav = temp_audio_path()

        try:
            check_cancelled(cancel)
            results = self._run(source, output, temp_wav, cancel)
        except PipelineCancelled:
            self._set_stage(PipelineStage.CANCELLED)
            self._report(f"Cancelled: {source.name}")
            return FileOutcome(source, None, FileStatus.CANCELLED)
        except FILE_ERRORS as e:
            self._set_stage(PipelineStage.FAILED)
            logger.error("Failed to process %s: %s", source, e)
            self._report(f"Failed: {source.name}: {e}")
            return FileOutcome(source, None, FileStatus.FAILED, error=str(e))
        finally:
            temp_wav.unlink(missing_ok=True)

        self._set_stage(PipelineStage.DONE)
        self._report(f"Completed: {source.name} ({len(results)} subtitles)")
        return FileOutcome(source, output, FileStatus.DONE, result_count=len(results))

    def _run(
        self,
        source: Path,
        output: Path,
        temp_wav: Path,
        cancel: CancellationToken | None,
    ) -> list[TranscriptionResult]:
        self._set_stage(PipelineStage.EXTRACTING_AUDIO)
        self._report(f"Extracting audio: {source.name}")
        self._report_progress(0.0)
        self._extractor(
            source,
            temp_wav,
            sample_rate=self.recognizer.sample_rate,
            enhance=self.options.enhance_audio,
            progress=self._report_progress,
            cancel=cancel,
        )
        check_cancelled(cancel)

        adapter = SegmentAdapter(self.recognizer)

        if self.segmenter is not None:
            self._set_stage(PipelineStage.DETECTING_SPEECH)
            self._report("Detecting speech...")
            self._report_progress(0.0)
            segments = self.segmenter.segment_file(
                temp_wav, cancel=cancel, progress=self._report_progress
            )
            self._report(f"Found {len(segments)} speech segments")

            self._set_stage(PipelineStage.TRANSCRIBING)
            self._report_progress(0.0)
            if segments:
                self._report("Transcribing speech segments...")
                results = list(
                    adapter.transcribe_segments(
                        temp_wav, segments, cancel=cancel, progress=self._report_progress
                    )
                )
            else:
                self._report("No speech detected")
                results = []
        else:
            self._set_stage(PipelineStage.TRANSCRIBING)
            self._report("Transcribing...")
            self._report_progress(0.0)
            results = list(
                adapter.transcribe_whole(temp_wav, cancel=cancel, progress=self._report_progress)
            )

        if self.llm_client is not None and results:
            self._set_stage(PipelineStage.REFINING)
            self._report("Refining subtitles...")
            self._report_progress(0.0)
            if isinstance(self.llm_client, LLMClient):
                self.llm_client.reset_token_usage()
            summary = refine_results(
                results,
                self.llm_client,
                batch_size=self.options.refinement.batch_size,
                language=self.options.recognizer_language,
                cancel=cancel,
                progress=self._report_progress,
            )
            if summary["failed_batches"]:
                self._report(
                    f"Refinement: {summary['failed_batches']}/{summary['batches']} "
                    "batches kept original text"
                )
            if isinstance(self.llm_client, LLMClient):
                logger.debug(
                    "LLM token usage for %s: %s", output.name, self.llm_client.get_token_usage()
                )

        check_cancelled(cancel)
        self._set_stage(PipelineStage.WRITING_OUTPUT)
        self._report(f"Writing subtitles: {output.name}")
        write_srt(output, results)
        self._report_progress(1.0)
        return results

    def process_batch(
        self,
        sources: Iterable[Path],
        output_dir: Path | None = None,
        cancel: CancellationToken | None = None,
    ) -> BatchReport:
        """Process files one after another, continuing past per-file failures.

        Raises:
            PlainsubError: Any initialization failure, before any file is touched
        """
        sources = [Path(s) for s in sources]
        self.initialize(cancel)

        report = BatchReport()
        total = len(sources)

        try:
            for index, source in enumerate(sources):
                if cancel is not None and cancel.cancelled:
                    report.outcomes.extend(
                        FileOutcome(s, None, FileStatus.CANCELLED) for s in sources[index:]
                    )
                    break

                self._prefix = f"[{index + 1}/{total}] "
                outcome = self.process_file(source, output_path_for(source, output_dir), cancel)
                report.outcomes.append(outcome)
        finally:
            self._prefix = ""

        self._report(
            f"Batch finished: {report.succeeded} done, {report.failed} failed, "
            f"{report.cancelled} cancelled"
        )
        return report

    def close(self) -> None:
        """Release the loaded models."""
        for component in (self.recognizer, self.scorer):
            close = getattr(component, "close", None)
            if close is not None:
                close()
        self.recognizer = None
        self.scorer = None
        self.segmenter = None
        self.llm_client = None
        self._initialized = False
