"""
plainsub.validation - Dependency checks and model artifact provisioning.

Validates the environment before any file is processed: FFmpeg, the Whisper
model, the Silero VAD model, and the Ollama refinement backend.
"""

from __future__ import annotations

import json
import shutil
import subprocess
import urllib.error
import urllib.request
from collections.abc import Callable
from pathlib import Path
from typing import Any

from plainsub.config import ModelDescriptor, PipelineOptions
from plainsub.exceptions import DependencyError, ModelUnavailableError, RefinementError
from plainsub.utils import path_size

VAD_MODEL_URL = "https://huggingface.co/deepghs/silero-vad-onnx/resolve/main/silero_vad.onnx"
VAD_MODEL_FILENAME = "silero_vad.onnx"
VAD_MODEL_MIN_BYTES = 1_000_000
USER_AGENT = "plainsub/0.1"

ModelAcquirer = Callable[[Path, ModelDescriptor], None]
VadAcquirer = Callable[[Path], None]


def check_ffmpeg() -> dict[str, str]:
    """Check that FFmpeg is installed and get its version.

    Returns:
        Dict with 'ffmpeg_version' and 'ffmpeg_path'

    Raises:
        DependencyError: If FFmpeg is not found or does not run
    """
    ffmpeg_path = shutil.which("ffmpeg")
    if not ffmpeg_path:
        raise DependencyError(
            "ffmpeg",
            "FFmpeg not found in PATH",
            "Install with: brew install ffmpeg (macOS) or apt install ffmpeg (Linux)",
        )

    try:
        proc = subprocess.run(
            [ffmpeg_path, "-version"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise DependencyError("ffmpeg", f"FFmpeg could not be run: {e}") from e

    if proc.returncode != 0:
        raise DependencyError("ffmpeg", f"FFmpeg -version exited with {proc.returncode}")

    version_line = proc.stdout.split("\n")[0]
    parts = version_line.split()
    return {
        "ffmpeg_version": parts[2] if len(parts) > 2 else "unknown",
        "ffmpeg_path": ffmpeg_path,
    }


def model_artifact_path(app_root: Path, descriptor: ModelDescriptor) -> Path:
    """Where the Whisper model for `descriptor` lives under the app root."""
    return app_root / "models" / descriptor.artifact


def vad_model_path(app_root: Path) -> Path:
    """Where the Silero VAD model lives under the app root."""
    return app_root / "models" / VAD_MODEL_FILENAME


def check_model_artifact(path: Path, expected_size: int) -> bool:
    """Check an artifact exists and is not obviously truncated.

    Anything under half the expected size counts as a broken download.
    """
    if not path.exists():
        return False
    return path_size(path) >= expected_size // 2


def download_whisper_model(app_root: Path, descriptor: ModelDescriptor) -> None:
    """Fetch a CTranslate2 Whisper model into the app root."""
    try:
        from faster_whisper import download_model
    except ImportError as e:
        raise ImportError(
            "faster-whisper not installed. Install with: pip install faster-whisper"
        ) from e

    target = model_artifact_path(app_root, descriptor)
    target.mkdir(parents=True, exist_ok=True)
    download_model(descriptor.id, output_dir=str(target))


def download_vad_model(app_root: Path) -> None:
    """Fetch the Silero VAD ONNX model into the app root.

    Raises:
        ModelUnavailableError: If the download fails or is too small
    """
    target = vad_model_path(app_root)
    target.parent.mkdir(parents=True, exist_ok=True)
    partial = target.with_suffix(".part")

    req = urllib.request.Request(VAD_MODEL_URL, headers={"User-Agent": USER_AGENT})
    try:
        with urllib.request.urlopen(req, timeout=60) as response, open(partial, "wb") as f:
            shutil.copyfileobj(response, f)
    except (urllib.error.URLError, OSError) as e:
        partial.unlink(missing_ok=True)
        raise ModelUnavailableError("silero-vad", f"Download failed: {e}") from e

    if partial.stat().st_size < VAD_MODEL_MIN_BYTES:
        partial.unlink(missing_ok=True)
        raise ModelUnavailableError("silero-vad", "Downloaded file is too small")

    partial.replace(target)


def ensure_model_artifact(
    app_root: Path,
    descriptor: ModelDescriptor,
    acquire: ModelAcquirer = download_whisper_model,
    status: Callable[[str], None] | None = None,
) -> Path:
    """Make sure the Whisper model is on disk, acquiring it if needed.

    Raises:
        ModelUnavailableError: If the model is still missing afterwards
    """
    path = model_artifact_path(app_root, descriptor)
    if check_model_artifact(path, descriptor.expected_size_bytes):
        return path

    if status:
        status(f"Downloading Whisper model: {descriptor.display_name}...")
    try:
        acquire(app_root, descriptor)
    except ModelUnavailableError:
        raise
    except Exception as e:
        raise ModelUnavailableError(descriptor.id, f"Download failed: {e}") from e

    if not check_model_artifact(path, descriptor.expected_size_bytes):
        raise ModelUnavailableError(
            descriptor.id, f"Model {descriptor.display_name} not found at {path}"
        )
    return path


def ensure_vad_model(
    app_root: Path,
    acquire: VadAcquirer = download_vad_model,
    status: Callable[[str], None] | None = None,
) -> Path:
    """Make sure the Silero VAD model is on disk, acquiring it if needed.

    Raises:
        ModelUnavailableError: If the model is still missing afterwards
    """
    path = vad_model_path(app_root)
    if check_model_artifact(path, VAD_MODEL_MIN_BYTES * 2):
        return path

    if status:
        status("Downloading Silero VAD model...")
    try:
        acquire(app_root)
    except ModelUnavailableError:
        raise
    except Exception as e:
        raise ModelUnavailableError("silero-vad", f"Download failed: {e}") from e

    if not check_model_artifact(path, VAD_MODEL_MIN_BYTES * 2):
        raise ModelUnavailableError("silero-vad", f"VAD model not found at {path}")
    return path


def model_matches(available: str, wanted: str) -> bool:
    """Ollama model names match exactly or as `name:tag`, ignoring case."""
    available = available.lower()
    wanted = wanted.lower()
    return available == wanted or available.startswith(f"{wanted}:")


def check_ollama_running(
    model: str | None = None,
    base_url: str = "http://localhost:11434",
) -> dict[str, Any]:
    """Check if Ollama server is running and optionally if a model is available.

    Args:
        model: Optional model name to check
        base_url: Ollama server URL

    Returns:
        Dict with 'running', 'model_available', 'models' or 'error'
    """
    try:
        req = urllib.request.Request(f"{base_url}/api/tags", method="GET")
        with urllib.request.urlopen(req, timeout=5) as response:
            if response.status == 200:
                data = json.loads(response.read().decode())
                models = [m.get("name", "") for m in data.get("models", [])]

                model_available = True
                if model:
                    model_available = any(model_matches(m, model) for m in models)

                return {
                    "running": True,
                    "model_available": model_available,
                    "models": models,
                }
    except urllib.error.URLError:
        return {
            "running": False,
            "model_available": False,
            "error": "Ollama server not running. Start with: ollama serve",
        }
    except (OSError, ValueError) as e:
        return {
            "running": False,
            "model_available": False,
            "error": str(e),
        }

    return {"running": False, "model_available": False, "error": "Unknown error"}


def pull_ollama_model(
    model: str,
    base_url: str = "http://localhost:11434",
    status: Callable[[str], None] | None = None,
    timeout: int = 3600,
) -> None:
    """Ask Ollama to pull a model, relaying its status lines.

    Raises:
        RefinementError: If the pull request fails or Ollama reports an error
    """
    body = json.dumps({"name": model, "stream": True}).encode()
    req = urllib.request.Request(
        f"{base_url}/api/pull",
        data=body,
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    if status:
        status("Connecting to Ollama...")

    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            for raw in response:
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if "error" in event:
                    raise RefinementError(f"Ollama error while pulling {model}: {event['error']}")
                if status and event.get("status"):
                    status(event["status"])
    except urllib.error.URLError as e:
        raise RefinementError(f"Failed to pull model {model}: {e}") from e


def run_preflight_checks(options: PipelineOptions) -> dict[str, Any]:
    """Run all preflight checks without acquiring anything.

    Args:
        options: Pipeline options to check against

    Returns:
        Dict with all check results
    """
    results: dict[str, Any] = {
        "passed": True,
        "checks": {},
    }

    try:
        results["checks"]["ffmpeg"] = check_ffmpeg()
    except DependencyError as e:
        results["checks"]["ffmpeg"] = {"error": str(e), "install_hint": e.install_hint}
        results["passed"] = False

    whisper_path = model_artifact_path(options.app_root, options.model)
    results["checks"]["whisper_model"] = {
        "path": str(whisper_path),
        "present": check_model_artifact(whisper_path, options.model.expected_size_bytes),
    }

    if options.use_vad:
        vad_path = vad_model_path(options.app_root)
        results["checks"]["vad_model"] = {
            "path": str(vad_path),
            "present": check_model_artifact(vad_path, VAD_MODEL_MIN_BYTES * 2),
        }

    if options.use_refinement:
        ollama = check_ollama_running(options.refinement.model, options.refinement.base_url)
        results["checks"]["ollama"] = ollama
        if not ollama["running"]:
            results["passed"] = False

    return results
