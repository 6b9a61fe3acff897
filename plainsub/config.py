"""
plainsub.config - YAML config loading, model catalogue, validation.

Handles loading plainsub.yaml, resolving the Whisper model descriptor, and
validating all pipeline parameters.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from plainsub.exceptions import ConfigError

CONFIG_FILENAME = "plainsub.yaml"


class ModelDescriptor(BaseModel):
    """A recognizer model and the artifact that backs it on disk."""

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    artifact: str
    expected_size_bytes: int = Field(gt=0)


DEFAULT_MODELS: list[ModelDescriptor] = [
    ModelDescriptor(
        id="tiny",
        display_name="Tiny",
        artifact="faster-whisper-tiny",
        expected_size_bytes=75_000_000,
    ),
    ModelDescriptor(
        id="tiny.en",
        display_name="Tiny English Only",
        artifact="faster-whisper-tiny.en",
        expected_size_bytes=75_000_000,
    ),
    ModelDescriptor(
        id="base",
        display_name="Base",
        artifact="faster-whisper-base",
        expected_size_bytes=145_000_000,
    ),
    ModelDescriptor(
        id="base.en",
        display_name="Base English Only",
        artifact="faster-whisper-base.en",
        expected_size_bytes=145_000_000,
    ),
    ModelDescriptor(
        id="small",
        display_name="Small",
        artifact="faster-whisper-small",
        expected_size_bytes=484_000_000,
    ),
    ModelDescriptor(
        id="small.en",
        display_name="Small English Only",
        artifact="faster-whisper-small.en",
        expected_size_bytes=484_000_000,
    ),
    ModelDescriptor(
        id="medium",
        display_name="Medium",
        artifact="faster-whisper-medium",
        expected_size_bytes=1_530_000_000,
    ),
    ModelDescriptor(
        id="medium.en",
        display_name="Medium English Only",
        artifact="faster-whisper-medium.en",
        expected_size_bytes=1_530_000_000,
    ),
    ModelDescriptor(
        id="large-v3",
        display_name="Large v3",
        artifact="faster-whisper-large-v3",
        expected_size_bytes=3_090_000_000,
    ),
]


def get_model(model_id: str) -> ModelDescriptor:
    """Look up a built-in model descriptor by id."""
    for model in DEFAULT_MODELS:
        if model.id == model_id:
            return model
    valid = ", ".join(m.id for m in DEFAULT_MODELS)
    raise ConfigError(f"Unknown model: {model_id} (available: {valid})")


class VadSettings(BaseModel):
    """Speech activity detection parameters."""

    model_config = ConfigDict(frozen=True)

    threshold: float = Field(default=0.5, gt=0.0, lt=1.0)
    min_speech_duration_ms: int = Field(default=250, ge=0)
    max_speech_duration_s: float = Field(default=30.0, gt=0.0)
    min_silence_duration_ms: int = Field(default=100, ge=0)
    speech_pad_ms: int = Field(default=30, ge=0)


class RefinementSettings(BaseModel):
    """LLM refinement backend parameters."""

    model_config = ConfigDict(frozen=True)

    backend: str = "ollama"
    model: str = "phi3:mini"
    base_url: str = "http://localhost:11434"
    batch_size: int = Field(default=25, ge=1)
    timeout: int = Field(default=300, gt=0)
    max_retries: int = Field(default=3, ge=1)

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        valid = {"ollama"}
        if v not in valid:
            raise ValueError(f"refinement backend must be one of: {valid}")
        return v


class PipelineOptions(BaseModel):
    """Resolved configuration for one pipeline instance."""

    model_config = ConfigDict(frozen=True)

    app_root: Path = Field(default_factory=lambda: Path.home() / ".plainsub")
    model: ModelDescriptor = Field(default_factory=lambda: get_model("base"))
    language: str = "auto"
    use_vad: bool = True
    use_refinement: bool = False
    beam_size: int = Field(default=5, ge=1)
    enhance_audio: bool = True

    vad: VadSettings = Field(default_factory=VadSettings)
    refinement: RefinementSettings = Field(default_factory=RefinementSettings)

    @field_validator("language")
    @classmethod
    def validate_language(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("language must be a language code or 'auto'")
        return v

    @property
    def recognizer_language(self) -> str | None:
        """Language hint for the recognizer; None means auto-detect."""
        return None if self.language == "auto" else self.language


def options_from_dict(raw: dict[str, Any]) -> PipelineOptions:
    """Build PipelineOptions from a plain dict, resolving the model id."""
    data = {k: v for k, v in raw.items() if v is not None}
    model = data.get("model")
    if isinstance(model, str):
        data["model"] = get_model(model)
    if "app_root" in data:
        data["app_root"] = Path(data["app_root"]).expanduser()
    try:
        return PipelineOptions(**data)
    except ValueError as e:
        raise ConfigError(str(e)) from e


def read_config(path: Path) -> dict[str, Any]:
    """Read the raw mapping from a YAML file or a directory holding one."""
    config_file = path / CONFIG_FILENAME if path.is_dir() else path
    if not config_file.exists():
        raise FileNotFoundError(f"No {CONFIG_FILENAME} found at {path}")

    with open(config_file, encoding="utf-8") as f:
        raw_config = yaml.safe_load(f) or {}

    if not isinstance(raw_config, dict):
        raise ConfigError(f"{config_file} must contain a mapping")

    return raw_config


def load_config(path: Path) -> PipelineOptions:
    """Load and validate configuration from a YAML file or a directory holding one."""
    return options_from_dict(read_config(path))


def create_default_config() -> dict[str, Any]:
    """Create a default config dict suitable for plainsub.yaml."""
    defaults = PipelineOptions()
    return {
        "app_root": str(defaults.app_root),
        "model": defaults.model.id,
        "language": defaults.language,
        "use_vad": defaults.use_vad,
        "use_refinement": defaults.use_refinement,
        "beam_size": defaults.beam_size,
        "enhance_audio": defaults.enhance_audio,
        "vad": defaults.vad.model_dump(),
        "refinement": defaults.refinement.model_dump(),
    }


def write_config(config: dict[str, Any], path: Path) -> None:
    """Write configuration to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)
