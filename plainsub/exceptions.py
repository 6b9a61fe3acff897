"""
plainsub.exceptions - Custom exception classes.

All plainsub-specific exceptions inherit from PlainsubError.
"""


class PlainsubError(Exception):
    """Base exception for all plainsub errors."""

    pass


class ConfigError(PlainsubError):
    """Configuration loading or validation error."""

    pass


class ExtractionError(PlainsubError):
    """Audio extraction error."""

    pass


class SegmentationError(PlainsubError):
    """Speech activity detection error."""

    pass


class RecognitionError(PlainsubError):
    """Speech recognition error."""

    pass


class RefinementError(PlainsubError):
    """LLM refinement backend error."""

    pass


class RefinementResponseError(RefinementError):
    """LLM returned malformed or unexpected response."""

    pass


class PipelineCancelled(PlainsubError):
    """The run was cancelled by the caller."""

    pass


class DependencyError(PlainsubError):
    """Required dependency missing or misconfigured."""

    def __init__(self, dependency: str, message: str, install_hint: str | None = None):
        self.dependency = dependency
        self.message = message
        self.install_hint = install_hint
        super().__init__(f"{dependency}: {message}")


class ModelUnavailableError(PlainsubError):
    """Model artifact missing or corrupt after an acquisition attempt."""

    def __init__(self, model: str, message: str):
        self.model = model
        self.message = message
        super().__init__(f"{model}: {message}")
