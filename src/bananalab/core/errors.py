"""Exception hierarchy for BananaLab.

Every error raised by the core services derives from :class:`BananaLabError`
and carries the HTTP status code the API should answer with.  The FastAPI
application registers a single exception handler that turns any of these into
a ``{"detail": message}`` JSON response, so the core modules never import
FastAPI.
"""

from __future__ import annotations


class BananaLabError(Exception):
    """Base class for all BananaLab errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(BananaLabError):
    """The service is missing configuration it needs (e.g. an API key)."""

    status_code = 500


# ---------------------------------------------------------------------------
# Presets and request validation.
# ---------------------------------------------------------------------------


class PresetNotFoundError(BananaLabError):
    status_code = 404

    def __init__(self, preset_id: str) -> None:
        super().__init__(f"Preset not found: {preset_id}")
        self.preset_id = preset_id


class PresetConflictError(BananaLabError):
    status_code = 409

    def __init__(self, preset_id: str) -> None:
        super().__init__(f"Preset already exists: {preset_id}")
        self.preset_id = preset_id


class InvalidParameterError(BananaLabError):
    status_code = 400


class EmptyPromptError(BananaLabError):
    status_code = 400

    def __init__(self, message: str = "Prompt is empty. Check the preset parameters.") -> None:
        super().__init__(message)


class InvalidImageError(BananaLabError):
    status_code = 400


class PayloadTooLargeError(BananaLabError):
    status_code = 413


# ---------------------------------------------------------------------------
# Credits.
# ---------------------------------------------------------------------------


class InsufficientCreditsError(BananaLabError):
    status_code = 402

    def __init__(self, required: int, balance: int) -> None:
        super().__init__(f"Insufficient credits: {required} required, {balance} available")
        self.required = required
        self.balance = balance


class InvalidPackError(BananaLabError):
    status_code = 400

    def __init__(self, pack: str) -> None:
        super().__init__(f"Invalid pack: {pack}")
        self.pack = pack


# ---------------------------------------------------------------------------
# Jobs.
# ---------------------------------------------------------------------------


class JobNotFoundError(BananaLabError):
    status_code = 404

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class InvalidJobTransitionError(BananaLabError):
    status_code = 409


# ---------------------------------------------------------------------------
# Model API failures.
# ---------------------------------------------------------------------------


class GenerationError(BananaLabError):
    """The image model call failed."""

    status_code = 502


class QuotaExceededError(GenerationError):
    status_code = 429

    def __init__(
        self,
        message: str = "API rate limit reached. Wait a moment and try again.",
    ) -> None:
        super().__init__(message)


class ServerUnavailableError(GenerationError):
    """The model API answered with a 5xx / internal error."""

    status_code = 502


class TokenLimitError(GenerationError):
    status_code = 413

    def __init__(
        self,
        message: str = "Request exceeds the model token limit. Use fewer or smaller images.",
    ) -> None:
        super().__init__(message)


class SafetyBlockedError(GenerationError):
    status_code = 422

    def __init__(
        self,
        message: str = "Generation was blocked by the safety filter. Try a different prompt.",
    ) -> None:
        super().__init__(message)


class ApiKeyExpiredError(GenerationError):
    def __init__(
        self,
        message: str = "The Gemini API key has expired. Generate a new key and update GEMINI_API_KEY.",
    ) -> None:
        super().__init__(message)


class InvalidApiKeyError(GenerationError):
    def __init__(self, message: str = "The Gemini API key is invalid. Check GEMINI_API_KEY.") -> None:
        super().__init__(message)


class ModelNotFoundError(GenerationError):
    def __init__(
        self,
        message: str = "The configured model was not found. Check that the API key supports image generation.",
    ) -> None:
        super().__init__(message)


class NoImageReturnedError(GenerationError):
    def __init__(
        self,
        message: str = "The model did not return an image. Try again with different images.",
    ) -> None:
        super().__init__(message)
