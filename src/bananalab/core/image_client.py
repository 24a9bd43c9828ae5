"""Gemini image generation client with retry and placeholder fallback.

This module provides :class:`GeminiImageClient`, the single point of contact
with the hosted Gemini image model.  One call to :meth:`GeminiImageClient.generate`
produces one image.

Key Responsibilities
--------------------
- **Request assembly** — reference images are sent first as inline parts,
  followed by the text prompt, with both IMAGE and TEXT response modalities
  requested.
- **Error classification** — SDK exceptions are mapped onto the
  :class:`~bananalab.core.errors.GenerationError` hierarchy from their status
  code and message, so callers never see SDK types.
- **Bounded retry** — quota (429) and transient server (5xx) errors are
  retried up to ``config.max_retries`` times with exponential backoff:
  ``retry_base_delay * 2**attempt`` seconds.
- **Placeholder fallback** — when ``config.placeholder_fallback`` is enabled
  and retries are exhausted (or the request exceeds the token limit), a
  placeholder image URL is returned instead of an error, flagged with
  ``is_placeholder`` so nothing is charged for it.
- **Response validation** — safety-blocked candidates raise
  :class:`~bananalab.core.errors.SafetyBlockedError`; a response without an
  inline image raises :class:`~bananalab.core.errors.NoImageReturnedError`.

Usage
-----
::

    from bananalab.core.config import config
    from bananalab.core.image_client import GeminiImageClient

    client = GeminiImageClient(config)
    result = client.generate("A watercolor fox", images=[reference])
    if not result.is_placeholder:
        save_result(result.data, result.mime_type, config.outputs_dir)
"""

from __future__ import annotations

import base64
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from google import genai
from google.genai import types

from bananalab.core.config import BananaLabConfig
from bananalab.core.errors import (
    ApiKeyExpiredError,
    ConfigurationError,
    GenerationError,
    InvalidApiKeyError,
    ModelNotFoundError,
    NoImageReturnedError,
    QuotaExceededError,
    SafetyBlockedError,
    ServerUnavailableError,
    TokenLimitError,
)
from bananalab.core.images import ImageData

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

_BLOCKED_FINISH_REASONS = ("SAFETY", "BLOCKED", "PROHIBITED")


@dataclass(frozen=True)
class GeneratedImage:
    """Result of one generation call.

    Attributes:
        url: ``data:`` URL of the generated image, or the placeholder URL.
        mime_type: MIME type of ``data`` (``None`` for placeholders).
        data: Raw image bytes (``None`` for placeholders).
        is_placeholder: ``True`` when the model was unavailable and a
            placeholder image was substituted.
    """

    url: str
    mime_type: str | None = None
    data: bytes | None = None
    is_placeholder: bool = False


def classify_error(exc: Exception) -> GenerationError:
    """Map an exception raised by the model SDK onto a :class:`GenerationError`.

    The SDK's ``APIError`` carries the HTTP status as ``code``; the message
    text is checked as well since some failures only identify themselves
    there.

    Args:
        exc: The exception raised by ``generate_content``.

    Returns:
        The matching domain error (not raised).
    """
    code = getattr(exc, "code", None)
    if not isinstance(code, int):
        code = None
    message = str(exc)
    lowered = message.lower()

    if "32768" in message or "token count exceeds" in lowered:
        return TokenLimitError()
    if code == 429 or "quota" in lowered or "resource_exhausted" in lowered:
        return QuotaExceededError()
    # A 5xx stays retryable even when its message mentions the API key.
    if (code is not None and code >= 500) or "Internal" in message or "INTERNAL" in message:
        return ServerUnavailableError(f"Model API unavailable: {message}")
    if "api key expired" in lowered:
        return ApiKeyExpiredError()
    if code in (401, 403) or "api key" in lowered:
        return InvalidApiKeyError()
    if code == 404 or "model not found" in lowered:
        return ModelNotFoundError()
    return GenerationError(f"Image generation failed: {message}")


class GeminiImageClient:
    """Wrapper around ``google.genai`` image generation.

    Args:
        config: Application configuration (model, retry and fallback settings).
        client: Pre-built ``genai.Client``.  Built lazily from
            ``config.gemini_api_key`` when omitted.
        sleep: Function used to wait between retries (replaced in tests).
    """

    def __init__(
        self,
        config: BananaLabConfig,
        client: Any | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self._client = client
        self._sleep = sleep

    @property
    def client(self) -> Any:
        """The underlying ``genai.Client``, created on first use."""
        if self._client is None:
            if not self.config.gemini_api_key:
                raise ConfigurationError(
                    "Gemini API key not configured. Set GEMINI_API_KEY in the environment or .env."
                )
            self._client = genai.Client(
                api_key=self.config.gemini_api_key,
                http_options=types.HttpOptions(timeout=self.config.request_timeout_ms),
            )
        return self._client

    def placeholder(self) -> GeneratedImage:
        """Build a placeholder result used when the model is unavailable."""
        seed = int(time.time() * 1000)
        size = self.config.placeholder_size
        return GeneratedImage(
            url=f"https://picsum.photos/seed/{seed}/{size}/{size}",
            is_placeholder=True,
        )

    def generate(
        self,
        prompt: str,
        images: Sequence[ImageData] = (),
        on_progress: ProgressCallback | None = None,
    ) -> GeneratedImage:
        """Generate one image, retrying transient failures.

        Args:
            prompt: Text prompt.
            images: Reference images, sent before the prompt.
            on_progress: Called with 60 before and 80 after the API call.

        Returns:
            The generated image, or a placeholder when fallback applies.

        Raises:
            ConfigurationError: No API key is configured.
            GenerationError: The call failed and no fallback applies.
        """
        client = self.client
        contents: list[Any] = [
            types.Part.from_bytes(data=image.to_bytes(), mime_type=image.mime_type)
            for image in images
        ]
        contents.append(prompt)

        logger.info(
            f"Generating with {self.config.image_model}: "
            f"{prompt[:200]}{'...' if len(prompt) > 200 else ''} ({len(images)} images)"
        )

        attempt = 0
        while True:
            try:
                return self._generate_once(client, contents, on_progress)
            except (QuotaExceededError, ServerUnavailableError) as exc:
                if attempt < self.config.max_retries:
                    delay = self.config.retry_base_delay * 2**attempt
                    attempt += 1
                    logger.warning(
                        f"{type(exc).__name__}; retry {attempt}/{self.config.max_retries} "
                        f"in {delay:.1f}s"
                    )
                    self._sleep(delay)
                    continue
                if self.config.placeholder_fallback:
                    logger.warning(f"Retries exhausted ({exc.message}); returning placeholder")
                    return self.placeholder()
                raise
            except TokenLimitError:
                if self.config.placeholder_fallback:
                    logger.warning("Request exceeds the token limit; returning placeholder")
                    return self.placeholder()
                raise

    def _generate_once(
        self,
        client: Any,
        contents: list[Any],
        on_progress: ProgressCallback | None,
    ) -> GeneratedImage:
        if on_progress:
            on_progress(60)

        try:
            response = client.models.generate_content(
                model=self.config.image_model,
                contents=contents,
                config=types.GenerateContentConfig(
                    response_modalities=[types.Modality.IMAGE, types.Modality.TEXT],
                ),
            )
        except Exception as exc:
            error = classify_error(exc)
            logger.error(f"Gemini API error ({type(error).__name__}): {exc}")
            raise error from exc

        if on_progress:
            on_progress(80)

        return self._extract_image(response)

    @staticmethod
    def _extract_image(response: Any) -> GeneratedImage:
        """Return the first inline image of the first candidate."""
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            feedback = getattr(response, "prompt_feedback", None)
            if feedback is not None and getattr(feedback, "block_reason", None):
                raise SafetyBlockedError()
            raise NoImageReturnedError()

        candidate = candidates[0]
        finish_reason = getattr(candidate, "finish_reason", None)
        if finish_reason is not None:
            reason = str(getattr(finish_reason, "name", finish_reason)).upper()
            if any(marker in reason for marker in _BLOCKED_FINISH_REASONS):
                raise SafetyBlockedError()

        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is None or not inline.data:
                continue
            data = inline.data
            if isinstance(data, str):
                data = base64.b64decode(data)
            mime_type = inline.mime_type or "image/png"
            encoded = base64.b64encode(data).decode("ascii")
            return GeneratedImage(
                url=f"data:{mime_type};base64,{encoded}",
                mime_type=mime_type,
                data=data,
            )

        raise NoImageReturnedError()
