"""Generate-request orchestration.

:class:`GenerationService` ties the pieces together for ``POST /api/generate``:

1. Resolve the prompt — render a preset template against validated inputs,
   or take a free-text prompt ("lab" mode).
2. Parse and compress the reference images for the requested quality and
   check the request stays under the model's token limit.
3. Check the user can afford every requested variant.
4. Create the job and its history record, then call the model: the first
   image must succeed, further variants are best effort.
5. Save real images, debit credits for them atomically, and complete the
   job.  Placeholder images are returned but never charged.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from bananalab.core.config import BananaLabConfig
from bananalab.core.credit_ledger import CreditLedger
from bananalab.core.errors import (
    BananaLabError,
    EmptyPromptError,
    GenerationError,
    InsufficientCreditsError,
    InvalidParameterError,
    PayloadTooLargeError,
)
from bananalab.core.generation_history import GenerationHistory, sanitize_inputs
from bananalab.core.image_client import GeminiImageClient, GeneratedImage
from bananalab.core.images import ImageData, compress_for_quality, parse_data_url, save_result
from bananalab.core.jobs import Job, JobStore
from bananalab.core.presets import PresetStore, validate_inputs
from bananalab.core.prompt_template import build_prompt, collect_image_inputs
from bananalab.core.quality import (
    QUALITY_PRESETS,
    estimate_tokens,
    is_safe_for_api,
    recommended_quality,
)

logger = logging.getLogger(__name__)

RESULTS_URL_PREFIX = "/static/results"


class GenerationService:
    """Run generate requests against the image model.

    Args:
        config: Application configuration.
        presets: Preset catalog.
        image_client: Model client (anything with a compatible ``generate``).
        ledger: Credit ledger.
        history: Generation history database.
        jobs: In-memory job store.
    """

    def __init__(
        self,
        config: BananaLabConfig,
        presets: PresetStore,
        image_client: GeminiImageClient,
        ledger: CreditLedger,
        history: GenerationHistory,
        jobs: JobStore,
    ):
        self.config = config
        self.presets = presets
        self.image_client = image_client
        self.ledger = ledger
        self.history = history
        self.jobs = jobs

    # ------------------------------------------------------------------
    # Prompt and image resolution.
    # ------------------------------------------------------------------

    def resolve_prompt(
        self,
        preset_id: str | None,
        prompt: str | None,
        inputs: dict[str, Any],
        images: Sequence[str] | None,
    ) -> tuple[str, list[str], dict[str, Any]]:
        """Work out the prompt text and reference images for a request.

        Returns:
            Tuple of ``(prompt, image_values, inputs)`` where ``inputs`` is the
            validated / normalised input dict that gets stored with the job.

        Raises:
            PresetNotFoundError: Unknown ``preset_id``.
            InvalidParameterError: Inputs fail preset validation.
            EmptyPromptError: The resulting prompt is blank.
        """
        if preset_id:
            preset = self.presets.get(preset_id)
            validated = validate_inputs(preset, inputs)
            text = build_prompt(preset.prompt_template, validated)
            image_values = collect_image_inputs(preset, validated)
            stored_inputs = validated
        else:
            text = prompt if prompt is not None else inputs.get("prompt", "")
            if not isinstance(text, str):
                raise InvalidParameterError("prompt must be a string")
            text = text.strip()
            image_values = list(images or inputs.get("images") or [])
            stored_inputs = {k: v for k, v in inputs.items() if k != "images"}
            stored_inputs["prompt"] = text

        if not text.strip():
            raise EmptyPromptError()

        return text, image_values, stored_inputs

    def prepare_images(self, image_values: Sequence[str], quality: str | None) -> list[ImageData]:
        """Parse and compress reference images for the model call.

        Raises:
            InvalidParameterError: Unknown quality preset.
            InvalidImageError: An image cannot be decoded.
            PayloadTooLargeError: The compressed images would exceed the
                safe share of the model's token limit.
        """
        if not image_values:
            return []

        quality_key = quality or recommended_quality(len(image_values))
        preset = QUALITY_PRESETS.get(quality_key)
        if preset is None:
            raise InvalidParameterError(
                f"quality must be one of: {', '.join(QUALITY_PRESETS)}"
            )

        images = [compress_for_quality(parse_data_url(value), preset) for value in image_values]

        total_kb = sum(image.size_kb for image in images)
        if not is_safe_for_api(total_kb):
            raise PayloadTooLargeError(
                f"Reference images total {total_kb:.0f}KB (~{estimate_tokens(total_kb)} tokens), "
                "over the safe request size. Use a lower quality or fewer images."
            )
        return images

    def compile(
        self,
        preset_id: str | None = None,
        prompt: str | None = None,
        inputs: dict[str, Any] | None = None,
        images: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        """Preview the prompt a request would send, without calling the model."""
        text, image_values, _ = self.resolve_prompt(preset_id, prompt, inputs or {}, images)
        return {"prompt": text, "image_count": len(image_values)}

    # ------------------------------------------------------------------
    # Generation.
    # ------------------------------------------------------------------

    def generate(
        self,
        user_id: str,
        *,
        preset_id: str | None = None,
        prompt: str | None = None,
        inputs: dict[str, Any] | None = None,
        images: Sequence[str] | None = None,
        variants: int = 1,
        quality: str | None = None,
    ) -> Job:
        """Run one generate request to completion.

        Args:
            user_id: The requesting user.
            preset_id: Preset to render; ``None`` for a free-text prompt.
            prompt: Free-text prompt (ignored in preset mode).
            inputs: Preset form values, or lab-mode extras.
            images: Reference images for free-text mode.
            variants: Number of images to generate.
            quality: Reference image quality preset key; defaults to the
                recommendation for the image count.

        Returns:
            The succeeded job.

        Raises:
            BananaLabError: Any validation, credit or model failure.  Once the
                job exists, a failure also marks it and its history record
                ``failed``.
        """
        inputs = inputs or {}
        if not 1 <= variants <= self.config.max_variants:
            raise InvalidParameterError(
                f"variants must be between 1 and {self.config.max_variants}"
            )

        text, image_values, stored_inputs = self.resolve_prompt(preset_id, prompt, inputs, images)
        references = self.prepare_images(image_values, quality)

        cost = self.config.credits_per_image * variants
        balance = self.ledger.get_balance(user_id)
        if balance < cost:
            raise InsufficientCreditsError(cost, balance)

        job = self.jobs.create(user_id, sanitize_inputs(stored_inputs), preset_id)
        self.history.save_record(job.id, user_id, text, preset_id, stored_inputs)
        self.jobs.start(job.id)
        self.jobs.set_progress(job.id, 10)

        try:
            urls, charged = self._run(job, text, references, variants)
        except BananaLabError as exc:
            self._fail(job.id, exc.message)
            raise
        except Exception:
            logger.error(f"Unexpected error while generating {job.id}", exc_info=True)
            self._fail(job.id, "Unexpected error during generation")
            raise

        job = self.jobs.succeed(job.id, urls)
        self.history.update_record(job.id, "completed", image_urls=urls, credits_used=charged)
        logger.info(f"Job {job.id} succeeded with {len(urls)} images ({charged} credits)")
        return job

    def _run(
        self,
        job: Job,
        prompt: str,
        references: list[ImageData],
        variants: int,
    ) -> tuple[list[str], int]:
        """Call the model, save results and charge credits.

        Returns:
            Tuple of ``(result_urls, credits_charged)``.
        """
        results: list[GeneratedImage] = [
            self.image_client.generate(
                prompt,
                references,
                on_progress=lambda value: self.jobs.set_progress(job.id, value),
            )
        ]

        for index in range(1, variants):
            try:
                result = self.image_client.generate(f"{prompt} (variation {index + 1})", references)
            except GenerationError as exc:
                logger.warning(f"Variant {index + 1} of {job.id} failed: {exc.message}")
                continue
            if result.is_placeholder:
                logger.info(f"Dropping placeholder variant {index + 1} of {job.id}")
                continue
            results.append(result)

        saved: list[str] = []
        urls: list[str] = []
        try:
            for result in results:
                if result.is_placeholder:
                    urls.append(result.url)
                    continue
                filename = save_result(result.data, result.mime_type, self.config.outputs_dir)
                saved.append(filename)
                urls.append(f"{RESULTS_URL_PREFIX}/{filename}")
        except BananaLabError:
            self._remove_files(saved)
            raise

        charged = self.config.credits_per_image * len(saved)
        if charged > 0 and not self.ledger.use_credits(job.user_id, charged, job.id):
            # Another request spent the credits between the balance check and now.
            self._remove_files(saved)
            raise InsufficientCreditsError(charged, self.ledger.get_balance(job.user_id))

        return urls, charged

    def _remove_files(self, filenames: list[str]) -> None:
        for filename in filenames:
            (self.config.outputs_dir / filename).unlink(missing_ok=True)

    def _fail(self, job_id: str, message: str) -> None:
        self.jobs.fail(job_id, message)
        self.history.update_record(job_id, "failed", error_message=message)
        logger.warning(f"Job {job_id} failed: {message}")
