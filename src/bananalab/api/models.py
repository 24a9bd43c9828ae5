"""Pydantic request models for the BananaLab API.

These models define the JSON schema for the request bodies of every API
endpoint.  FastAPI uses them for automatic request validation and OpenAPI
documentation generation.  Presets themselves are validated with
:class:`bananalab.core.presets.Preset`.

Models
------
GenerateRequest
    Payload for ``POST /api/generate`` and ``POST /api/prompt/compile``.
PurchaseRequest
    Payload for ``POST /api/purchase``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class GenerateRequest(BaseModel):
    """Request body for the ``POST /api/generate`` endpoint.

    Two modes are supported:

    - **Preset mode** — ``preset_id`` is set and ``inputs`` holds the
      preset's parameter values (image parameters as data URLs).
    - **Lab mode** — no ``preset_id``; ``prompt`` is sent as-is together
      with optional reference ``images``.

    Attributes:
        preset_id: Preset to render.  ``None`` selects lab mode.
        prompt: Free-text prompt (lab mode).  Falls back to
            ``inputs["prompt"]``.
        inputs: Preset parameter values keyed by parameter id.
        images: Reference images as data URLs (lab mode).
        variants: Number of images to generate.
        quality: Reference image quality preset (``draft``, ``standard``,
            ``high`` or ``ultra``).  Defaults to the recommendation for the
            number of images.
    """

    preset_id: str | None = Field(
        default=None,
        description="Preset identifier, or None for a free-text prompt.",
    )
    prompt: str | None = Field(
        default=None,
        description="Free-text prompt (used when preset_id is not set).",
    )
    inputs: dict[str, Any] = Field(
        default_factory=dict,
        description="Preset parameter values keyed by parameter id.",
    )
    images: list[str] = Field(
        default_factory=list,
        description="Reference images as data URLs (used when preset_id is not set).",
    )
    variants: int = Field(
        default=1,
        description="Number of images to generate.",
    )
    quality: str | None = Field(
        default=None,
        description="Reference image quality preset.",
    )


class PurchaseRequest(BaseModel):
    """Request body for the ``POST /api/purchase`` endpoint.

    Attributes:
        pack: Credit pack identifier (``small``, ``pro`` or ``studio``).
    """

    pack: str = Field(
        ...,
        description="Credit pack identifier.",
    )
