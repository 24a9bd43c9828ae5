"""Reference image quality presets and request-size estimation.

Reference images are sent inline with the prompt, so their encoded size counts
against the model's 32768-token input limit.  Each quality preset bounds the
long edge, JPEG quality and target file size that reference images are
compressed to before the call (see :mod:`bananalab.core.images`).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

MAX_TOKENS = 32768
SAFETY_MARGIN = 0.8

# Empirically one kilobyte of base64 image data costs roughly 35 tokens.
TOKENS_PER_KB = 35


@dataclass(frozen=True)
class QualityPreset:
    name: str
    max_size: int
    jpeg_quality: float
    max_file_size_kb: int
    credits: int
    description: str

    def to_dict(self) -> dict:
        return asdict(self)


QUALITY_PRESETS: dict[str, QualityPreset] = {
    "draft": QualityPreset(
        name="Draft",
        max_size=512,
        jpeg_quality=0.5,
        max_file_size_kb=200,
        credits=5,
        description="Fast and cheap",
    ),
    "standard": QualityPreset(
        name="Standard",
        max_size=768,
        jpeg_quality=0.65,
        max_file_size_kb=300,
        credits=10,
        description="Balanced",
    ),
    "high": QualityPreset(
        name="High",
        max_size=1024,
        jpeg_quality=0.75,
        max_file_size_kb=400,
        credits=20,
        description="Best quality (limited image count)",
    ),
    "ultra": QualityPreset(
        name="Ultra",
        max_size=1280,
        jpeg_quality=0.8,
        max_file_size_kb=500,
        credits=30,
        description="Premium quality (use with care)",
    ),
}


def estimate_tokens(size_kb: float) -> int:
    """Estimate the token cost of *size_kb* kilobytes of inline image data."""
    return round(size_kb * TOKENS_PER_KB)


def is_safe_for_api(total_size_kb: float) -> bool:
    """Return whether images totalling *total_size_kb* stay below 80% of the token limit."""
    return estimate_tokens(total_size_kb) < MAX_TOKENS * SAFETY_MARGIN


def recommended_quality(image_count: int = 2) -> str:
    """Pick the quality preset key for a request carrying *image_count* images."""
    if image_count >= 3:
        return "draft"
    if image_count == 2:
        return "standard"
    return "high"
