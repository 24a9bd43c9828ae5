"""Preset catalog: models, input validation and the JSON-backed store.

A preset is a named prompt template plus the form parameters a user fills in
to render it.  Parameters come in five kinds, distinguished by ``type``:

========  ====================================================
Type      Extra fields
========  ====================================================
text      ``placeholder``
select    ``options`` (the value must be one of them)
number    ``min``, ``max``, ``step``
switch    ``default`` (value used when the input is omitted)
image     none; the value is a ``data:image/...`` URL
========  ====================================================

The catalog lives in a single ``presets.json`` file in the data directory.
When that file does not exist yet it is seeded from the presets bundled with
the package, after which admin edits (create / update / delete) are written
back to it immediately.
"""

from __future__ import annotations

import json
import logging
import math
import re
import threading
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from bananalab.core.errors import (
    InvalidParameterError,
    PresetConflictError,
    PresetNotFoundError,
)

logger = logging.getLogger(__name__)

BUNDLED_PRESETS_FILE = Path(__file__).resolve().parent.parent / "data" / "presets.json"

# Tags the catalog is browsed by.  ``all`` disables category filtering.
CATEGORY_TAGS: list[str] = ["portrait", "restoration", "design", "product", "scene", "art"]


# ---------------------------------------------------------------------------
# Models.
# ---------------------------------------------------------------------------


class _ParamBase(BaseModel):
    id: str = Field(..., min_length=1)
    label: str
    required: bool = False


class TextParam(_ParamBase):
    type: Literal["text"] = "text"
    placeholder: str | None = None


class SelectParam(_ParamBase):
    type: Literal["select"] = "select"
    options: list[str] = Field(..., min_length=1)


class NumberParam(_ParamBase):
    type: Literal["number"] = "number"
    min: float | None = None
    max: float | None = None
    step: float | None = None


class SwitchParam(_ParamBase):
    type: Literal["switch"] = "switch"
    default: bool | None = None


class ImageParam(_ParamBase):
    type: Literal["image"] = "image"


PresetParam = Annotated[
    Union[TextParam, SelectParam, NumberParam, SwitchParam, ImageParam],
    Field(discriminator="type"),
]


class Preset(BaseModel):
    """A prompt template and the parameters that fill it.

    Attributes:
        id: URL-safe identifier.  May be blank on create, in which case it is
            derived from the title.
        title: Display name.
        tags: Category tags (see :data:`CATEGORY_TAGS`).
        description: Longer description shown on the preset page.
        cover_url: Cover image URL.
        prompt_template: Template rendered by
            :func:`~bananalab.core.prompt_template.build_prompt`.
        params: Form parameters, in display order.
        sample_inputs: Example values for the form.
    """

    id: str = ""
    title: str = Field(..., min_length=1)
    tags: list[str] = Field(default_factory=list)
    description: str = ""
    cover_url: str = ""
    prompt_template: str = Field(..., min_length=1)
    params: list[PresetParam] = Field(default_factory=list)
    sample_inputs: dict[str, Any] = Field(default_factory=dict)


_PRESET_LIST = TypeAdapter(list[Preset])


def slugify(title: str) -> str:
    """Derive a preset id from its title (lower case, whitespace to hyphens)."""
    return re.sub(r"\s+", "-", title.strip().lower())


# ---------------------------------------------------------------------------
# Input validation.
# ---------------------------------------------------------------------------


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _coerce_switch(param: SwitchParam, value: Any) -> bool:
    if value is None:
        return bool(param.default)
    if isinstance(value, bool):
        return value
    if value in ("true", "false"):
        return value == "true"
    raise InvalidParameterError(f"{param.id} must be true or false")


def _coerce_number(param: NumberParam, value: Any) -> int | float:
    if isinstance(value, bool):
        raise InvalidParameterError(f"{param.id} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidParameterError(f"{param.id} must be a number") from None
    if not math.isfinite(number):
        raise InvalidParameterError(f"{param.id} must be a finite number")

    if param.min is not None and number < param.min:
        raise InvalidParameterError(f"{param.id} must be at least {param.min:g}")
    if param.max is not None and number > param.max:
        raise InvalidParameterError(f"{param.id} must be at most {param.max:g}")

    return int(number) if number.is_integer() else number


def validate_inputs(preset: Preset, inputs: dict[str, Any]) -> dict[str, Any]:
    """Check user inputs against a preset's parameters.

    Args:
        preset: The preset being rendered.
        inputs: Raw form values keyed by parameter id.

    Returns:
        The validated inputs, restricted to the preset's parameters.  Switches
        are always present (falling back to their default); other optional
        parameters are present only when a value was given.

    Raises:
        InvalidParameterError: A required value is missing, a select value is
            not an option, a number is malformed or out of range, or an image
            value is not a string.
    """
    validated: dict[str, Any] = {}

    for param in preset.params:
        value = inputs.get(param.id)

        if param.type == "switch":
            validated[param.id] = _coerce_switch(param, value)
            continue

        if _is_empty(value):
            if param.required:
                raise InvalidParameterError(f"{param.label} ({param.id}) is required")
            continue

        if param.type == "select":
            if value not in param.options:
                raise InvalidParameterError(
                    f"{param.id} must be one of: {', '.join(param.options)}"
                )
        elif param.type == "number":
            value = _coerce_number(param, value)
        elif param.type == "image":
            if not isinstance(value, str):
                raise InvalidParameterError(f"{param.id} must be an image data URL")
        elif param.type == "text":
            value = str(value).strip()

        validated[param.id] = value

    return validated


# ---------------------------------------------------------------------------
# Store.
# ---------------------------------------------------------------------------


class PresetStore:
    """JSON-file backed preset catalog.

    The whole catalog is small, so every operation reads the file and every
    mutation rewrites it.  A lock serialises read-modify-write cycles between
    request threads.
    """

    def __init__(self, presets_file: Path, seed_file: Path = BUNDLED_PRESETS_FILE):
        self.presets_file = Path(presets_file)
        self.seed_file = Path(seed_file)
        self._lock = threading.Lock()

        if not self.presets_file.exists():
            self.presets_file.parent.mkdir(parents=True, exist_ok=True)
            seed = self._read(self.seed_file) if self.seed_file.exists() else []
            self._write(seed)
            logger.info(f"Seeded preset catalog with {len(seed)} presets at {self.presets_file}")

    @staticmethod
    def _read(path: Path) -> list[Preset]:
        with open(path, encoding="utf-8") as handle:
            return _PRESET_LIST.validate_python(json.load(handle))

    def _write(self, presets: list[Preset]) -> None:
        with open(self.presets_file, "w", encoding="utf-8") as handle:
            json.dump(
                [preset.model_dump() for preset in presets],
                handle,
                indent=2,
                ensure_ascii=False,
            )

    def all(self) -> list[Preset]:
        """Return every preset in catalog order."""
        return self._read(self.presets_file)

    def get(self, preset_id: str) -> Preset:
        preset = next((p for p in self.all() if p.id == preset_id), None)
        if preset is None:
            raise PresetNotFoundError(preset_id)
        return preset

    def create(self, preset: Preset) -> Preset:
        """Add a preset, deriving its id from the title when blank."""
        if not preset.id:
            preset = preset.model_copy(update={"id": slugify(preset.title)})

        with self._lock:
            presets = self.all()
            if any(p.id == preset.id for p in presets):
                raise PresetConflictError(preset.id)
            presets.append(preset)
            self._write(presets)

        logger.info(f"Created preset {preset.id}")
        return preset

    def update(self, preset_id: str, preset: Preset) -> Preset:
        """Replace an existing preset, keeping its id."""
        preset = preset.model_copy(update={"id": preset_id})

        with self._lock:
            presets = self.all()
            index = next((i for i, p in enumerate(presets) if p.id == preset_id), None)
            if index is None:
                raise PresetNotFoundError(preset_id)
            presets[index] = preset
            self._write(presets)

        logger.info(f"Updated preset {preset_id}")
        return preset

    def delete(self, preset_id: str) -> Preset:
        """Remove a preset and return it."""
        with self._lock:
            presets = self.all()
            index = next((i for i, p in enumerate(presets) if p.id == preset_id), None)
            if index is None:
                raise PresetNotFoundError(preset_id)
            deleted = presets.pop(index)
            self._write(presets)

        logger.info(f"Deleted preset {preset_id}")
        return deleted
