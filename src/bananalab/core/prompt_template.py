"""Preset prompt template rendering.

A preset's ``prompt_template`` is plain text with ``${...}`` placeholders that
are filled from the user's form inputs.  Two placeholder forms are supported:

Plain variables::

    Restore this old photo using ${tone} color tone.

Conditionals, choosing one of two quoted branches by the truthiness of an
input.  Each branch is either ``"double quoted"`` or ```back quoted```, and
may itself contain plain variables::

    ${shadows ? "with natural shadows" : "with flat lighting"}
    ${detail ? `Additional requirements: ${detail}` : ""}

Rendering Rules
---------------
1. Conditionals are resolved first.  ``True`` and ``"true"`` select the first
   branch, ``False`` and ``"false"`` the second; any other value uses Python
   truthiness, so a missing input selects the second branch.
2. Plain variables are replaced next.  Image inputs (``data:image/...`` URLs)
   render as ``[image]`` since the pixels travel as separate request parts.
   Booleans, ``None`` and empty strings are not rendered.
3. Whatever placeholders remain are removed and the whitespace they leave
   behind is tidied up.

Usage
-----
::

    prompt = build_prompt(preset.prompt_template, inputs)
    images = collect_image_inputs(preset, inputs)
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from bananalab.core.presets import Preset

IMAGE_PLACEHOLDER = "[image]"

_CONDITIONAL_RE = re.compile(
    r"\$\{(\w+)\s*\?\s*"
    r'(?:"(?P<true_dq>[^"]*)"|`(?P<true_bq>[^`]*)`)'
    r"\s*:\s*"
    r'(?:"(?P<false_dq>[^"]*)"|`(?P<false_bq>[^`]*)`)'
    r"\s*\}"
)
_VARIABLE_RE = re.compile(r"\$\{(\w+)\}")
_LEFTOVER_RE = re.compile(r"\$\{[^}]*\}")
_MULTI_SPACE_RE = re.compile(r"[ \t]{2,}")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"[ \t]+([.,])")


def _is_truthy(value: Any) -> bool:
    if value is True or value == "true":
        return True
    if value is False or value == "false":
        return False
    return bool(value)


def _render_value(value: Any) -> str | None:
    """Return the text for a plain variable, or ``None`` to leave it unrendered."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, str) and value.startswith("data:image"):
        return IMAGE_PLACEHOLDER
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _substitute_variables(text: str, inputs: dict[str, Any]) -> str:
    def replace(match: re.Match) -> str:
        rendered = _render_value(inputs.get(match.group(1)))
        return match.group(0) if rendered is None else rendered

    return _VARIABLE_RE.sub(replace, text)


def build_prompt(template: str, inputs: dict[str, Any]) -> str:
    """Render a preset prompt template against the user's inputs.

    Args:
        template: Template text containing ``${...}`` placeholders.
        inputs: Parameter values keyed by parameter id.

    Returns:
        The rendered prompt with every placeholder resolved or removed.
    """

    def resolve_conditional(match: re.Match) -> str:
        if _is_truthy(inputs.get(match.group(1))):
            branch = match.group("true_dq")
            if branch is None:
                branch = match.group("true_bq")
        else:
            branch = match.group("false_dq")
            if branch is None:
                branch = match.group("false_bq")
        return _substitute_variables(branch or "", inputs)

    prompt = _CONDITIONAL_RE.sub(resolve_conditional, template)
    prompt = _substitute_variables(prompt, inputs)

    # Drop unresolved placeholders and the gaps they leave.
    prompt = _LEFTOVER_RE.sub("", prompt)
    prompt = _MULTI_SPACE_RE.sub(" ", prompt)
    prompt = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", prompt)

    return prompt.strip()


def collect_image_inputs(preset: Preset, inputs: dict[str, Any]) -> list[str]:
    """Return the provided image inputs in the preset's parameter order."""
    return [
        inputs[param.id]
        for param in preset.params
        if param.type == "image" and inputs.get(param.id)
    ]
