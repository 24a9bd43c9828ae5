"""Tests for bananalab.core.prompt_template — preset template rendering.

Tests cover:
- Plain ``${name}`` substitution, including numbers and image inputs.
- Conditional branches with double-quoted and back-quoted bodies.
- Truthiness of booleans, ``"true"``/``"false"`` strings and missing values.
- Removal of unresolved placeholders and whitespace cleanup.
- Collection of image inputs in parameter order.
"""

from __future__ import annotations

from bananalab.core.presets import Preset
from bananalab.core.prompt_template import IMAGE_PLACEHOLDER, build_prompt, collect_image_inputs

PHOTO_RESTORE = 'Restore this old photo ${denoise ? "with noise reduction" : ""} using ${tone} color tone.'


class TestPlainVariables:
    """Test ``${name}`` substitution."""

    def test_substitutes_text(self):
        assert build_prompt("A photo of ${subject}.", {"subject": "a fox"}) == "A photo of a fox."

    def test_substitutes_repeated_variable(self):
        result = build_prompt("${x} and ${x}", {"x": "cats"})
        assert result == "cats and cats"

    def test_integral_float_renders_as_int(self):
        result = build_prompt("Extend by ${pad}%", {"pad": 50.0})
        assert result == "Extend by 50%"

    def test_fractional_number_kept(self):
        assert build_prompt("Scale ${s}", {"s": 1.5}) == "Scale 1.5"

    def test_image_value_renders_as_placeholder(self, png_data_url):
        result = build_prompt("Restyle ${photo} now", {"photo": png_data_url})
        assert result == f"Restyle {IMAGE_PLACEHOLDER} now"

    def test_missing_variable_removed(self):
        result = build_prompt("Make it ${style} please", {})
        assert result == "Make it please"

    def test_empty_string_removed(self):
        result = build_prompt("Theme ${theme}.", {"theme": ""})
        assert result == "Theme."

    def test_boolean_value_not_rendered(self):
        result = build_prompt("Flag ${flag} end", {"flag": True})
        assert result == "Flag end"


class TestConditionals:
    """Test ``${name ? "a" : "b"}`` branches."""

    def test_true_selects_first_branch(self):
        result = build_prompt(PHOTO_RESTORE, {"denoise": True, "tone": "warm"})
        assert result == "Restore this old photo with noise reduction using warm color tone."

    def test_false_selects_second_branch_and_tidies_spaces(self):
        result = build_prompt(PHOTO_RESTORE, {"denoise": False, "tone": "warm"})
        assert result == "Restore this old photo using warm color tone."

    def test_string_true_and_false(self):
        template = '${on ? "yes" : "no"}'
        assert build_prompt(template, {"on": "true"}) == "yes"
        assert build_prompt(template, {"on": "false"}) == "no"

    def test_missing_value_selects_second_branch(self):
        assert build_prompt('${on ? "yes" : "no"}', {}) == "no"

    def test_non_empty_text_is_truthy(self):
        assert build_prompt('${detail ? "detailed" : "plain"}', {"detail": "lots"}) == "detailed"

    def test_backquoted_branch_with_nested_variable(self):
        template = "Base. ${detail ? `Extra: ${detail}` : ``}"
        assert build_prompt(template, {"detail": "glow"}) == "Base. Extra: glow"
        assert build_prompt(template, {}) == "Base."

    def test_mixed_quote_styles(self):
        template = '${on ? `first` : "second"}'
        assert build_prompt(template, {"on": True}) == "first"
        assert build_prompt(template, {"on": False}) == "second"

    def test_spaces_around_operators(self):
        assert build_prompt('${on  ?  "a"  :  "b"}', {"on": True}) == "a"


class TestCleanup:
    """Test removal of leftover placeholders and whitespace tidying."""

    def test_unknown_placeholder_syntax_removed(self):
        assert build_prompt("Keep ${weird-thing} this", {}) == "Keep this"

    def test_space_before_comma_removed(self):
        assert build_prompt("Red ${x}, blue", {}) == "Red, blue"

    def test_result_is_stripped(self):
        assert build_prompt("  ${x} hello  ", {}) == "hello"

    def test_newlines_preserved(self):
        assert build_prompt("Line one.\nLine two.", {}) == "Line one.\nLine two."


class TestCollectImageInputs:
    """Test collect_image_inputs()."""

    def _preset(self) -> Preset:
        return Preset(
            id="merge",
            title="Merge",
            prompt_template="Merge ${a} with ${b}",
            params=[
                {"id": "a", "label": "A", "type": "image"},
                {"id": "caption", "label": "Caption", "type": "text"},
                {"id": "b", "label": "B", "type": "image"},
            ],
        )

    def test_images_returned_in_param_order(self):
        inputs = {"b": "data:image/png;base64,BB", "a": "data:image/png;base64,AA", "caption": "x"}
        result = collect_image_inputs(self._preset(), inputs)
        assert result == ["data:image/png;base64,AA", "data:image/png;base64,BB"]

    def test_missing_images_skipped(self):
        result = collect_image_inputs(self._preset(), {"b": "data:image/png;base64,BB"})
        assert result == ["data:image/png;base64,BB"]
