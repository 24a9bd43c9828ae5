"""Tests for bananalab.core.generation_history — generation records."""

from __future__ import annotations

import pytest

from bananalab.core.generation_history import GenerationHistory, sanitize_inputs


class TestSanitizeInputs:
    def test_image_values_replaced(self, png_data_url):
        result = sanitize_inputs({"photo": png_data_url, "tone": "warm", "scale": 2})
        assert result == {"photo": "[image]", "tone": "warm", "scale": 2}


class TestGenerationHistory:
    def test_save_and_get(self, history: GenerationHistory):
        history.save_record("job_1", "alice", "A fox", "place-to-scene", {"place_desc": "a fox"})
        record = history.get_record("job_1")

        assert record["status"] == "processing"
        assert record["prompt"] == "A fox"
        assert record["preset_id"] == "place-to-scene"
        assert record["inputs"] == {"place_desc": "a fox"}
        assert record["image_urls"] == []
        assert record["credits_used"] == 0

    def test_images_never_stored(self, history: GenerationHistory, png_data_url):
        history.save_record("job_1", "alice", "Restore", "photo-restore", {"photo": png_data_url})
        assert history.get_record("job_1")["inputs"] == {"photo": "[image]"}

    def test_update_to_completed(self, history: GenerationHistory):
        history.save_record("job_1", "alice", "A fox", None, {})
        history.update_record("job_1", "completed", image_urls=["/static/results/a.png"], credits_used=1)

        record = history.get_record("job_1")
        assert record["status"] == "completed"
        assert record["image_urls"] == ["/static/results/a.png"]
        assert record["credits_used"] == 1

    def test_update_to_failed(self, history: GenerationHistory):
        history.save_record("job_1", "alice", "A fox", None, {})
        history.update_record("job_1", "failed", error_message="quota")
        record = history.get_record("job_1")
        assert record["status"] == "failed"
        assert record["error_message"] == "quota"

    def test_get_restricted_to_owner(self, history: GenerationHistory):
        history.save_record("job_1", "alice", "A fox", None, {})
        assert history.get_record("job_1", "bob") is None
        assert history.get_record("job_1", "alice") is not None

    def test_get_missing(self, history: GenerationHistory):
        assert history.get_record("nope") is None

    def test_list_newest_first(self, history: GenerationHistory):
        for index in range(3):
            history.save_record(f"job_{index}", "alice", f"p{index}", None, {})
        history.save_record("job_other", "bob", "p", None, {})

        ids = [record["id"] for record in history.list_records("alice")]
        assert ids == ["job_2", "job_1", "job_0"]

    def test_list_filtered_by_status(self, history: GenerationHistory):
        history.save_record("job_1", "alice", "a", None, {})
        history.save_record("job_2", "alice", "b", None, {})
        history.update_record("job_2", "failed", error_message="x")

        records = history.list_records("alice", status="failed")
        assert [record["id"] for record in records] == ["job_2"]

    @pytest.mark.parametrize("owner, expected", [("alice", True), ("bob", False)])
    def test_delete(self, history: GenerationHistory, owner, expected):
        history.save_record("job_1", "alice", "a", None, {})
        assert history.delete_record("job_1", owner) is expected
        assert (history.get_record("job_1") is None) is expected
