"""Shared pytest fixtures for BananaLab tests."""

from __future__ import annotations

import base64
import io
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from PIL import Image

from bananalab.core.config import BananaLabConfig
from bananalab.core.credit_ledger import CreditLedger
from bananalab.core.generation import GenerationService
from bananalab.core.generation_history import GenerationHistory
from bananalab.core.image_client import GeneratedImage
from bananalab.core.jobs import JobStore
from bananalab.core.presets import PresetStore


def make_png_bytes(width: int = 64, height: int = 48, color: str = "orange") -> bytes:
    """Encode a solid-colour PNG."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_data_url(width: int = 64, height: int = 48, color: str = "orange") -> str:
    """Encode a solid-colour PNG as a ``data:image/png;base64`` URL."""
    encoded = base64.b64encode(make_png_bytes(width, height, color)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


class FakeImageClient:
    """Stand-in for :class:`GeminiImageClient` that never touches the network.

    Each call pops the next scripted outcome (a ``GeneratedImage`` to return
    or an exception to raise); once the script is empty a fresh PNG result is
    returned.
    """

    def __init__(self, outcomes: list | None = None):
        self.outcomes = list(outcomes or [])
        self.calls: list[dict] = []

    def generate(self, prompt, images=(), on_progress=None):
        self.calls.append({"prompt": prompt, "images": list(images)})
        if on_progress:
            on_progress(60)
        outcome = self.outcomes.pop(0) if self.outcomes else png_result()
        if isinstance(outcome, BaseException):
            raise outcome
        if on_progress:
            on_progress(80)
        return outcome


def png_result() -> GeneratedImage:
    data = make_png_bytes()
    return GeneratedImage(
        url="data:image/png;base64," + base64.b64encode(data).decode("ascii"),
        mime_type="image/png",
        data=data,
    )


def placeholder_result() -> GeneratedImage:
    return GeneratedImage(url="https://picsum.photos/seed/1/1024/1024", is_placeholder=True)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> BananaLabConfig:
    """Create a test configuration with temporary directories.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        BananaLabConfig instance for testing
    """
    return BananaLabConfig(
        gemini_api_key="test-key",
        data_dir=temp_dir / "data",
        outputs_dir=temp_dir / "outputs",
        retry_base_delay=0.0,
        _env_file=None,
    )


@pytest.fixture
def png_data_url() -> str:
    return make_data_url()


@pytest.fixture
def fake_image_client() -> FakeImageClient:
    return FakeImageClient()


@pytest.fixture
def preset_store(test_config: BananaLabConfig) -> PresetStore:
    """Preset store seeded from the bundled catalog."""
    return PresetStore(test_config.presets_file)


@pytest.fixture
def ledger(test_config: BananaLabConfig) -> CreditLedger:
    return CreditLedger(test_config.db_path, initial_credits=test_config.initial_credits)


@pytest.fixture
def history(test_config: BananaLabConfig) -> GenerationHistory:
    return GenerationHistory(test_config.db_path)


@pytest.fixture
def generation_service(
    test_config: BananaLabConfig,
    preset_store: PresetStore,
    fake_image_client: FakeImageClient,
    ledger: CreditLedger,
    history: GenerationHistory,
) -> GenerationService:
    """GenerationService wired to temporary stores and a fake model client."""
    return GenerationService(
        test_config,
        presets=preset_store,
        image_client=fake_image_client,
        ledger=ledger,
        history=history,
        jobs=JobStore(max_jobs=test_config.job_retention),
    )


@pytest.fixture
def test_client(test_config: BananaLabConfig, fake_image_client: FakeImageClient):
    """FastAPI TestClient backed by temporary storage and a fake model client.

    The lifespan runs on entering the context manager, so services are built
    against ``test_config``.
    """
    from fastapi.testclient import TestClient

    from bananalab.api.main import create_app

    app = create_app(test_config, image_client=fake_image_client)
    with TestClient(app) as client:
        yield client
