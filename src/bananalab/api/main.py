"""BananaLab — FastAPI Application.

This module is the single entry point for the web application.  It defines
the application factory, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :class:`~bananalab.core.config.BananaLabConfig`
  and is exposed to the frontend via ``GET /api/config``.
- **Services** (preset store, credit ledger, generation history, job store,
  image client and the generation service) are built in the lifespan handler
  and stored on ``app.state``.
- **Errors** raised by the core services carry their own HTTP status; one
  exception handler turns them into ``{"detail": ...}`` responses.
- **Identity** is delegated to the hosted auth provider in front of the
  service, which forwards the user id in the ``X-User-Id`` header.
- **Generated images** are written to ``outputs_dir`` and served by
  ``StaticFiles`` under ``/static/results``.

Endpoints
---------
========  ================================  ================================
Method    Path                              Purpose
========  ================================  ================================
GET       ``/api/config``                   Limits, categories, packs, quality
GET       ``/api/presets``                  Preset list (search/category/sort)
GET       ``/api/presets/{id}``             Single preset
POST      ``/api/presets``                  Create a preset
PUT       ``/api/presets/{id}``             Update a preset
DELETE    ``/api/presets/{id}``             Delete a preset
POST      ``/api/prompt/compile``           Preview the rendered prompt
POST      ``/api/generate``                 Generate images (returns the job)
GET       ``/api/jobs/{id}``                Job status
GET       ``/api/history``                  Paginated generation history
DELETE    ``/api/history/{id}``             Delete a history record
GET       ``/api/credits``                  Credit balance
GET       ``/api/credits/transactions``     Credit ledger rows
GET       ``/api/packs``                    Credit packs
POST      ``/api/purchase``                 Add a credit pack
GET       ``/api/quality``                  Quality presets and recommendation
========  ================================  ================================

Usage
-----
CLI (installed entry point)::

    bananalab

Direct invocation::

    python -m bananalab.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from bananalab import __version__
from bananalab.api.listing import filter_presets, paginate_history, record_to_job
from bananalab.api.models import GenerateRequest, PurchaseRequest
from bananalab.core.config import BananaLabConfig, config
from bananalab.core.credit_ledger import CREDIT_PACKS, CreditLedger
from bananalab.core.errors import BananaLabError, JobNotFoundError
from bananalab.core.generation import RESULTS_URL_PREFIX, GenerationService
from bananalab.core.generation_history import GenerationHistory
from bananalab.core.image_client import GeminiImageClient
from bananalab.core.jobs import JobStore
from bananalab.core.presets import CATEGORY_TAGS, Preset, PresetStore
from bananalab.core.quality import QUALITY_PRESETS, recommended_quality

logger = logging.getLogger(__name__)

SORT_OPTIONS = ["popular", "newest"]

# Clients filter history with job statuses; the database stores record statuses.
_JOB_TO_RECORD_STATUS = {
    "running": "processing",
    "succeeded": "completed",
    "failed": "failed",
}

router = APIRouter(prefix="/api")


def get_user_id(request: Request, x_user_id: str | None = Header(default=None)) -> str:
    """Return the requesting user's id, falling back to the configured default."""
    return x_user_id or request.app.state.config.default_user_id


# ---------------------------------------------------------------------------
# Configuration.
# ---------------------------------------------------------------------------


@router.get("/config")
async def get_config(request: Request) -> dict:
    """Return the settings the frontend needs to render its forms."""
    cfg: BananaLabConfig = request.app.state.config
    return {
        "version": __version__,
        "image_model": cfg.image_model,
        "api_key_configured": bool(cfg.gemini_api_key),
        "max_variants": cfg.max_variants,
        "credits_per_image": cfg.credits_per_image,
        "categories": ["all", *CATEGORY_TAGS],
        "sort_options": SORT_OPTIONS,
        "packs": [asdict(pack) for pack in CREDIT_PACKS.values()],
        "quality_presets": {key: preset.to_dict() for key, preset in QUALITY_PRESETS.items()},
    }


# ---------------------------------------------------------------------------
# Presets.
# ---------------------------------------------------------------------------


@router.get("/presets")
async def list_presets(
    request: Request,
    search: str = "",
    category: str = "all",
    sort: str = "popular",
) -> list[Preset]:
    """Return the preset catalog filtered by search text and category.

    Args:
        search: Case-insensitive match against title and description.
        category: Tag to filter by, or ``"all"``.
        sort: ``"popular"`` (catalog order) or ``"newest"``.
    """
    if sort not in SORT_OPTIONS:
        raise HTTPException(status_code=400, detail=f"sort must be one of: {', '.join(SORT_OPTIONS)}")
    presets = request.app.state.presets.all()
    return filter_presets(presets, search=search, category=category, sort=sort)


@router.get("/presets/{preset_id}")
async def get_preset(request: Request, preset_id: str) -> Preset:
    return request.app.state.presets.get(preset_id)


@router.post("/presets", status_code=201)
async def create_preset(request: Request, preset: Preset) -> Preset:
    """Add a preset.  A blank ``id`` is derived from the title."""
    return request.app.state.presets.create(preset)


@router.put("/presets/{preset_id}")
async def update_preset(request: Request, preset_id: str, preset: Preset) -> Preset:
    """Replace a preset.  The path id wins over any id in the body."""
    return request.app.state.presets.update(preset_id, preset)


@router.delete("/presets/{preset_id}")
async def delete_preset(request: Request, preset_id: str) -> Preset:
    return request.app.state.presets.delete(preset_id)


# ---------------------------------------------------------------------------
# Generation.
# ---------------------------------------------------------------------------


@router.post("/prompt/compile")
async def compile_prompt(request: Request, req: GenerateRequest) -> dict:
    """Preview the prompt a generate request would send.

    Returns:
        Dictionary with ``prompt`` and ``image_count``.
    """
    service: GenerationService = request.app.state.generation
    return service.compile(
        preset_id=req.preset_id,
        prompt=req.prompt,
        inputs=req.inputs,
        images=req.images,
    )


# Declared sync so FastAPI runs it in the threadpool; the model call and the
# retry backoff both block.
@router.post("/generate")
def generate_images(
    request: Request,
    req: GenerateRequest,
    user_id: str = Depends(get_user_id),
) -> dict:
    """Generate images for a preset or free-text prompt.

    This endpoint:

    1. Resolves the prompt and reference images.
    2. Checks the user's balance covers every requested variant.
    3. Calls the image model (with retry and placeholder fallback).
    4. Saves the images and debits credits for them.

    Returns:
        The finished job (``id``, ``status``, ``result_urls``, ...) plus the
        user's remaining ``balance``.

    Raises:
        BananaLabError: Validation (400), missing preset (404), insufficient
            credits (402) or model failures (429/413/422/502).
    """
    service: GenerationService = request.app.state.generation
    job = service.generate(
        user_id,
        preset_id=req.preset_id,
        prompt=req.prompt,
        inputs=req.inputs,
        images=req.images,
        variants=req.variants,
        quality=req.quality,
    )
    return {**job.to_dict(), "balance": request.app.state.ledger.get_balance(user_id)}


@router.get("/jobs/{job_id}")
async def get_job(
    request: Request,
    job_id: str,
    user_id: str = Depends(get_user_id),
) -> dict:
    """Return a job: the live in-memory job if present, else its history record."""
    jobs: JobStore = request.app.state.jobs

    job = jobs.find(job_id)
    if job is not None and job.user_id == user_id:
        return job.to_dict()

    record = request.app.state.history.get_record(job_id, user_id)
    if record is None:
        raise JobNotFoundError(job_id)
    return record_to_job(record)


# ---------------------------------------------------------------------------
# History.
# ---------------------------------------------------------------------------


@router.get("/history")
async def get_history(
    request: Request,
    page: int = 1,
    per_page: int = 20,
    status: str | None = None,
    user_id: str = Depends(get_user_id),
) -> dict:
    """Return the user's generation history, newest first.

    Args:
        page: Page number (1-indexed).
        per_page: Number of jobs per page (1–100).
        status: Optional job status filter (``running``, ``succeeded`` or
            ``failed``).
    """
    if per_page < 1 or per_page > 100:
        raise HTTPException(status_code=400, detail="per_page must be between 1 and 100")

    record_status = None
    if status:
        record_status = _JOB_TO_RECORD_STATUS.get(status)
        if record_status is None:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")

    records = request.app.state.history.list_records(user_id, status=record_status)
    return paginate_history([record_to_job(r) for r in records], page, per_page)


@router.delete("/history/{job_id}")
async def delete_history(
    request: Request,
    job_id: str,
    user_id: str = Depends(get_user_id),
) -> dict:
    if not request.app.state.history.delete_record(job_id, user_id):
        raise JobNotFoundError(job_id)
    return {"success": True, "deleted": job_id}


# ---------------------------------------------------------------------------
# Credits.
# ---------------------------------------------------------------------------


@router.get("/credits")
async def get_credits(request: Request, user_id: str = Depends(get_user_id)) -> dict:
    return {"balance": request.app.state.ledger.get_balance(user_id)}


@router.get("/credits/transactions")
async def get_transactions(
    request: Request,
    limit: int = 100,
    user_id: str = Depends(get_user_id),
) -> list[dict]:
    return request.app.state.ledger.transactions(user_id, limit=max(1, min(limit, 500)))


@router.get("/packs")
async def get_packs() -> list[dict]:
    return [asdict(pack) for pack in CREDIT_PACKS.values()]


@router.post("/purchase")
async def purchase(
    request: Request,
    req: PurchaseRequest,
    user_id: str = Depends(get_user_id),
) -> dict:
    """Add a credit pack to the user's balance.

    No payment is taken here; the billing provider calls this once a
    purchase has cleared.
    """
    ledger: CreditLedger = request.app.state.ledger
    balance = ledger.purchase(user_id, req.pack)
    return {"balance": balance, "added": CREDIT_PACKS[req.pack].credits}


@router.get("/quality")
async def get_quality(image_count: int = 2) -> dict:
    """Return the quality presets and the recommendation for *image_count* images."""
    return {
        "presets": {key: preset.to_dict() for key, preset in QUALITY_PRESETS.items()},
        "recommended": recommended_quality(image_count),
    }


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


async def _handle_error(request: Request, exc: BananaLabError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app(
    app_config: BananaLabConfig | None = None,
    *,
    image_client: Any | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        app_config: Configuration to use.  Defaults to the global ``config``.
        image_client: Model client override (tests pass a fake).  Defaults to
            a :class:`GeminiImageClient` built from the configuration.

    Returns:
        The configured application.  Services are created when the lifespan
        starts.
    """
    cfg = app_config or config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Create the services on startup; nothing needs tearing down."""
        app.state.presets = PresetStore(cfg.presets_file)
        app.state.ledger = CreditLedger(cfg.db_path, initial_credits=cfg.initial_credits)
        app.state.history = GenerationHistory(cfg.db_path)
        app.state.jobs = JobStore(max_jobs=cfg.job_retention)
        app.state.image_client = image_client or GeminiImageClient(cfg)
        app.state.generation = GenerationService(
            cfg,
            presets=app.state.presets,
            image_client=app.state.image_client,
            ledger=app.state.ledger,
            history=app.state.history,
            jobs=app.state.jobs,
        )
        if not cfg.gemini_api_key and image_client is None:
            logger.warning("GEMINI_API_KEY is not set; generate requests will fail.")
        logger.info("BananaLab services initialised.")

        yield

    app = FastAPI(
        title="BananaLab",
        description="Preset-driven image generation API on top of Gemini.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = cfg

    # In production, restrict ``allow_origins`` to the deployment domain.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BananaLabError, _handle_error)
    app.include_router(router)
    app.mount(RESULTS_URL_PREFIX, StaticFiles(directory=str(cfg.outputs_dir)), name="results")

    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~bananalab.core.config.config`
    (``BANANALAB_SERVER_HOST``, ``BANANALAB_SERVER_PORT``,
    ``BANANALAB_LOG_LEVEL``).  Defaults to ``0.0.0.0:7860``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "bananalab.api.main:app",
        host=config.server_host,
        port=config.server_port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
