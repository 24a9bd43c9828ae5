"""Listing helpers for the BananaLab API.

This module isolates the filtering, sorting and pagination logic from
``bananalab.api.main`` so route handlers can focus on HTTP concerns while
the listing rules remain testable as small units.

- Presets are filtered by a free-text search and a category tag, then sorted.
- History records are converted to the client-facing job shape and paginated.
"""

from __future__ import annotations

from typing import Any

from bananalab.core.presets import Preset

# History records use their own status vocabulary; clients only know job statuses.
_RECORD_TO_JOB_STATUS = {
    "processing": "running",
    "completed": "succeeded",
    "failed": "failed",
}


def filter_presets(
    presets: list[Preset],
    *,
    search: str = "",
    category: str = "all",
    sort: str = "popular",
) -> list[Preset]:
    """Apply search, category and sort options to the preset catalog.

    Args:
        presets: Presets in catalog order.
        search: Case-insensitive substring matched against title and
            description.  Empty disables the filter.
        category: Tag to keep.  ``"all"`` (or empty) disables the filter.
        sort: ``"popular"`` keeps catalog order, ``"newest"`` reverses it.

    Returns:
        Filtered presets.
    """
    filtered = presets

    query = search.strip().lower()
    if query:
        filtered = [
            preset
            for preset in filtered
            if query in preset.title.lower() or query in preset.description.lower()
        ]

    if category and category != "all":
        filtered = [preset for preset in filtered if category in preset.tags]

    if sort == "newest":
        filtered = list(reversed(filtered))

    return filtered


def record_to_job(record: dict[str, Any]) -> dict[str, Any]:
    """Convert a generation history record into the job shape clients use."""
    status = _RECORD_TO_JOB_STATUS.get(record["status"], "failed")
    return {
        "id": record["id"],
        "user_id": record["user_id"],
        "preset_id": record["preset_id"],
        "inputs": record["inputs"],
        "prompt": record["prompt"],
        "status": status,
        "progress": 100 if status in ("succeeded", "failed") else 0,
        "result_urls": record["image_urls"],
        "error": record["error_message"],
        "credits_used": record["credits_used"],
        "created_at": record["created_at"],
    }


def paginate_history(jobs: list[dict], page: int, per_page: int) -> dict:
    """Return one page of a user's job history.

    History is newest first, so page 1 holds the most recent jobs.  A page
    number past the end resolves to the final page and one below 1 resolves
    to the first; an empty history still reports a single empty page.  The
    response carries the page actually served so a client that deleted the
    only job on its current page can follow along.

    Args:
        jobs: Job dicts produced by :func:`record_to_job`.
        page: One-based page number from the query string.
        per_page: Jobs per page.

    Returns:
        ``total``, ``page``, ``per_page``, ``pages`` and the page's ``items``.
    """
    total = len(jobs)
    pages = max(1, -(-total // per_page))
    page = max(1, min(page, pages))
    offset = (page - 1) * per_page
    return {
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": pages,
        "items": jobs[offset : offset + per_page],
    }
