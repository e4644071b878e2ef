"""
Review Synthesis API Routes
===========================

GET  /api/synthesis/{subject_id}        - current synthesis (generated on first request)
GET  /api/synthesis/{subject_id}/status - status + last 3 processing log entries
POST /api/synthesis/{subject_id}        - queue a forced regeneration (admin token)
"""

import asyncio
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Path, Request

from ..orchestrator.synthesis_orchestrator import PipelineFailure, SubjectNotFound
from .models import RegenerateResponse, SynthesisResponse, SynthesisStatusResponse
from .services import SynthesisServices

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/synthesis", tags=["Synthesis"])

STATUS_LOG_ENTRIES = 3


def _services(request: Request) -> SynthesisServices:
    return request.app.state.services


@router.get("/{subject_id}", response_model=SynthesisResponse)
async def get_synthesis(request: Request, subject_id: int = Path(..., gt=0)):
    """
    Returns the synthesis for a movie.

    Generates it synchronously when none exists yet; a stale synthesis is
    returned immediately while a refresh runs in the background.
    """
    orchestrator = _services(request).orchestrator
    try:
        record = await orchestrator.get_synthesis(subject_id)
    except SubjectNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PipelineFailure as e:
        logger.error(f"Synthesis generation failed for {subject_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Could not generate review synthesis: {e}")

    return SynthesisResponse(**record.to_dict())


@router.get("/{subject_id}/status", response_model=SynthesisStatusResponse)
async def get_synthesis_status(request: Request, subject_id: int = Path(..., gt=0)):
    """Processing status of a movie's synthesis."""
    record = await asyncio.to_thread(_services(request).store.get, subject_id)
    if record is None:
        return SynthesisStatusResponse(subject_id=subject_id, status="not_started")

    return SynthesisStatusResponse(
        subject_id=subject_id,
        status=record.status.value,
        last_updated=record.last_updated,
        needs_update=record.needs_update,
        processing_log=[e.to_dict() for e in record.recent_log(STATUS_LOG_ENTRIES)],
    )


@router.post("/{subject_id}", response_model=RegenerateResponse, status_code=202)
async def regenerate_synthesis(
    request: Request,
    subject_id: int = Path(..., gt=0),
    x_admin_token: Optional[str] = Header(None),
):
    """Queue a forced regeneration. Returns immediately."""
    services = _services(request)
    expected = services.settings.api.admin_token

    if not expected:
        raise HTTPException(status_code=503, detail="Regeneration is disabled: SYNTHESIS_ADMIN_TOKEN not set")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=403, detail="Invalid admin token")

    queue = services.refresh_queue
    if queue.is_pending(subject_id):
        return RegenerateResponse(
            subject_id=subject_id,
            queued=False,
            message="Regeneration already queued for this movie",
        )

    if not queue.submit(subject_id):
        raise HTTPException(status_code=503, detail="Refresh queue is full, try again later")

    logger.info(f"Regeneration queued for {subject_id}", extra={"subject_id": subject_id})
    return RegenerateResponse(
        subject_id=subject_id,
        queued=True,
        message="Review synthesis regeneration started",
    )
