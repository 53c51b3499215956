"""
Tracking endpoints
==================

POST  /api/v1/tracking/checkin                       -- open a session (201)
GET   /api/v1/tracking/checkin/{user_id}             -- the user's open session, if any
POST  /api/v1/tracking/sessions/{id}/logs            -- append one GPS fix (201)
POST  /api/v1/tracking/sessions/{id}/logs/batch      -- append many GPS fixes (201)
POST  /api/v1/tracking/checkout                      -- close a session, compute distance
PATCH /api/v1/tracking/sessions/{id}/force-close     -- close a stuck session offline
POST  /api/v1/tracking/sessions/{id}/recalculate     -- re-derive distance of a closed session
GET   /api/v1/tracking/sessions/{id}                 -- session with its route data

Domain failures are raised as ``TrackingError`` subclasses and rendered by
the handler registered in ``src.api.app``.
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_lifecycle_manager
from src.api.middleware import DEFAULT_LIMIT, INGEST_LIMIT, limiter
from src.api.schemas import (
    ActiveSessionResponse,
    CheckInRequest,
    CheckOutRequest,
    ErrorResponse,
    ForceCloseRequest,
    IngestResponse,
    LogBatchRequest,
    LogCreateRequest,
    RecalculateRequest,
    SessionResponse,
)
from src.services.session_lifecycle import SessionLifecycleManager

router = APIRouter(prefix="/tracking", tags=["tracking"])

_ERRORS = {
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


@router.post(
    "/checkin",
    status_code=201,
    response_model=SessionResponse,
    summary="Check in (open a tracking session)",
    description=(
        "Opens a session for the user.  A session the user never checked out "
        "of is auto-closed one second before the new check-in and reported in "
        "``auto_closed_session_ids``; overlaps are returned as warnings."
    ),
    responses=_ERRORS,
)
@limiter.limit(DEFAULT_LIMIT)
async def check_in(
    request: Request,
    body: CheckInRequest,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    outcome = await manager.check_in(
        body.user_id,
        body.location.to_domain() if body.location else None,
        body.check_in_time,
    )
    return SessionResponse.model_validate(outcome)


@router.get(
    "/checkin/{user_id}",
    response_model=ActiveSessionResponse,
    summary="Get the user's open session",
)
@limiter.limit(DEFAULT_LIMIT)
async def get_active_session(
    request: Request,
    user_id: int,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    outcome = await manager.active_session(user_id)
    if outcome is None:
        return ActiveSessionResponse(active=False)
    return ActiveSessionResponse(active=True, session=SessionResponse.model_validate(outcome))


@router.post(
    "/sessions/{session_id}/logs",
    status_code=201,
    response_model=IngestResponse,
    summary="Append a GPS log to an open session",
    responses=_ERRORS,
)
@limiter.limit(INGEST_LIMIT)
async def ingest_log(
    request: Request,
    session_id: int,
    body: LogCreateRequest,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    outcome = await manager.ingest_log(session_id, body.to_domain(), body.actor_id)
    return IngestResponse.model_validate(outcome)


@router.post(
    "/sessions/{session_id}/logs/batch",
    status_code=201,
    response_model=IngestResponse,
    summary="Append a batch of GPS logs to an open session",
    description="The batch is validated as a whole; nothing is stored if any point is invalid.",
    responses=_ERRORS,
)
@limiter.limit(INGEST_LIMIT)
async def ingest_logs(
    request: Request,
    session_id: int,
    body: LogBatchRequest,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    outcome = await manager.ingest_logs(
        session_id, [c.to_domain() for c in body.logs], body.actor_id
    )
    return IngestResponse.model_validate(outcome)


@router.post(
    "/checkout",
    response_model=SessionResponse,
    summary="Check out (close a session and compute its distance)",
    responses=_ERRORS,
)
@limiter.limit(DEFAULT_LIMIT)
async def check_out(
    request: Request,
    body: CheckOutRequest,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    outcome = await manager.check_out(
        body.session_id,
        body.user_id,
        body.location.to_domain() if body.location else None,
        body.check_out_time,
    )
    return SessionResponse.model_validate(outcome)


@router.patch(
    "/sessions/{session_id}/force-close",
    response_model=SessionResponse,
    summary="Force-close a stuck session",
    description="Owner or elevated role only.  Distance is computed from stored logs without provider calls.",
    responses=_ERRORS,
)
@limiter.limit(DEFAULT_LIMIT)
async def force_close(
    request: Request,
    session_id: int,
    body: ForceCloseRequest,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    outcome = await manager.force_close(session_id, body.actor_id, body.reason)
    return SessionResponse.model_validate(outcome)


@router.post(
    "/sessions/{session_id}/recalculate",
    response_model=SessionResponse,
    summary="Recalculate the distance of a closed session",
    responses=_ERRORS,
)
@limiter.limit(DEFAULT_LIMIT)
async def recalculate(
    request: Request,
    session_id: int,
    body: RecalculateRequest,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    outcome = await manager.recalculate(session_id, body.actor_id)
    return SessionResponse.model_validate(outcome)


@router.get(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    summary="Get a session with its route data",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(DEFAULT_LIMIT)
async def get_session(
    request: Request,
    session_id: int,
    manager: SessionLifecycleManager = Depends(get_lifecycle_manager),
):
    outcome = await manager.get_session(session_id)
    return SessionResponse.model_validate(outcome)
