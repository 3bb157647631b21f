"""Consent session endpoints.

Initiators (authenticated, subscribed) open sessions and share the QR
token with the recipient.  The recipient side is anonymous: it reads the
public projection by QR token and records the outcome through the status
endpoint.  Owner-only endpoints return 403 for other users' sessions and
404 for unknown ids.
"""

from __future__ import annotations

import logging

from consent_engine.errors import NotFoundError
from consent_engine.models.session import ConsentSession, PublicSessionView, SessionCreate
from fastapi import APIRouter, HTTPException, Query, Response

from api.dependencies import (
    ActiveSubscriberDep,
    CurrentUserIdDep,
    LifecycleDep,
    RetentionDep,
    StoreDep,
)
from api.schemas import RetentionHoldRequest, SessionListResponse, StatusUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/consent/sessions", tags=["sessions"])


async def _owned_session(store: StoreDep, session_id: str, user_id: str) -> ConsentSession:
    session = await store.require_session(session_id)
    if session.initiator_user_id != user_id:
        raise HTTPException(status_code=403, detail="Not the owner of this session")
    return session


@router.post("", status_code=201)
async def create_session(
    body: SessionCreate,
    user: ActiveSubscriberDep,
    lifecycle: LifecycleDep,
) -> ConsentSession:
    """Open a pending consent session; the retention deadline is fixed now."""
    return await lifecycle.open_session(user.id, body)


@router.get("")
async def list_sessions(
    user_id: CurrentUserIdDep,
    store: StoreDep,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> SessionListResponse:
    """List the caller's sessions, newest first."""
    sessions = await store.list_sessions_for_initiator(user_id, limit=limit, offset=offset)
    return SessionListResponse(sessions=sessions, limit=limit, offset=offset)


@router.get("/qr/{qr_code_id}")
async def get_session_by_qr(qr_code_id: str, store: StoreDep) -> PublicSessionView:
    """Public projection for the recipient who scanned the QR code."""
    session = await store.get_session_by_qr_token(qr_code_id)
    if session is None:
        raise NotFoundError("Consent session", qr_code_id)
    return PublicSessionView.model_validate(session.model_dump())


@router.get("/{session_id}")
async def get_session(session_id: str, user_id: CurrentUserIdDep, store: StoreDep) -> ConsentSession:
    return await _owned_session(store, session_id, user_id)


@router.patch("/{session_id}/status")
async def update_status(
    session_id: str,
    body: StatusUpdateRequest,
    lifecycle: LifecycleDep,
) -> ConsentSession:
    """Record a consent outcome.

    Anonymous: the recipient holds only the QR token and the session id.
    Granting requires a video asset, either supplied here or already
    attached to the session.
    """
    return await lifecycle.set_status(session_id, body.status, body.video_asset_id)


@router.put("/{session_id}/retention-hold")
async def set_retention_hold(
    session_id: str,
    body: RetentionHoldRequest,
    user_id: CurrentUserIdDep,
    store: StoreDep,
    retention: RetentionDep,
) -> ConsentSession:
    """Place or lift a legal hold exempting the session from purges."""
    await _owned_session(store, session_id, user_id)
    return await retention.set_retention_hold(session_id, body.exempt)


@router.delete("/{session_id}", status_code=204)
async def purge_session(
    session_id: str,
    user_id: CurrentUserIdDep,
    store: StoreDep,
    retention: RetentionDep,
) -> Response:
    """Purge the session, its recording and the video asset immediately."""
    await _owned_session(store, session_id, user_id)
    await retention.purge_session(session_id)
    logger.info("User %s purged session %s", user_id, session_id)
    return Response(status_code=204)
