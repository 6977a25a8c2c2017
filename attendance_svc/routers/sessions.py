from __future__ import annotations
import uuid
from fastapi import APIRouter, Depends, Response
from fastapi.responses import StreamingResponse

from ..deps import Services, caller_id, get_claims, get_services
from ..core.errors import NotAuthorized, NotFound, SessionClosed
from ..core.qr import render_data_url, render_png
from ..schemas import QRCreateResponse, SessionCreate, SessionOpenResponse, SessionRead, SessionStatus
from ..services.events import format_sse

router = APIRouter(prefix="/sessions", tags=["sessions"])

# --- 1) Authority opens a session for a group it owns
@router.post("", response_model=SessionOpenResponse, status_code=201)
async def open_session(payload: SessionCreate, claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    session = await svc.sessions.open(
        payload.group_id, caller_id(claims), payload.method, payload.duration_minutes, payload.geofence
    )
    qr_code = render_data_url(session.qr_token.payload) if session.qr_token else None
    return SessionOpenResponse(
        session=SessionRead.from_session(session),
        qr_code=qr_code,
        qr_token=session.qr_token.payload if session.qr_token else None,
    )

@router.get("", response_model=list[SessionRead])
async def list_group_sessions(group_id: uuid.UUID, active: bool = False, claims: dict = Depends(get_claims),
                              svc: Services = Depends(get_services)):
    if await svc.directory.owner_of(group_id) != caller_id(claims):
        raise NotAuthorized()
    return [SessionRead.from_session(s) for s in svc.sessions.list_sessions(group_id=group_id, active_only=active)]

@router.get("/{session_id}", response_model=SessionRead)
async def get_session(session_id: uuid.UUID, claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    return SessionRead.from_session(svc.sessions.get(session_id))

@router.post("/{session_id}/close", response_model=SessionRead)
async def close_session(session_id: uuid.UUID, claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    return SessionRead.from_session(await svc.sessions.close(session_id, caller_id(claims)))

# --- 2) Rotating QR: reissue replaces the live token
@router.post("/{session_id}/qr", response_model=QRCreateResponse, status_code=201)
async def rotate_qr(session_id: uuid.UUID, claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    token = await svc.sessions.rotate_qr(session_id, caller_id(claims))
    return QRCreateResponse(token=token.payload, expires_at=token.expires_at, qr_code=render_data_url(token.payload))

# PNG of the current token for kiosk display
@router.get("/{session_id}/qr.png")
async def current_qr_png(session_id: uuid.UUID, claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    session = svc.sessions.get(session_id)
    if session.authority_id != caller_id(claims):
        raise NotAuthorized()
    if session.qr_token is None:
        raise NotFound("Session has no QR token")
    return Response(content=render_png(session.qr_token.payload), media_type="image/png")

# --- 3) Live observers (SSE)
@router.get("/{session_id}/events")
async def session_events(session_id: uuid.UUID, claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    session = svc.sessions.get(session_id)
    uid = caller_id(claims)
    if uid != session.authority_id and not await svc.directory.is_member(session.group_id, uid):
        raise NotAuthorized()
    # the membership lookup awaits; the session may have closed meanwhile
    if svc.sessions.get(session_id).status != SessionStatus.ACTIVE:
        raise SessionClosed()

    sub = svc.events.subscribe(session_id)

    async def stream():
        try:
            yield ": connected\n\n"
            async for evt in sub:
                yield format_sse(evt)
        finally:
            sub.close()

    return StreamingResponse(stream(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})
