from __future__ import annotations
import base64
import binascii
import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException

from ..deps import Services, caller_id, get_claims, get_services
from ..core.errors import Malformed, NotAuthorized, NotFound
from ..core.redis import allow_request, retry_after
from ..schemas import (
    AttendanceEntry, GroupAnalytics, MarkFace, MarkNFC, MarkQR, MemberAnalytics, RecordRead, VerificationMethod,
)

router = APIRouter(tags=["attendance"])

def decode_image(image: str) -> bytes:
    """Accepts raw base64 or a data URL."""
    raw = image.split(",", 1)[1] if image.startswith("data:") else image
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        raise Malformed("Image must be base64 encoded")

async def _rate_limit(claims: dict, route_key: str):
    caller = str(claims["sub"])
    if not await allow_request(caller, route_key):
        raise HTTPException(status_code=429, detail="Too many requests",
                            headers={"Retry-After": str(await retry_after(caller, route_key))})

# --- Members prove presence; all three share the dispatcher pipeline
@router.post("/sessions/{session_id}/mark/face", response_model=AttendanceEntry)
async def mark_face(session_id: uuid.UUID, payload: MarkFace, claims: dict = Depends(get_claims),
                    svc: Services = Depends(get_services)):
    await _rate_limit(claims, "attendance.mark")
    if payload.descriptor is not None:
        face = payload.descriptor
    elif payload.image:
        face = decode_image(payload.image)
    else:
        raise Malformed("Provide a face descriptor or an image")
    return await svc.dispatcher.mark(session_id, caller_id(claims), VerificationMethod.FACE, face, payload.location)

@router.post("/sessions/{session_id}/mark/qr", response_model=AttendanceEntry)
async def mark_qr(session_id: uuid.UUID, payload: MarkQR, claims: dict = Depends(get_claims),
                  svc: Services = Depends(get_services)):
    await _rate_limit(claims, "attendance.mark")
    return await svc.dispatcher.mark(session_id, caller_id(claims), VerificationMethod.QR, payload.token, payload.location)

@router.post("/sessions/{session_id}/mark/nfc", response_model=AttendanceEntry)
async def mark_nfc(session_id: uuid.UUID, payload: MarkNFC, claims: dict = Depends(get_claims),
                   svc: Services = Depends(get_services)):
    await _rate_limit(claims, "attendance.mark")
    return await svc.dispatcher.mark(session_id, caller_id(claims), VerificationMethod.NFC, payload.nfc_id, payload.location)

def _read(r) -> RecordRead:
    return RecordRead(
        id=r.id, session_id=r.session_id, group_id=r.group_id, member_id=r.member_id, method=r.method,
        status=r.status, marked_at=r.marked_at, geofence_checked=r.geofence_checked,
        geofence_passed=r.geofence_passed, latitude=r.latitude, longitude=r.longitude,
    )

# --- Reports: group owner sees the group, everyone else only their own rows
@router.get("/attendance/reports", response_model=list[RecordRead])
async def reports(
    group_id: uuid.UUID | None = None,
    member_id: uuid.UUID | None = None,
    session_id: uuid.UUID | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    claims: dict = Depends(get_claims),
    svc: Services = Depends(get_services),
):
    uid = caller_id(claims)
    owns_group = group_id is not None and await svc.directory.owner_of(group_id) == uid
    if not owns_group:
        if member_id is not None and member_id != uid:
            raise NotAuthorized("Only the group owner can view other members' records")
        member_id = uid
    rows = await svc.records.list_records(
        group_id=group_id, member_id=member_id, session_id=session_id, start=start, end=end
    )
    return [_read(r) for r in rows]

@router.get("/attendance/users/me", response_model=list[RecordRead])
async def my_attendance(claims: dict = Depends(get_claims), svc: Services = Depends(get_services)):
    rows = await svc.records.list_records(member_id=caller_id(claims))
    return [_read(r) for r in rows]

# --- Analytics: counts by status and method over an optional date range
@router.get("/attendance/analytics/groups/{group_id}", response_model=GroupAnalytics)
async def group_analytics(
    group_id: uuid.UUID,
    start: datetime | None = None,
    end: datetime | None = None,
    claims: dict = Depends(get_claims),
    svc: Services = Depends(get_services),
):
    owner = await svc.directory.owner_of(group_id)
    if owner is None:
        raise NotFound("Group not found")
    if owner != caller_id(claims):
        raise NotAuthorized("Only the group owner can view group analytics")
    return await svc.analytics.group_summary(group_id, start=start, end=end)

@router.get("/attendance/analytics/members/{member_id}", response_model=MemberAnalytics)
async def member_analytics(
    member_id: uuid.UUID,
    group_id: uuid.UUID | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    claims: dict = Depends(get_claims),
    svc: Services = Depends(get_services),
):
    uid = caller_id(claims)
    if member_id != uid:
        # owners may look at a member, scoped to their own group
        if group_id is None or await svc.directory.owner_of(group_id) != uid:
            raise NotAuthorized("Only the member or their group owner can view these analytics")
    return await svc.analytics.member_summary(member_id, group_id=group_id, start=start, end=end)
