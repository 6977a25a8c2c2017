from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict
from fastapi import Header, HTTPException, status
import time
import uuid
import httpx
import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db import async_session_maker
from .core.config import Settings, get_settings
from .core.face import FaceMatcher
from .core.qr import QRTokenService
from .models import utcnow
from .services.analytics import AttendanceAnalytics
from .services.directory import SqlDirectory
from .services.dispatcher import VerificationDispatcher
from .services.events import EventBus, Forwarder
from .services.identity import IdentityResolver
from .services.records import SqlRecordStore
from .services.sessions import SessionStore

settings = get_settings()

_JWKS: Dict[str, Any] | None = None
_JWKS_TS: float = 0.0
_JWKS_TTL: int = 3600

async def fetch_jwks() -> Dict[str, Any]:
    global _JWKS, _JWKS_TS
    now = time.time()
    if _JWKS is None or (now - _JWKS_TS) > _JWKS_TTL:
        async with httpx.AsyncClient() as client:
            r = await client.get(settings.auth_jwks_url, timeout=5.0)
            r.raise_for_status()
            _JWKS = r.json()
            _JWKS_TS = now
    return _JWKS

async def get_signing_key():
    from jwt.algorithms import RSAAlgorithm
    jwks = await fetch_jwks()
    key = jwks["keys"][0]
    return RSAAlgorithm.from_jwk(key)

async def get_claims(authorization: str | None = Header(default=None)) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        key = await get_signing_key()
    except httpx.HTTPError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auth keys unavailable")
    try:
        payload = jwt.decode(token, key=key, algorithms=["RS256"], issuer=settings.token_issuer,
                             options={"verify_aud": False})
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if "sub" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    try:
        uuid.UUID(str(payload["sub"]))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    return payload

def caller_id(claims: Dict[str, Any]) -> uuid.UUID:
    return uuid.UUID(str(claims["sub"]))

# --- verification core wiring ---

@dataclass
class Services:
    directory: SqlDirectory
    records: SqlRecordStore
    events: EventBus
    qr: QRTokenService
    sessions: SessionStore
    identity: IdentityResolver
    dispatcher: VerificationDispatcher
    analytics: AttendanceAnalytics

def build_services(
    session_maker: async_sessionmaker[AsyncSession],
    cfg: Settings,
    *,
    clock: Callable[[], datetime] = utcnow,
    forwarder: Forwarder | None = None,
) -> Services:
    directory = SqlDirectory(session_maker, timeout=cfg.storage_timeout_seconds)
    records = SqlRecordStore(session_maker, timeout=cfg.storage_timeout_seconds)
    events = EventBus(queue_size=cfg.event_queue_size, forwarder=forwarder)
    qr = QRTokenService(cfg.qr_secret_effective, ttl_minutes=cfg.qr_ttl_minutes, clock=clock)
    sessions = SessionStore(directory, qr, events, clock=clock)
    identity = IdentityResolver(directory)
    dispatcher = VerificationDispatcher(
        sessions, directory, records, events, qr, identity,
        matcher=FaceMatcher(cfg.face_match_threshold),
        geofence_radius_m=cfg.geofence_radius_m,
        descriptor_length=cfg.face_descriptor_length,
        clock=clock,
    )
    analytics = AttendanceAnalytics(directory, records)
    return Services(directory, records, events, qr, sessions, identity, dispatcher, analytics)

_services: Services | None = None

def get_services() -> Services:
    global _services
    if _services is None:
        forwarder = None
        if settings.enable_nats_events:
            from .core.nats import publish_event
            forwarder = publish_event
        _services = build_services(async_session_maker, settings, forwarder=forwarder)
    return _services
