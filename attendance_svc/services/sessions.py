from __future__ import annotations
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable

from ..core.errors import DuplicateEntry, MethodNotAllowed, NotAuthorized, NotFound, SessionClosed
from ..core.logging_config import audit_logger
from ..core.qr import QRTokenService
from ..models import utcnow
from ..schemas import (
    AttendanceEntry, GeoPoint, QRToken, Session, SessionClosedEvent, SessionStatus, VerificationMethod,
)
from .directory import SqlDirectory
from .events import EventBus

logger = logging.getLogger(__name__)

QR_METHODS = (VerificationMethod.QR, VerificationMethod.HYBRID)


@dataclass
class _Slot:
    session: Session
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SessionHandle:
    """Live view of a session while its lock is held."""

    def __init__(self, slot: _Slot):
        self._slot = slot

    @property
    def session(self) -> Session:
        return self._slot.session

    def append(self, entry: AttendanceEntry) -> Session:
        s = self._slot.session
        if s.status != SessionStatus.ACTIVE:
            raise SessionClosed()
        if s.has_entry(entry.member_id):
            raise DuplicateEntry()
        s.attendance.append(entry)
        return s.model_copy(deep=True)


class SessionStore:
    """Sole owner of session state; every mutation runs under that session's lock."""

    def __init__(
        self,
        directory: SqlDirectory,
        qr: QRTokenService,
        events: EventBus,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._directory = directory
        self._qr = qr
        self._events = events
        self._clock = clock
        self._slots: dict[uuid.UUID, _Slot] = {}

    def _slot(self, session_id: uuid.UUID) -> _Slot:
        slot = self._slots.get(session_id)
        if slot is None:
            raise NotFound("Session not found")
        return slot

    async def open(
        self,
        group_id: uuid.UUID,
        authority_id: uuid.UUID,
        method: VerificationMethod,
        duration_minutes: int = 60,
        geofence: GeoPoint | None = None,
    ) -> Session:
        owner = await self._directory.owner_of(group_id)
        if owner is None:
            raise NotFound("Group not found")
        if owner != authority_id:
            raise NotAuthorized("Not authorized to create session for this group")

        session = Session(
            id=uuid.uuid4(),
            group_id=group_id,
            authority_id=authority_id,
            method=method,
            started_at=self._clock(),
            duration_minutes=duration_minutes,
            geofence=geofence,
        )
        if method in QR_METHODS:
            session.qr_token = self._qr.issue(session.id, duration_minutes)

        self._slots[session.id] = _Slot(session)
        audit_logger.log_session_opened(session.id, group_id, authority_id, method.value)
        return session.model_copy(deep=True)

    def get(self, session_id: uuid.UUID) -> Session:
        return self._slot(session_id).session.model_copy(deep=True)

    def list_sessions(self, *, group_id: uuid.UUID | None = None, active_only: bool = False) -> list[Session]:
        out = []
        for slot in list(self._slots.values()):
            s = slot.session
            if group_id is not None and s.group_id != group_id:
                continue
            if active_only and s.status != SessionStatus.ACTIVE:
                continue
            out.append(s.model_copy(deep=True))
        return out

    @asynccontextmanager
    async def locked(self, session_id: uuid.UUID) -> AsyncIterator[SessionHandle]:
        slot = self._slot(session_id)
        async with slot.lock:
            yield SessionHandle(slot)

    async def append_entry(self, session_id: uuid.UUID, entry: AttendanceEntry) -> Session:
        async with self.locked(session_id) as handle:
            return handle.append(entry)

    async def rotate_qr(self, session_id: uuid.UUID, authority_id: uuid.UUID, ttl_minutes: int | None = None) -> QRToken:
        async with self.locked(session_id) as handle:
            s = handle.session
            if s.authority_id != authority_id:
                raise NotAuthorized()
            if s.method not in QR_METHODS:
                raise MethodNotAllowed("Session does not use QR verification")
            if s.status != SessionStatus.ACTIVE:
                raise SessionClosed()
            s.qr_token = self._qr.issue(s.id, ttl_minutes)
            logger.info("qr token rotated for session %s (expires %s)", s.id, s.qr_token.expires_at.isoformat())
            return s.qr_token.model_copy()

    def _complete(self, s: Session, closed_by: uuid.UUID | None) -> SessionClosedEvent:
        s.status = SessionStatus.COMPLETED
        s.ended_at = self._clock()
        s.closed_by = closed_by
        audit_logger.log_session_closed(s.id, closed_by, len(s.attendance))
        return SessionClosedEvent(session_id=s.id, ended_at=s.ended_at)

    async def close(self, session_id: uuid.UUID, authority_id: uuid.UUID) -> Session:
        async with self.locked(session_id) as handle:
            s = handle.session
            if s.authority_id != authority_id:
                raise NotAuthorized()
            if s.status != SessionStatus.ACTIVE:
                raise SessionClosed("Session already completed")
            event = self._complete(s, authority_id)
            snapshot = s.model_copy(deep=True)
        self._events.publish(session_id, event)
        return snapshot

    async def close_overdue(self, now: datetime | None = None) -> list[Session]:
        """Close every active session whose planned duration has elapsed."""
        now = now or self._clock()
        closed = []
        for session_id, slot in list(self._slots.items()):
            s = slot.session
            if s.status != SessionStatus.ACTIVE:
                continue
            if s.started_at + timedelta(minutes=s.duration_minutes) > now:
                continue
            async with slot.lock:
                if s.status != SessionStatus.ACTIVE:
                    continue
                event = self._complete(s, None)
                closed.append(s.model_copy(deep=True))
            self._events.publish(session_id, event)
        return closed

    def discard(self, session_id: uuid.UUID) -> None:
        """Drop a completed session from memory; durable records are untouched."""
        s = self._slot(session_id).session
        if s.status == SessionStatus.ACTIVE:
            raise SessionClosed("Active sessions cannot be discarded")
        del self._slots[session_id]

    def purge_completed(self, retention: timedelta, now: datetime | None = None) -> list[uuid.UUID]:
        """Discard completed sessions that ended more than ``retention`` ago."""
        now = now or self._clock()
        purged = []
        for session_id, slot in list(self._slots.items()):
            s = slot.session
            if s.status == SessionStatus.COMPLETED and s.ended_at is not None and s.ended_at + retention <= now:
                self.discard(session_id)
                purged.append(session_id)
        if purged:
            logger.info("purged %d completed session(s) from memory", len(purged))
        return purged
