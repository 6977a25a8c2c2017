from __future__ import annotations
import asyncio
import logging
import numbers
import uuid
from datetime import datetime
from typing import Any, Callable, Sequence

from ..core import geo
from ..core.errors import (
    AlreadyMarked, AttendanceError, FaceNotRegistered, LocationMismatch, Malformed, MethodNotAllowed,
    NotEnrolled, QR_FAILURES, SessionClosed, VerificationFailed,
)
from ..core.face import FaceEngine, FaceMatcher, face_engine
from ..core.logging_config import audit_logger
from ..core.qr import QRTokenService
from ..models import Member, utcnow
from ..schemas import AttendanceEntry, AttendanceMarked, GeoPoint, Session, SessionStatus, VerificationMethod
from .directory import SqlDirectory
from .events import EventBus
from .identity import IdentityResolver
from .records import SqlRecordStore
from .sessions import SessionHandle, SessionStore

logger = logging.getLogger(__name__)

DEFAULT_GEOFENCE_RADIUS_M = 100.0


class VerificationDispatcher:
    """Routes a marking attempt to its verifier and commits it.

    Every check and the commit run under the session's lock, so two attempts
    for one session never interleave; the event goes out after the lock is
    released.
    """

    def __init__(
        self,
        store: SessionStore,
        directory: SqlDirectory,
        records: SqlRecordStore,
        events: EventBus,
        qr: QRTokenService,
        identity: IdentityResolver,
        *,
        matcher: FaceMatcher | None = None,
        engine: FaceEngine = face_engine,
        geofence_radius_m: float = DEFAULT_GEOFENCE_RADIUS_M,
        descriptor_length: int | None = 128,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._directory = directory
        self._records = records
        self._events = events
        self._qr = qr
        self._identity = identity
        self._matcher = matcher or FaceMatcher()
        self._engine = engine
        self.geofence_radius_m = geofence_radius_m
        self.descriptor_length = descriptor_length
        self._clock = clock

    async def mark(
        self,
        session_id: uuid.UUID,
        requester_id: uuid.UUID,
        method: VerificationMethod | str,
        payload: Any,
        location: GeoPoint | None = None,
    ) -> AttendanceEntry:
        try:
            method = self._parse_method(method)
            if method == VerificationMethod.FACE and isinstance(payload, (bytes, bytearray)):
                # extraction is slow; reject what the cheap checks can before queueing on the lock
                await self._precheck(self._store.get(session_id), requester_id, method)
                payload = await asyncio.to_thread(self._engine.extract, bytes(payload))
            async with self._store.locked(session_id) as handle:
                entry = await self._verify_and_commit(handle, requester_id, method, payload, location)
        except AttendanceError as e:
            audit_logger.log_rejected(session_id, requester_id, getattr(method, "value", method), e.code)
            raise

        self._events.publish(session_id, AttendanceMarked(
            session_id=session_id, member_id=entry.member_id, method=entry.method, timestamp=entry.marked_at,
        ))
        audit_logger.log_attendance_marked(session_id, entry.member_id, method.value)
        return entry

    @staticmethod
    def _parse_method(method: VerificationMethod | str) -> VerificationMethod:
        try:
            return VerificationMethod(method)
        except ValueError:
            raise MethodNotAllowed(f"Unknown verification method: {method}")

    @staticmethod
    def _gate(s: Session, method: VerificationMethod) -> None:
        if s.status != SessionStatus.ACTIVE:
            raise SessionClosed()
        if method == VerificationMethod.HYBRID:
            raise MethodNotAllowed("Choose face, qr or nfc to mark attendance")
        if s.method != VerificationMethod.HYBRID and s.method != method:
            raise MethodNotAllowed(f"Session accepts {s.method.value} verification only")

    async def _precheck(self, s: Session, member_id: uuid.UUID, method: VerificationMethod) -> None:
        self._gate(s, method)
        if not await self._directory.is_member(s.group_id, member_id):
            raise NotEnrolled()
        if s.has_entry(member_id):
            raise AlreadyMarked()

    async def _verify_and_commit(
        self,
        handle: SessionHandle,
        requester_id: uuid.UUID,
        method: VerificationMethod,
        payload: Any,
        location: GeoPoint | None,
    ) -> AttendanceEntry:
        s = handle.session
        self._gate(s, method)

        subject = requester_id
        if method == VerificationMethod.NFC:
            if not isinstance(payload, str) or not payload.strip():
                raise Malformed("NFC tag id is required")
            # tag-bound: the tag owner is marked, whoever presents it
            subject = await self._identity.resolve_by_tag(payload)
            audit_logger.log_tag_bound_mark(s.id, requester_id, subject)

        if not await self._directory.is_member(s.group_id, subject):
            raise NotEnrolled()
        if s.has_entry(subject):
            raise AlreadyMarked()

        if method == VerificationMethod.FACE:
            await self._verify_face(subject, payload)
        elif method == VerificationMethod.QR:
            self._verify_qr(s, payload)

        checked, passed = self._check_geofence(s, location)

        entry = AttendanceEntry(
            member_id=subject,
            marked_at=self._clock(),
            method=method,
            geofence_checked=checked,
            geofence_passed=passed,
            location=location,
        )
        # durable record first: a storage failure must leave the session untouched
        await self._records.create_record(s, entry)
        handle.append(entry)
        return entry

    def _validate_descriptor(self, descriptor: Any) -> list[float]:
        if not isinstance(descriptor, Sequence) or isinstance(descriptor, (str, bytes)):
            raise Malformed("Face descriptor must be a list of numbers")
        if not all(isinstance(x, numbers.Real) for x in descriptor):
            raise Malformed("Face descriptor must be a list of numbers")
        if self.descriptor_length and len(descriptor) != self.descriptor_length:
            raise Malformed(f"Face descriptor must have {self.descriptor_length} values")
        return [float(x) for x in descriptor]

    async def _verify_face(self, member_id: uuid.UUID, payload: Any) -> None:
        stored = await self._directory.get_face_descriptor(member_id)
        if not stored:
            raise FaceNotRegistered()
        captured = self._validate_descriptor(payload)
        if not self._matcher.verify(captured, stored):
            raise VerificationFailed("Face verification failed. Please ensure you are the registered member.")

    def _verify_qr(self, s: Session, payload: Any) -> None:
        token = s.qr_token
        if token is None:
            raise Malformed("QR code not available for this session")
        result = self._qr.verify(payload, token.code, token.expires_at, s.id)
        if not result.valid:
            raise QR_FAILURES[result.reason]()

    def _check_geofence(self, s: Session, location: GeoPoint | None) -> tuple[bool, bool]:
        if s.geofence is None or location is None:
            return False, False
        if not geo.within_radius(s.geofence, location, self.geofence_radius_m):
            logger.info("geofence rejected on session %s (radius %.1fm)", s.id, self.geofence_radius_m)
            raise LocationMismatch()
        return True, True

    async def register_face(self, member_id: uuid.UUID, payload: Any) -> Member:
        """Store a member's reference descriptor (list of numbers or raw image bytes)."""
        if isinstance(payload, (bytes, bytearray)):
            payload = await asyncio.to_thread(self._engine.extract, bytes(payload))
        descriptor = self._validate_descriptor(payload)
        member = await self._directory.set_face_descriptor(member_id, descriptor)
        logger.info("face descriptor registered for member %s", member_id)
        return member
