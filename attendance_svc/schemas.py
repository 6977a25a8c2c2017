from __future__ import annotations
from enum import Enum
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

class VerificationMethod(str, Enum):
    FACE = "face"
    QR = "qr"
    NFC = "nfc"
    HYBRID = "hybrid"

class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"

class RecordStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"

class GeoPoint(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

# --- domain (in-memory session aggregate) ---

class QRToken(BaseModel):
    session_id: UUID
    code: str
    expires_at: datetime
    payload: str  # signed string the QR image encodes

class AttendanceEntry(BaseModel):
    member_id: UUID
    marked_at: datetime
    method: VerificationMethod
    geofence_checked: bool = False
    geofence_passed: bool = False
    location: GeoPoint | None = None

class Session(BaseModel):
    id: UUID
    group_id: UUID
    authority_id: UUID
    method: VerificationMethod
    status: SessionStatus = SessionStatus.ACTIVE
    started_at: datetime
    duration_minutes: int
    ended_at: datetime | None = None
    closed_by: UUID | None = None
    geofence: GeoPoint | None = None
    qr_token: QRToken | None = None
    attendance: list[AttendanceEntry] = Field(default_factory=list)

    def has_entry(self, member_id: UUID) -> bool:
        return any(e.member_id == member_id for e in self.attendance)

# --- events ---

class AttendanceMarked(BaseModel):
    type: str = "attendance_marked"
    session_id: UUID
    member_id: UUID
    method: VerificationMethod
    timestamp: datetime

class SessionClosedEvent(BaseModel):
    type: str = "session_closed"
    session_id: UUID
    ended_at: datetime

# --- API payloads ---

class SessionCreate(BaseModel):
    group_id: UUID
    method: VerificationMethod
    duration_minutes: int = Field(default=60, ge=1, le=24 * 60)
    geofence: GeoPoint | None = None

class SessionRead(BaseModel):
    id: UUID
    group_id: UUID
    authority_id: UUID
    method: VerificationMethod
    status: SessionStatus
    started_at: datetime
    duration_minutes: int
    ended_at: datetime | None = None
    geofence: GeoPoint | None = None
    qr_expires_at: datetime | None = None
    attendance: list[AttendanceEntry]

    @classmethod
    def from_session(cls, s: Session) -> "SessionRead":
        return cls(
            id=s.id, group_id=s.group_id, authority_id=s.authority_id, method=s.method,
            status=s.status, started_at=s.started_at, duration_minutes=s.duration_minutes,
            ended_at=s.ended_at, geofence=s.geofence,
            qr_expires_at=s.qr_token.expires_at if s.qr_token else None,
            attendance=s.attendance,
        )

class SessionOpenResponse(BaseModel):
    session: SessionRead
    qr_code: str | None = None  # data URL of the PNG, for qr/hybrid sessions
    qr_token: str | None = None

class QRCreateResponse(BaseModel):
    token: str
    expires_at: datetime
    qr_code: str

class MarkFace(BaseModel):
    descriptor: list[float] | None = None
    image: str | None = None  # base64, optionally a data URL
    location: GeoPoint | None = None

class MarkQR(BaseModel):
    token: str
    location: GeoPoint | None = None

class MarkNFC(BaseModel):
    nfc_id: str = Field(..., min_length=1, max_length=128)
    location: GeoPoint | None = None

class FaceRegister(BaseModel):
    descriptor: list[float] | None = None
    image: str | None = None

class NFCBind(BaseModel):
    nfc_id: str = Field(..., min_length=1, max_length=128)

class MemberRead(BaseModel):
    id: UUID
    name: str | None = None
    has_face: bool
    nfc_id: str | None = None

class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    code: str | None = Field(default=None, max_length=64)
    member_ids: list[UUID] = Field(default_factory=list)

class GroupMembersAdd(BaseModel):
    member_ids: list[UUID]

class GroupRead(BaseModel):
    id: UUID
    name: str
    code: str | None = None
    owner_id: UUID
    member_ids: list[UUID]

class RecordRead(BaseModel):
    id: UUID
    session_id: UUID
    group_id: UUID
    member_id: UUID
    method: VerificationMethod
    status: RecordStatus
    marked_at: datetime
    geofence_checked: bool
    geofence_passed: bool
    latitude: float | None = None
    longitude: float | None = None

# --- analytics ---

class StatusCounts(BaseModel):
    total: int = 0
    present: int = 0
    absent: int = 0
    late: int = 0

class MemberStats(StatusCounts):
    percentage: float = 0.0  # present / total records, 0 when there are none

class GroupBreakdown(MemberStats):
    group_id: UUID
    name: str | None = None
    code: str | None = None

class GroupAnalytics(BaseModel):
    group_id: UUID
    name: str
    code: str | None = None
    total_sessions: int
    total_members: int
    summary: StatusCounts
    methods: dict[str, int]
    members: dict[UUID, MemberStats]

class MemberAnalytics(BaseModel):
    member_id: UUID
    summary: MemberStats
    groups: list[GroupBreakdown]
