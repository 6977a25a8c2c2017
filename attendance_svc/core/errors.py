from __future__ import annotations


class AttendanceError(Exception):
    """Base of every failure the verification core reports to callers."""

    code = "error"
    status_code = 400
    message = "Attendance request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.detail = message or self.message

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code}


class NotFound(AttendanceError):
    code = "not_found"
    status_code = 404
    message = "Not found"

class NotAuthorized(AttendanceError):
    code = "not_authorized"
    status_code = 403
    message = "Not authorized"

class SessionClosed(AttendanceError):
    code = "session_closed"
    status_code = 409
    message = "Session is not active"

class NotEnrolled(AttendanceError):
    code = "not_enrolled"
    status_code = 403
    message = "Member is not enrolled in this group"

class AlreadyMarked(AttendanceError):
    code = "already_marked"
    status_code = 409
    message = "Attendance already marked"

class DuplicateEntry(AlreadyMarked):
    code = "duplicate_entry"
    message = "Member already has an entry in this session"

class MethodNotAllowed(AttendanceError):
    code = "method_not_allowed"
    status_code = 400
    message = "Verification method not accepted by this session"

# --- face ---

class FaceNotRegistered(AttendanceError):
    code = "face_not_registered"
    status_code = 400
    message = "Face not registered. Please register your face first."

class NoFaceDetected(AttendanceError):
    code = "no_face_detected"
    status_code = 422
    message = "No face detected in image"

class FaceEngineNotReady(AttendanceError):
    code = "face_engine_not_ready"
    status_code = 503
    message = "Face descriptor extraction is not available"

class VerificationFailed(AttendanceError):
    code = "verification_failed"
    status_code = 401
    message = "Face verification failed"

# --- qr ---

class QRVerificationError(AttendanceError):
    status_code = 401

class CodeMismatch(QRVerificationError):
    code = "code_mismatch"
    message = "Invalid QR code"

class Expired(QRVerificationError):
    code = "expired"
    message = "QR code has expired"

class Malformed(QRVerificationError):
    code = "malformed"
    status_code = 400
    message = "Invalid QR code format"

# --- nfc / geofence ---

class UnknownTag(AttendanceError):
    code = "unknown_tag"
    status_code = 404
    message = "NFC ID not found"

class LocationMismatch(AttendanceError):
    code = "location_mismatch"
    status_code = 403
    message = "Location mismatch. You must be at the session location to mark attendance."

# --- storage ---

class StorageConflict(AttendanceError):
    code = "storage_conflict"
    status_code = 409
    message = "Attendance record already exists"

class StorageUnavailable(AttendanceError):
    code = "storage_unavailable"
    status_code = 503
    message = "Attendance storage unavailable"


QR_FAILURES: dict[str, type[QRVerificationError]] = {
    "code_mismatch": CodeMismatch,
    "expired": Expired,
    "malformed": Malformed,
}
