from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Any, Callable, Dict
import base64
import secrets
import uuid
import jwt
import qrcode

from ..schemas import QRToken

QR_AUD = "session-attendance"
QR_ISS = "attendance-svc"

def _now() -> datetime:
    return datetime.now(timezone.utc)

def _random_code() -> str:
    return secrets.token_urlsafe(24)


@dataclass(frozen=True)
class QRVerification:
    valid: bool
    reason: str | None = None  # code_mismatch | expired | malformed

    @classmethod
    def ok(cls) -> "QRVerification":
        return cls(True)

    @classmethod
    def invalid(cls, reason: str) -> "QRVerification":
        return cls(False, reason)


class QRTokenService:
    """Issues session-bound QR tokens and checks presented ones.

    The signed payload only proves the token came from this service; acceptance
    is decided against the code and expiry held by the session itself.
    """

    def __init__(
        self,
        secret: str,
        *,
        ttl_minutes: int = 15,
        clock: Callable[[], datetime] = _now,
        random_source: Callable[[], str] = _random_code,
    ):
        self._secret = secret
        self.ttl_minutes = ttl_minutes
        self._clock = clock
        self._random = random_source

    def issue(self, session_id: uuid.UUID, ttl_minutes: int | None = None) -> QRToken:
        now = self._clock()
        if ttl_minutes is None:
            ttl_minutes = self.ttl_minutes
        exp = now + timedelta(minutes=ttl_minutes)
        code = self._random()
        payload: Dict[str, Any] = {
            "aud": QR_AUD,
            "iss": QR_ISS,
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
            "scope": "attendance",
            "sid": str(session_id),
            "code": code,
        }
        token = jwt.encode(payload, self._secret, algorithm="HS256")
        return QRToken(session_id=session_id, code=code, expires_at=exp, payload=token)

    def decode(self, presented: str) -> Dict[str, Any]:
        # time claims are checked against the session expiry with the injected clock
        payload = jwt.decode(
            presented,
            self._secret,
            algorithms=["HS256"],
            audience=QR_AUD,
            issuer=QR_ISS,
            options={"verify_exp": False, "verify_iat": False, "require": ["aud", "iss", "sid", "code"]},
        )
        if payload.get("scope") != "attendance":
            raise jwt.InvalidTokenError("invalid scope")
        if not isinstance(payload.get("code"), str) or not isinstance(payload.get("sid"), str):
            raise jwt.InvalidTokenError("invalid claim types")
        return payload

    def verify(
        self,
        presented: str | None,
        expected: str,
        expiry: datetime,
        session_id: uuid.UUID | None = None,
    ) -> QRVerification:
        if not presented or not isinstance(presented, str):
            return QRVerification.invalid("malformed")
        try:
            data = self.decode(presented)
        except jwt.InvalidTokenError:
            return QRVerification.invalid("malformed")

        if not secrets.compare_digest(data["code"].encode("utf-8"), expected.encode("utf-8")):
            return QRVerification.invalid("code_mismatch")
        # redundant check: the request path decides the session, never the token body
        if session_id is not None and data["sid"] != str(session_id):
            return QRVerification.invalid("code_mismatch")
        if self._clock() > expiry:
            return QRVerification.invalid("expired")
        return QRVerification.ok()


def render_png(payload: str) -> bytes:
    img = qrcode.make(payload)
    b = BytesIO(); img.save(b, format="PNG")
    return b.getvalue()

def render_data_url(payload: str) -> str:
    return "data:image/png;base64," + base64.b64encode(render_png(payload)).decode("ascii")
