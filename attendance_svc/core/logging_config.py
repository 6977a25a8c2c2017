"""
Logging setup for attendance-svc.

Console output always; rotating files (general + errors) when a log directory
is configured. Audit events go to the ``attendance.audit`` logger.
"""
from __future__ import annotations
import logging
import logging.handlers
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_level: str = "INFO", log_dir: str | None = None,
                  max_log_size: int = 10 * 1024 * 1024, backup_count: int = 5) -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            path / "attendance.log", maxBytes=max_log_size, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            path / "errors.log", maxBytes=max_log_size, backupCount=backup_count, encoding="utf-8"
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        root_logger.addHandler(error_handler)

    logging.getLogger("attendance.audit").setLevel(logging.INFO)
    root_logger.info("attendance-svc logging configured (level=%s, dir=%s)", log_level, log_dir or "-")


class AuditLogger:
    """Structured-ish audit trail for session lifecycle and marking."""

    def __init__(self):
        self.logger = logging.getLogger("attendance.audit")

    def log_session_opened(self, session_id, group_id, authority_id, method):
        self.logger.info(f"SESSION OPENED - Session: {session_id}, Group: {group_id}, "
                         f"Authority: {authority_id}, Method: {method}")

    def log_session_closed(self, session_id, closed_by=None, entries=0):
        by = closed_by if closed_by is not None else "sweep"
        self.logger.info(f"SESSION CLOSED - Session: {session_id}, By: {by}, Entries: {entries}")

    def log_attendance_marked(self, session_id, member_id, method):
        self.logger.info(f"ATTENDANCE MARKED - Session: {session_id}, Member: {member_id}, Method: {method}")

    def log_rejected(self, session_id, requester_id, method, code):
        self.logger.warning(f"ATTENDANCE REJECTED - Session: {session_id}, Requester: {requester_id}, "
                            f"Method: {method}, Reason: {code}")

    def log_tag_bound_mark(self, session_id, requester_id, member_id):
        # NFC marks are tag-bound: the caller and the marked member may differ
        if str(requester_id) != str(member_id):
            self.logger.warning(f"NFC PROXY MARK - Session: {session_id}, Requester: {requester_id}, "
                                f"Tag owner: {member_id}")


audit_logger = AuditLogger()
