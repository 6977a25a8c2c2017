from __future__ import annotations
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Awaitable, TypeVar
from sqlalchemy import distinct, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import StorageConflict, StorageUnavailable
from ..models import AttendanceRecord
from ..schemas import AttendanceEntry, RecordStatus, Session

logger = logging.getLogger(__name__)

T = TypeVar("T")

async def storage_call(aw: Awaitable[T], *, timeout: float, op: str) -> T:
    """Run one storage operation with a deadline; failures become typed errors."""
    try:
        return await asyncio.wait_for(aw, timeout=timeout)
    except IntegrityError:
        raise
    except asyncio.TimeoutError:
        logger.error("storage timeout after %.1fs: %s", timeout, op)
        raise StorageUnavailable(f"Storage timed out during {op}")
    except (SQLAlchemyError, OSError) as e:
        logger.error("storage failure during %s: %s", op, e)
        raise StorageUnavailable(f"Storage failure during {op}")


class SqlRecordStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession], *, timeout: float = 5.0):
        self._session_maker = session_maker
        self.timeout = timeout

    async def create_record(
        self, session: Session, entry: AttendanceEntry, status: RecordStatus = RecordStatus.PRESENT
    ) -> uuid.UUID:
        """Insert the durable record for one entry. Never retried here."""
        async def _insert() -> uuid.UUID:
            async with self._session_maker() as db:
                obj = AttendanceRecord(
                    session_id=session.id,
                    group_id=session.group_id,
                    member_id=entry.member_id,
                    method=entry.method.value,
                    status=status.value,
                    marked_at=entry.marked_at,
                    geofence_checked=entry.geofence_checked,
                    geofence_passed=entry.geofence_passed,
                    latitude=entry.location.latitude if entry.location else None,
                    longitude=entry.location.longitude if entry.location else None,
                )
                db.add(obj)
                await db.commit()
                return obj.id

        try:
            return await storage_call(_insert(), timeout=self.timeout, op="create_record")
        except IntegrityError:
            raise StorageConflict()

    @staticmethod
    def _where(q, group_id, member_id, session_id, start, end):
        if group_id is not None:
            q = q.where(AttendanceRecord.group_id == group_id)
        if member_id is not None:
            q = q.where(AttendanceRecord.member_id == member_id)
        if session_id is not None:
            q = q.where(AttendanceRecord.session_id == session_id)
        if start is not None:
            q = q.where(AttendanceRecord.marked_at >= start)
        if end is not None:
            q = q.where(AttendanceRecord.marked_at <= end)
        return q

    async def list_records(
        self,
        *,
        group_id: uuid.UUID | None = None,
        member_id: uuid.UUID | None = None,
        session_id: uuid.UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AttendanceRecord]:
        q = self._where(select(AttendanceRecord), group_id, member_id, session_id, start, end)
        q = q.order_by(AttendanceRecord.marked_at.desc())

        async def _query() -> list[AttendanceRecord]:
            async with self._session_maker() as db:
                return list((await db.execute(q)).scalars().all())

        return await storage_call(_query(), timeout=self.timeout, op="list_records")

    async def count_by(
        self,
        *keys: str,
        group_id: uuid.UUID | None = None,
        member_id: uuid.UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[tuple]:
        """Record counts grouped by the named columns, e.g. ``count_by("member_id", "status")``.

        Each row is the key values followed by the count.
        """
        cols = [getattr(AttendanceRecord, k) for k in keys]
        q = select(*cols, func.count(AttendanceRecord.id)).group_by(*cols)
        q = self._where(q, group_id, member_id, None, start, end)

        async def _query() -> list[tuple]:
            async with self._session_maker() as db:
                return [tuple(row) for row in (await db.execute(q)).all()]

        return await storage_call(_query(), timeout=self.timeout, op="count_by")

    async def count_sessions(
        self,
        *,
        group_id: uuid.UUID | None = None,
        member_id: uuid.UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        """Distinct sessions with at least one matching record."""
        q = select(func.count(distinct(AttendanceRecord.session_id)))
        q = self._where(q, group_id, member_id, None, start, end)

        async def _query() -> int:
            async with self._session_maker() as db:
                return int((await db.execute(q)).scalar_one())

        return await storage_call(_query(), timeout=self.timeout, op="count_sessions")
