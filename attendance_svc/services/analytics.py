"""
Attendance summaries built from the durable records: status counts, method
usage and per-member or per-group breakdowns over an optional date range.
"""
from __future__ import annotations
import uuid
from collections import defaultdict
from datetime import datetime

from ..core.errors import NotFound
from ..schemas import (
    GroupAnalytics, GroupBreakdown, MemberAnalytics, MemberStats, RecordStatus, StatusCounts, VerificationMethod,
)
from .directory import SqlDirectory
from .records import SqlRecordStore

MARK_METHODS = (VerificationMethod.FACE, VerificationMethod.QR, VerificationMethod.NFC)


def _tally(counts: StatusCounts, status: str, n: int) -> None:
    counts.total += n
    if status in (RecordStatus.PRESENT.value, RecordStatus.ABSENT.value, RecordStatus.LATE.value):
        setattr(counts, status, getattr(counts, status) + n)


def _with_percentage(stats: MemberStats) -> MemberStats:
    stats.percentage = round(stats.present / stats.total * 100, 2) if stats.total else 0.0
    return stats


class AttendanceAnalytics:
    def __init__(self, directory: SqlDirectory, records: SqlRecordStore):
        self._directory = directory
        self._records = records

    async def group_summary(
        self, group_id: uuid.UUID, *, start: datetime | None = None, end: datetime | None = None
    ) -> GroupAnalytics:
        group, member_ids = await self._directory.get_group(group_id)
        window = dict(group_id=group_id, start=start, end=end)

        summary = StatusCounts()
        members = {mid: MemberStats() for mid in member_ids}
        for member_id, status, n in await self._records.count_by("member_id", "status", **window):
            _tally(summary, status, n)
            # records outlive membership; former members still show up
            _tally(members.setdefault(member_id, MemberStats()), status, n)

        methods = {m.value: 0 for m in MARK_METHODS}
        for method, n in await self._records.count_by("method", **window):
            methods[method] = methods.get(method, 0) + n

        return GroupAnalytics(
            group_id=group.id,
            name=group.name,
            code=group.code,
            total_sessions=await self._records.count_sessions(**window),
            total_members=len(member_ids),
            summary=summary,
            methods=methods,
            members={mid: _with_percentage(s) for mid, s in members.items()},
        )

    async def member_summary(
        self,
        member_id: uuid.UUID,
        *,
        group_id: uuid.UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> MemberAnalytics:
        summary = MemberStats()
        per_group: dict[uuid.UUID, MemberStats] = defaultdict(MemberStats)
        rows = await self._records.count_by("group_id", "status", member_id=member_id, group_id=group_id,
                                            start=start, end=end)
        for gid, status, n in rows:
            _tally(summary, status, n)
            _tally(per_group[gid], status, n)

        groups = []
        for gid, stats in sorted(per_group.items(), key=lambda kv: str(kv[0])):
            try:
                group, _ = await self._directory.get_group(gid)
                name, code = group.name, group.code
            except NotFound:
                name = code = None
            groups.append(GroupBreakdown(group_id=gid, name=name, code=code,
                                         **_with_percentage(stats).model_dump()))

        return MemberAnalytics(member_id=member_id, summary=_with_percentage(summary), groups=groups)
