from __future__ import annotations
import uuid
from typing import Sequence
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import NotFound, StorageConflict
from ..models import Group, GroupMember, Member
from .records import storage_call


class SqlDirectory:
    """Group membership and member identity lookups over the relational store."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], *, timeout: float = 5.0):
        self._session_maker = session_maker
        self.timeout = timeout

    async def _call(self, aw, op: str, conflict: str | None = None):
        try:
            return await storage_call(aw, timeout=self.timeout, op=op)
        except IntegrityError:
            raise StorageConflict(conflict)

    # --- groups ---

    async def owner_of(self, group_id: uuid.UUID) -> uuid.UUID | None:
        async def _q():
            async with self._session_maker() as db:
                return (await db.execute(select(Group.owner_id).where(Group.id == group_id))).scalar_one_or_none()
        return await self._call(_q(), "owner_of")

    async def is_member(self, group_id: uuid.UUID, member_id: uuid.UUID) -> bool:
        async def _q():
            async with self._session_maker() as db:
                row = (await db.execute(
                    select(GroupMember.id).where(GroupMember.group_id == group_id, GroupMember.member_id == member_id)
                )).scalar_one_or_none()
                return row is not None
        return await self._call(_q(), "is_member")

    async def create_group(
        self, *, owner_id: uuid.UUID, name: str, code: str | None = None, member_ids: Sequence[uuid.UUID] = ()
    ) -> Group:
        async def _q():
            async with self._session_maker() as db:
                group = Group(owner_id=owner_id, name=name, code=code)
                db.add(group)
                await db.flush()
                for mid in dict.fromkeys(member_ids):
                    db.add(GroupMember(group_id=group.id, member_id=mid))
                await db.commit()
                await db.refresh(group)
                return group
        return await self._call(_q(), "create_group")

    async def add_members(self, group_id: uuid.UUID, member_ids: Sequence[uuid.UUID]) -> list[uuid.UUID]:
        async def _q():
            async with self._session_maker() as db:
                existing = set((await db.execute(
                    select(GroupMember.member_id).where(GroupMember.group_id == group_id)
                )).scalars().all())
                for mid in dict.fromkeys(member_ids):
                    if mid not in existing:
                        db.add(GroupMember(group_id=group_id, member_id=mid))
                        existing.add(mid)
                await db.commit()
                return sorted(existing, key=str)
        return await self._call(_q(), "add_members")

    async def get_group(self, group_id: uuid.UUID) -> tuple[Group, list[uuid.UUID]]:
        async def _q():
            async with self._session_maker() as db:
                group = (await db.execute(select(Group).where(Group.id == group_id))).scalar_one_or_none()
                if group is None:
                    return None
                members = (await db.execute(
                    select(GroupMember.member_id).where(GroupMember.group_id == group_id)
                )).scalars().all()
                return group, list(members)
        found = await self._call(_q(), "get_group")
        if found is None:
            raise NotFound("Group not found")
        return found

    # --- member identity ---

    async def ensure_member(self, member_id: uuid.UUID, name: str | None = None) -> Member:
        """Return the member row, creating it on first sight; a given name overwrites the stored one."""
        async def _q():
            async with self._session_maker() as db:
                member = (await db.execute(select(Member).where(Member.id == member_id))).scalar_one_or_none()
                if member is None:
                    member = Member(id=member_id, name=name)
                    db.add(member)
                elif name is not None:
                    member.name = name
                else:
                    return member
                await db.commit()
                await db.refresh(member)
                return member
        return await self._call(_q(), "ensure_member")

    async def get_member(self, member_id: uuid.UUID) -> Member | None:
        async def _q():
            async with self._session_maker() as db:
                return (await db.execute(select(Member).where(Member.id == member_id))).scalar_one_or_none()
        return await self._call(_q(), "get_member")

    async def get_face_descriptor(self, member_id: uuid.UUID) -> list[float] | None:
        member = await self.get_member(member_id)
        return member.face_descriptor if member else None

    async def set_face_descriptor(self, member_id: uuid.UUID, descriptor: Sequence[float]) -> Member:
        async def _q():
            async with self._session_maker() as db:
                member = (await db.execute(select(Member).where(Member.id == member_id))).scalar_one_or_none()
                if member is None:
                    member = Member(id=member_id)
                    db.add(member)
                member.face_descriptor = [float(x) for x in descriptor]
                await db.commit()
                await db.refresh(member)
                return member
        return await self._call(_q(), "set_face_descriptor")

    async def find_by_tag(self, nfc_id: str) -> uuid.UUID | None:
        async def _q():
            async with self._session_maker() as db:
                return (await db.execute(select(Member.id).where(Member.nfc_id == nfc_id))).scalar_one_or_none()
        return await self._call(_q(), "find_by_tag")

    async def bind_tag(self, member_id: uuid.UUID, nfc_id: str) -> Member:
        async def _q():
            async with self._session_maker() as db:
                member = (await db.execute(select(Member).where(Member.id == member_id))).scalar_one_or_none()
                if member is None:
                    member = Member(id=member_id)
                    db.add(member)
                member.nfc_id = nfc_id
                await db.commit()
                await db.refresh(member)
                return member
        return await self._call(_q(), "bind_tag", conflict="NFC tag already bound to another member")
