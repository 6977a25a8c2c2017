import tempfile
import unittest
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from attendance_svc.core.config import get_settings
from attendance_svc.db import init_db
from attendance_svc.deps import build_services

DESCRIPTOR_LEN = 128


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def descriptor(value=0.1):
    return [value] * DESCRIPTOR_LEN


def make_engine(tmpdir):
    # NullPool: connections never outlive the event loop that opened them
    return create_async_engine(f"sqlite+aiosqlite:///{tmpdir}/attendance.db", poolclass=NullPool)


class ServiceTestCase(unittest.IsolatedAsyncioTestCase):
    """Fresh database and service graph per test, with one group of two members."""

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.engine = make_engine(self.tmp.name)
        await init_db(self.engine)
        self.session_maker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        self.clock = FakeClock()
        self.svc = build_services(self.session_maker, get_settings(), clock=self.clock)

        self.owner = uuid.uuid4()
        self.alice = uuid.uuid4()
        self.bob = uuid.uuid4()
        self.outsider = uuid.uuid4()
        group = await self.svc.directory.create_group(
            owner_id=self.owner, name="CS101", code="CS101", member_ids=[self.alice, self.bob]
        )
        self.group_id = group.id

    async def asyncTearDown(self):
        self.svc.events.close_all()
        await self.engine.dispose()
        self.tmp.cleanup()
