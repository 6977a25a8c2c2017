import unittest
import uuid

from attendance_svc.core.errors import NotFound, StorageConflict

from support import ServiceTestCase, descriptor


class TestSqlDirectory(ServiceTestCase):
    async def test_ensure_member_creates_once(self):
        carol = uuid.uuid4()
        first = await self.svc.directory.ensure_member(carol)
        self.assertEqual(first.id, carol)
        self.assertIsNone(first.name)

        await self.svc.directory.set_face_descriptor(carol, descriptor())
        again = await self.svc.directory.ensure_member(carol)
        self.assertEqual(again.face_descriptor, descriptor())

        renamed = await self.svc.directory.ensure_member(carol, name="Carol")
        self.assertEqual(renamed.name, "Carol")
        self.assertEqual((await self.svc.directory.ensure_member(carol)).name, "Carol")

    async def test_membership_and_ownership(self):
        self.assertEqual(await self.svc.directory.owner_of(self.group_id), self.owner)
        self.assertIsNone(await self.svc.directory.owner_of(uuid.uuid4()))
        self.assertTrue(await self.svc.directory.is_member(self.group_id, self.alice))
        self.assertFalse(await self.svc.directory.is_member(self.group_id, self.outsider))

    async def test_add_members_ignores_duplicates(self):
        members = await self.svc.directory.add_members(self.group_id, [self.alice, self.outsider, self.outsider])
        self.assertEqual(set(members), {self.alice, self.bob, self.outsider})
        _, stored = await self.svc.directory.get_group(self.group_id)
        self.assertEqual(len(stored), 3)

    async def test_get_group_unknown(self):
        with self.assertRaises(NotFound):
            await self.svc.directory.get_group(uuid.uuid4())

    async def test_tag_binding(self):
        await self.svc.directory.bind_tag(self.alice, "TAG-1")
        self.assertEqual(await self.svc.directory.find_by_tag("TAG-1"), self.alice)
        self.assertIsNone(await self.svc.directory.find_by_tag("TAG-2"))
        with self.assertRaises(StorageConflict):
            await self.svc.directory.bind_tag(self.bob, "TAG-1")


if __name__ == "__main__":
    unittest.main()
