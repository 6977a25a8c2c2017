import asyncio
import tempfile
import unittest
import uuid

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from attendance_svc.core.config import get_settings
from attendance_svc.db import init_db
from attendance_svc.deps import build_services, get_claims, get_services
from attendance_svc.main import app

from support import descriptor, make_engine


class TestAttendanceAPI(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.engine = make_engine(self.tmp.name)
        asyncio.run(init_db(self.engine))
        maker = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        self.svc = build_services(maker, get_settings())

        self.owner = uuid.uuid4()
        self.alice = uuid.uuid4()
        self.bob = uuid.uuid4()
        self.user = self.owner

        app.dependency_overrides[get_claims] = lambda: {"sub": str(self.user)}
        app.dependency_overrides[get_services] = lambda: self.svc
        # no lifespan: the app-level engine and scheduler stay untouched
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        asyncio.run(self.engine.dispose())
        self.tmp.cleanup()

    def as_user(self, uid):
        self.user = uid

    def create_group(self):
        self.as_user(self.owner)
        r = self.client.post("/groups", json={"name": "CS101", "code": "CS101", "member_ids": [str(self.alice)]})
        self.assertEqual(r.status_code, 201)
        return r.json()["id"]

    def open_session(self, group_id, method="qr", **extra):
        self.as_user(self.owner)
        r = self.client.post("/sessions", json={"group_id": group_id, "method": method, **extra})
        self.assertEqual(r.status_code, 201)
        return r.json()

    def test_health(self):
        r = self.client.get("/health")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["status"], "ok")

    def test_group_roundtrip(self):
        gid = self.create_group()
        r = self.client.post(f"/groups/{gid}/members", json={"member_ids": [str(self.bob)]})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(set(r.json()["member_ids"]), {str(self.alice), str(self.bob)})

        self.as_user(self.alice)
        self.assertEqual(self.client.get(f"/groups/{gid}").status_code, 200)
        r = self.client.post(f"/groups/{gid}/members", json={"member_ids": [str(uuid.uuid4())]})
        self.assertEqual(r.status_code, 403)
        self.assertEqual(r.json()["code"], "not_authorized")

        self.as_user(uuid.uuid4())
        self.assertEqual(self.client.get(f"/groups/{gid}").status_code, 403)

    def test_open_qr_session_and_mark(self):
        gid = self.create_group()
        body = self.open_session(gid, duration_minutes=15)
        sid = body["session"]["id"]
        self.assertTrue(body["qr_code"].startswith("data:image/png;base64,"))
        self.assertIsNotNone(body["session"]["qr_expires_at"])

        self.as_user(self.alice)
        r = self.client.post(f"/sessions/{sid}/mark/qr", json={"token": body["qr_token"]})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["member_id"], str(self.alice))

        r = self.client.post(f"/sessions/{sid}/mark/qr", json={"token": body["qr_token"]})
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json(), {"detail": "Attendance already marked", "code": "already_marked"})

        self.as_user(self.bob)
        r = self.client.post(f"/sessions/{sid}/mark/qr", json={"token": body["qr_token"]})
        self.assertEqual(r.status_code, 403)
        self.assertEqual(r.json()["code"], "not_enrolled")

        r = self.client.get(f"/sessions/{sid}")
        self.assertEqual([e["member_id"] for e in r.json()["attendance"]], [str(self.alice)])

    def test_bad_qr_token(self):
        gid = self.create_group()
        sid = self.open_session(gid)["session"]["id"]
        self.as_user(self.alice)
        r = self.client.post(f"/sessions/{sid}/mark/qr", json={"token": "garbage"})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["code"], "malformed")

    def test_rotate_and_png(self):
        gid = self.create_group()
        body = self.open_session(gid)
        sid = body["session"]["id"]
        r = self.client.post(f"/sessions/{sid}/qr")
        self.assertEqual(r.status_code, 201)
        self.assertNotEqual(r.json()["token"], body["qr_token"])

        r = self.client.get(f"/sessions/{sid}/qr.png")
        self.assertEqual(r.headers["content-type"], "image/png")
        self.assertTrue(r.content.startswith(b"\x89PNG"))

        self.as_user(self.alice)
        r = self.client.post(f"/sessions/{sid}/mark/qr", json={"token": body["qr_token"]})
        self.assertEqual(r.status_code, 401)
        self.assertEqual(r.json()["code"], "code_mismatch")

    def test_face_flow(self):
        gid = self.create_group()
        sid = self.open_session(gid, method="face")["session"]["id"]

        self.as_user(self.alice)
        r = self.client.post(f"/sessions/{sid}/mark/face", json={"descriptor": descriptor(0.1)})
        self.assertEqual(r.json()["code"], "face_not_registered")

        r = self.client.post("/members/me/face", json={"descriptor": descriptor(0.1)})
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.json()["has_face"])

        r = self.client.post(f"/sessions/{sid}/mark/face", json={"descriptor": descriptor(0.3)})
        self.assertEqual(r.status_code, 401)
        r = self.client.post(f"/sessions/{sid}/mark/face", json={"descriptor": descriptor(0.1)})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["method"], "face")

    def test_face_image_without_engine(self):
        gid = self.create_group()
        sid = self.open_session(gid, method="face")["session"]["id"]
        self.as_user(self.alice)
        r = self.client.post(f"/sessions/{sid}/mark/face", json={"image": "data:image/jpeg;base64,/9j/AAAA"})
        self.assertEqual(r.status_code, 503)
        self.assertEqual(r.json()["code"], "face_engine_not_ready")
        r = self.client.post(f"/sessions/{sid}/mark/face", json={"image": "***"})
        self.assertEqual(r.status_code, 400)

    def test_nfc_flow(self):
        gid = self.create_group()
        sid = self.open_session(gid, method="nfc")["session"]["id"]

        self.as_user(self.alice)
        r = self.client.put("/members/me/nfc", json={"nfc_id": " 04:A2:1F "})
        self.assertEqual(r.json()["nfc_id"], "04:A2:1F")

        self.as_user(self.bob)
        self.assertEqual(self.client.put("/members/me/nfc", json={"nfc_id": "04:A2:1F"}).status_code, 409)
        r = self.client.post(f"/sessions/{sid}/mark/nfc", json={"nfc_id": "nope"})
        self.assertEqual(r.json()["code"], "unknown_tag")

        r = self.client.post(f"/sessions/{sid}/mark/nfc", json={"nfc_id": "04:A2:1F"})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["member_id"], str(self.alice))

    def test_reports(self):
        gid = self.create_group()
        body = self.open_session(gid)
        self.as_user(self.alice)
        self.client.post(f"/sessions/{body['session']['id']}/mark/qr", json={"token": body["qr_token"]})

        self.as_user(self.owner)
        rows = self.client.get("/attendance/reports", params={"group_id": gid}).json()
        self.assertEqual([r["member_id"] for r in rows], [str(self.alice)])

        self.as_user(self.alice)
        self.assertEqual(len(self.client.get("/attendance/users/me").json()), 1)

        self.as_user(self.bob)
        self.assertEqual(self.client.get("/attendance/reports", params={"group_id": gid}).json(), [])
        r = self.client.get("/attendance/reports", params={"member_id": str(self.alice)})
        self.assertEqual(r.status_code, 403)

    def test_close_and_list(self):
        gid = self.create_group()
        sid = self.open_session(gid)["session"]["id"]
        self.assertEqual(len(self.client.get("/sessions", params={"group_id": gid, "active": True}).json()), 1)

        self.as_user(self.alice)
        self.assertEqual(self.client.post(f"/sessions/{sid}/close").status_code, 403)
        self.assertEqual(self.client.get("/sessions", params={"group_id": gid}).status_code, 403)

        self.as_user(self.owner)
        r = self.client.post(f"/sessions/{sid}/close")
        self.assertEqual(r.json()["status"], "completed")
        self.assertEqual(self.client.get("/sessions", params={"group_id": gid, "active": True}).json(), [])

        r = self.client.post(f"/sessions/{sid}/close")
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()["code"], "session_closed")

    def test_event_stream_guards(self):
        gid = self.create_group()
        sid = self.open_session(gid)["session"]["id"]

        self.as_user(self.bob)
        r = self.client.get(f"/sessions/{sid}/events")
        self.assertEqual(r.status_code, 403)

        self.as_user(self.owner)
        self.client.post(f"/sessions/{sid}/close")
        r = self.client.get(f"/sessions/{sid}/events")
        self.assertEqual(r.status_code, 409)

        self.assertEqual(self.client.get(f"/sessions/{uuid.uuid4()}/events").status_code, 404)

    def test_event_stream_refused_when_closed_during_membership_lookup(self):
        gid = self.create_group()
        sid = uuid.UUID(self.open_session(gid)["session"]["id"])
        is_member = self.svc.directory.is_member

        async def closing_is_member(group_id, member_id):
            await self.svc.sessions.close(sid, self.owner)
            return await is_member(group_id, member_id)

        self.svc.directory.is_member = closing_is_member
        self.as_user(self.alice)
        r = self.client.get(f"/sessions/{sid}/events")
        self.assertEqual(r.status_code, 409)
        self.assertEqual(self.svc.events.subscriber_count(sid), 0)

    def test_member_profile_created_on_first_visit(self):
        self.as_user(self.alice)
        r = self.client.get("/members/me")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["id"], str(self.alice))
        self.assertFalse(r.json()["has_face"])
        member = asyncio.run(self.svc.directory.get_member(self.alice))
        self.assertIsNotNone(member)

    def test_analytics_access(self):
        gid = self.create_group()
        body = self.open_session(gid)
        self.as_user(self.alice)
        self.client.post(f"/sessions/{body['session']['id']}/mark/qr", json={"token": body["qr_token"]})

        self.as_user(self.owner)
        r = self.client.get(f"/attendance/analytics/groups/{gid}")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["summary"]["present"], 1)
        self.assertEqual(r.json()["methods"]["qr"], 1)
        self.assertEqual(r.json()["members"][str(self.alice)]["percentage"], 100.0)
        r = self.client.get(f"/attendance/analytics/members/{self.alice}", params={"group_id": gid})
        self.assertEqual(r.status_code, 200)
        self.assertEqual(self.client.get(f"/attendance/analytics/groups/{uuid.uuid4()}").status_code, 404)

        self.as_user(self.alice)
        self.assertEqual(self.client.get(f"/attendance/analytics/groups/{gid}").status_code, 403)
        r = self.client.get(f"/attendance/analytics/members/{self.alice}")
        self.assertEqual(r.json()["summary"]["total"], 1)

        self.as_user(self.bob)
        r = self.client.get(f"/attendance/analytics/members/{self.alice}")
        self.assertEqual(r.status_code, 403)
        self.assertEqual(r.json()["code"], "not_authorized")


if __name__ == "__main__":
    unittest.main()
