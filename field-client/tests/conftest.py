"""Test fixtures for the field client tests."""
import asyncio
import os
import sys

import pytest

# Add parent dir to path so imports work
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from client_errors import NetworkError, NotFoundError, UpstreamServiceError
from field_types import CityState, FieldTestRecord, GeoFix, UserIdentity
from session_store import SessionStore
from video_ingest import VideoIngest


class FakeApi:
    """In-memory stand-in for FieldCaptureClient that records every call."""

    def __init__(self):
        self.calls = []
        self.sessions = {}
        self.tests = {}
        self.fail = {}  # method name -> exception to raise

    def _enter(self, name, *args):
        self.calls.append((name, *args))
        if name in self.fail:
            raise self.fail[name]

    async def location_by_ip(self):
        self._enter("location_by_ip")
        return {"success": True, "city": "Austin", "state": "Texas", "ip": "203.0.113.9"}

    async def create_session(self, session_id, user):
        self._enter("create_session", session_id, user)
        self.sessions.setdefault(session_id, {
            "sessionId": session_id, "userName": user.user_name, "email": user.email,
        })

    async def get_session(self, session_id):
        self._enter("get_session", session_id)
        if session_id not in self.sessions:
            raise NotFoundError("Session not found")
        return self.sessions[session_id]

    async def create_or_update_test(self, payload):
        self._enter("create_or_update_test", payload)
        stored = self.tests.setdefault(payload["testId"], {"testId": payload["testId"], "status": "pending"})
        for key, value in payload.items():
            if value is not None:
                stored[key] = value
        return payload["testId"]

    async def update_test_metadata(self, test_id, patch):
        self._enter("update_test_metadata", test_id, patch)
        if test_id not in self.tests:
            raise NotFoundError("Test not found")
        for key, value in patch.items():
            if value is not None:
                self.tests[test_id][key] = value
        return test_id

    async def upload_video(self, test_id, video):
        self._enter("upload_video", test_id, video)
        self.tests[test_id].setdefault("videos", []).append({"fileName": f"{test_id}-1-{video.name}"})
        self.tests[test_id]["status"] = "completed"
        return {"success": True, "fileName": f"{test_id}-1-{video.name}", "signedUrl": "http://x"}

    async def list_tests(self):
        self._enter("list_tests")
        return [FieldTestRecord.model_validate(t) for t in self.tests.values()]

    async def delete_test(self, test_id):
        self._enter("delete_test", test_id)
        if test_id not in self.tests:
            raise NotFoundError("Test not found")
        del self.tests[test_id]

    def names(self):
        return [call[0] for call in self.calls]


class FakeResolver:
    """Resolver double returning a fixed fix, optionally blocking until released."""

    def __init__(self, fix=None):
        self.fix = fix or GeoFix(
            latitude=37.7749, longitude=-122.4194, city="San Francisco", state="California",
            accuracy=8.0, timestamp="2026-01-15T09:00:00+00:00", source="gps",
        )
        self.message = "Location captured successfully"
        self.remediation = None
        self.release = None
        self.cancelled = False

    async def acquire(self):
        if self.release is not None:
            try:
                await self.release.wait()
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        return self.fix

    def set_manual(self, **fields):
        self.fix = self.fix.model_copy(update={**fields, "source": "manual"})
        return self.fix


class StaticLocator:
    def __init__(self, name, city=None, error=None):
        self.name = name
        self.city = city
        self.error = error
        self.calls = 0

    async def resolve_by_ip(self):
        self.calls += 1
        if self.error:
            raise self.error
        return CityState(city=self.city, state="State of " + self.city)


@pytest.fixture
def tester():
    return UserIdentity(user_name="Field Tester A", email="tester.a@example.com")


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def fake_resolver():
    return FakeResolver()


@pytest.fixture
def session_store(tmp_path):
    return SessionStore(str(tmp_path / "session.json"))


@pytest.fixture
def make_controller(fake_api, fake_resolver, session_store, tester):
    from wizard import WizardController

    def _make(testers=None, listener=None):
        return WizardController(
            fake_api,
            fake_resolver,
            VideoIngest(),
            session_store,
            testers=testers if testers is not None else [tester],
            listener=listener,
        )

    return _make


@pytest.fixture
def video_files(tmp_path):
    """Three videos and two non-video files on disk."""
    paths = []
    for name, content in [
        ("front.mp4", b"a" * 10),
        ("rear.mov", b"b" * 20),
        ("side.avi", b"c" * 30),
        ("notes.txt", b"notes"),
        ("photo.jpg", b"jpeg"),
    ]:
        path = tmp_path / name
        path.write_bytes(content)
        paths.append(str(path))
    return paths


@pytest.fixture
def locator_factory():
    return StaticLocator


@pytest.fixture
def upstream_error():
    return UpstreamServiceError("provider down", status_code=503)


@pytest.fixture
def network_error():
    return NetworkError("connection refused")
