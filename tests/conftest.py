"""
Shared fixtures for Field Capture live tests.
Tests run against a running stack (API on localhost:8000 by default) and
are skipped when it cannot be reached.
"""
import os
import random
import tempfile
import time

import pytest
import requests

BASE_URL = os.environ.get("FIELD_CAPTURE_API_URL", "http://localhost:8000")
ACCESS_KEY = os.environ.get("FIELD_CAPTURE_API_KEY", "")


@pytest.fixture(scope="session")
def base_url():
    return BASE_URL.rstrip("/")


@pytest.fixture(scope="session")
def api(base_url):
    """Requests session carrying the access key."""
    try:
        r = requests.get(f"{base_url}/", timeout=5)
        r.raise_for_status()
    except Exception as e:
        pytest.skip(f"API not reachable at {base_url}: {e}")
    if not ACCESS_KEY:
        pytest.skip("FIELD_CAPTURE_API_KEY not set")

    s = requests.Session()
    s.headers["Authorization"] = f"Bearer {ACCESS_KEY}"
    return s


@pytest.fixture()
def test_id():
    return f"test-{int(time.time() * 1000)}-pytest{random.randint(100, 999)}"


@pytest.fixture()
def created_record(api, base_url, test_id):
    """Create a record and remove it afterwards."""
    r = api.post(f"{base_url}/tests", json={
        "testId": test_id,
        "sessionId": "session-pytest",
        "userInfo": {"userName": "Pytest", "email": "pytest@example.com"},
        "geoLocation": {"latitude": 37.7749, "longitude": -122.4194, "city": "San Francisco", "state": "California"},
        "metadata": {
            "deviceId": "D-PYTEST",
            "deviceType": "EVT",
            "testCycle": "GA 2 - RC1",
            "environment": "urban",
            "roadType": "arterial",
        },
    })
    assert r.status_code == 200, f"Create failed: {r.text}"
    yield test_id
    api.delete(f"{base_url}/tests/{test_id}")


@pytest.fixture()
def sample_video():
    """Temporary video file, removed after the test."""
    fd, path = tempfile.mkstemp(suffix=".mp4")
    with os.fdopen(fd, "wb") as f:
        f.write(os.urandom(2048))
    yield path
    if os.path.exists(path):
        os.remove(path)
