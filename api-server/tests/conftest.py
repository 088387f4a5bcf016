"""Test fixtures for the Field Capture API tests."""
import os
import sys
import tempfile
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.mkdtemp(prefix="fieldcapture-"), "test.db"),
)

# Settings are read at import time, so point them at the test database first
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

# Add parent dir to path so imports work
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
import models  # noqa: F401  registers the tables on Base


@pytest.fixture(scope="session")
def db_engine():
    """Create a test database engine."""
    connect_args = {"check_same_thread": False} if TEST_DATABASE_URL.startswith("sqlite") else {}
    engine = create_engine(TEST_DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="session")
def TestingSessionLocal(db_engine):
    """Shared session factory for the test database."""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(autouse=True)
def clean_tables(db_engine):
    """Empty all tables between tests for isolation."""
    yield
    with db_engine.connect() as conn:
        conn.execute(text("DELETE FROM test_videos"))
        conn.execute(text("DELETE FROM tests"))
        conn.execute(text("DELETE FROM kv_store"))
        conn.commit()


@pytest.fixture
def db_session(TestingSessionLocal):
    """Create a test database session."""
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def mock_minio():
    """Mock MinIO client that records calls."""
    mock_client = MagicMock()
    mock_client.put_object = MagicMock(return_value=None)
    mock_client.bucket_exists = MagicMock(return_value=True)
    mock_client.remove_objects = MagicMock(return_value=iter([]))
    mock_client.get_presigned_url = MagicMock(
        return_value="http://minio:9000/field-test-videos/obj?sig=abc"
    )
    return mock_client


@pytest.fixture
def app(TestingSessionLocal, mock_minio):
    """Create a FastAPI test app with overridden dependencies."""

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    with patch("main.get_minio_client", return_value=mock_minio), \
         patch("main.ensure_bucket_exists", return_value=None):
        from main import app as fastapi_app

        fastapi_app.dependency_overrides[get_db] = override_get_db
        yield fastapi_app
        fastapi_app.dependency_overrides.clear()


@pytest.fixture
def access_key():
    from auth import create_access_token
    return create_access_token("anon")


@pytest.fixture
def client(app, access_key):
    """Test HTTP client carrying a valid access key."""
    return TestClient(app, headers={"Authorization": f"Bearer {access_key}"})


@pytest.fixture
def anonymous_client(app):
    """Test HTTP client without credentials."""
    return TestClient(app)


FULL_METADATA = {
    "date": "2026-01-15",
    "deviceId": "D20A03670",
    "deviceType": "EVT",
    "testCycle": "GA 2 - RC1",
    "location": "Main St & 5th Ave intersection",
    "environment": "urban",
    "timeStart": "09:00",
    "timeEnd": "09:30",
    "roadType": "freeway",
    "postedSpeedLimit": "35",
    "numberOfLanes": "2",
    "trafficDensity": "moderate",
    "roadHeading": "northbound",
    "cameraHeading": "westbound",
    "lighting": "day",
    "weatherCondition": "clear",
    "severity": "none",
    "measuredDistance": "15.5",
    "mountHeight": "3.2",
    "pitchAngle": "25.0",
    "vehicleCaptureView": "front",
    "externalBatteryPluggedIn": True,
    "firmware": "v2.1.5",
    "varVersion": "VAR-3.0.2",
    "comments": "Light glare from the east",
}


def make_test_payload(test_id: str = "test-1000-abc", **overrides) -> dict:
    """Build a full create payload as the review screen sends it."""
    payload = {
        "testId": test_id,
        "sessionId": "session-1000-xyz",
        "userInfo": {"userName": "Field Tester A", "email": "tester.a@example.com"},
        "geoLocation": {
            "latitude": 37.7749,
            "longitude": -122.4194,
            "city": "San Francisco",
            "state": "California",
            "accuracy": 12.0,
            "timestamp": "2026-01-15T09:00:00Z",
            "source": "gps",
            "approximate": False,
        },
        "metadata": dict(FULL_METADATA),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def metadata_fields():
    return dict(FULL_METADATA)


@pytest.fixture
def created_test(client, make_payload):
    """A stored pending test; returns its payload."""
    payload = make_payload()
    resp = client.post("/tests", json=payload)
    assert resp.status_code == 200, resp.text
    return payload


@pytest.fixture
def make_payload():
    return make_test_payload
