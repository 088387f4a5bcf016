"""
Test Record Store.

The relational tables (`tests`, `test_videos`) are authoritative for reads.
Every write also refreshes the nested JSON document in the key-value mirror
(`test:<id>`) before committing, so both copies change in one transaction.

Merge rule for upserts: a field in the payload replaces the stored value
when it is present and non-null; anything else keeps what is stored.
"""
import logging
import os
import time
from collections import defaultdict
from datetime import datetime
from typing import BinaryIO, Optional

from minio import Minio
from minio.error import S3Error
from sqlalchemy.orm import Session

import kv_store
import minio_client
from config import settings
from models import FieldTest, FieldTestVideo

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
STATUSES = ("pending", "completed")

USER_COLUMNS = {
    "userName": "user_name",
    "email": "email",
}

GEO_COLUMNS = {
    "latitude": "geo_latitude",
    "longitude": "geo_longitude",
    "city": "geo_city",
    "state": "geo_state",
    "accuracy": "geo_accuracy",
    "timestamp": "geo_timestamp",
    "source": "geo_source",
    "approximate": "geo_approximate",
}

METADATA_COLUMNS = {
    "date": "metadata_date",
    "deviceId": "device_id",
    "deviceType": "device_type",
    "testCycle": "test_cycle",
    "location": "location",
    "environment": "environment",
    "timeStart": "time_start",
    "timeEnd": "time_end",
    "roadType": "road_type",
    "postedSpeedLimit": "posted_speed_limit",
    "numberOfLanes": "number_of_lanes",
    "trafficDensity": "traffic_density",
    "roadHeading": "road_heading",
    "cameraHeading": "camera_heading",
    "lighting": "lighting",
    "weatherCondition": "weather_condition",
    "severity": "severity",
    "measuredDistance": "measured_distance",
    "mountHeight": "mount_height",
    "pitchAngle": "pitch_angle",
    "vehicleCaptureView": "vehicle_capture_view",
    "externalBatteryPluggedIn": "external_battery_plugged_in",
    "firmware": "firmware",
    "varVersion": "var_version",
    "comments": "comments",
}

SECTIONS = {
    "userInfo": USER_COLUMNS,
    "geoLocation": GEO_COLUMNS,
    "metadata": METADATA_COLUMNS,
}


class RecordNotFound(Exception):
    """The referenced test or session does not exist."""


class InvalidPayloadError(ValueError):
    """The payload is missing a required field or carries an invalid value."""


class StorageError(Exception):
    """Object storage rejected an operation."""


def _test_key(test_id: str) -> str:
    return f"test:{test_id}"


def _session_key(session_id: str) -> str:
    return f"session:{session_id}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _video_to_dict(video: FieldTestVideo) -> dict:
    return {
        "fileName": video.file_name,
        "url": video.url,
        "size": video.size,
        "type": video.type,
        "uploadedAt": _iso(video.uploaded_at),
    }


def _row_to_document(row: FieldTest, videos: list[FieldTestVideo]) -> dict:
    document = {"testId": row.test_id, "sessionId": row.session_id}
    for section, columns in SECTIONS.items():
        document[section] = {field: getattr(row, column) for field, column in columns.items()}
    document.update({
        "videos": [_video_to_dict(v) for v in videos],
        "videoFileName": row.latest_video_file_name,
        "videoUrl": row.latest_video_url,
        "videoUploadedAt": _iso(row.video_uploaded_at),
        "status": row.status,
        "createdAt": _iso(row.created_at),
        "updatedAt": _iso(row.updated_at),
    })
    return document


def _videos_for(db: Session, test_id: str) -> list[FieldTestVideo]:
    return (
        db.query(FieldTestVideo)
        .filter(FieldTestVideo.test_id == test_id)
        .order_by(FieldTestVideo.uploaded_at.asc())
        .all()
    )


def _apply_patch(row: FieldTest, data: dict) -> None:
    if data.get("sessionId") is not None:
        row.session_id = data["sessionId"]

    for section, columns in SECTIONS.items():
        values = data.get(section)
        if not isinstance(values, dict):
            continue
        for field, column in columns.items():
            value = values.get(field)
            if value is not None:
                setattr(row, column, value)

    # A geo fix always has coordinates and a named place, even when unresolved
    if row.geo_latitude is None:
        row.geo_latitude = 0.0
    if row.geo_longitude is None:
        row.geo_longitude = 0.0
    if not row.geo_city:
        row.geo_city = UNKNOWN
    if not row.geo_state:
        row.geo_state = UNKNOWN


def _sync_mirror(db: Session, row: FieldTest) -> dict:
    db.flush()
    document = _row_to_document(row, _videos_for(db, row.test_id))
    kv_store.set(db, _test_key(row.test_id), document)
    return document


def create_or_update_test(db: Session, data: dict) -> dict:
    """Insert the test if it is new, otherwise merge the payload into it."""
    test_id = data.get("testId")
    if not test_id:
        raise InvalidPayloadError("testId is required")

    status = data.get("status")
    if status is not None and status not in STATUSES:
        raise InvalidPayloadError(f"Invalid status: {status}")

    now = datetime.utcnow()
    row = db.get(FieldTest, test_id)
    if row is None:
        row = FieldTest(test_id=test_id, status="pending", created_at=now, updated_at=now)
        db.add(row)
        logger.info(f"Creating test {test_id}")
    else:
        logger.info(f"Merging update into test {test_id}")

    _apply_patch(row, data)
    if status is not None:
        row.status = status
    row.updated_at = now

    document = _sync_mirror(db, row)
    db.commit()
    return document


def update_test_metadata(db: Session, test_id: str, patch: dict) -> dict:
    """Merge user, geo and metadata changes into an existing test."""
    row = db.get(FieldTest, test_id)
    if row is None:
        raise RecordNotFound(f"Test not found: {test_id}")

    scoped = {key: patch[key] for key in ("sessionId", *SECTIONS) if key in patch}
    _apply_patch(row, scoped)
    row.updated_at = datetime.utcnow()

    document = _sync_mirror(db, row)
    db.commit()
    logger.info(f"Updated metadata for test {test_id}")
    return document


def get_test(db: Session, test_id: str) -> dict:
    row = db.get(FieldTest, test_id)
    if row is None:
        raise RecordNotFound(f"Test not found: {test_id}")
    return _row_to_document(row, _videos_for(db, test_id))


def list_tests(db: Session) -> list[dict]:
    """All tests, newest first, each with its videos in upload order."""
    rows = db.query(FieldTest).order_by(FieldTest.created_at.desc()).all()
    videos_by_test = defaultdict(list)
    for video in db.query(FieldTestVideo).order_by(FieldTestVideo.uploaded_at.asc()).all():
        videos_by_test[video.test_id].append(video)
    return [_row_to_document(row, videos_by_test[row.test_id]) for row in rows]


def build_object_name(test_id: str, original_name: str, millis: Optional[int] = None) -> str:
    """Storage key: test id, upload time in epoch milliseconds, original base name."""
    if millis is None:
        millis = int(time.time() * 1000)
    base_name = os.path.basename((original_name or "").replace("\\", "/")) or "video"
    return f"{test_id}-{millis}-{base_name}"


def upload_video(
    db: Session,
    storage: Minio,
    test_id: str,
    file_name: str,
    content_type: Optional[str],
    data: BinaryIO,
    size: int,
) -> dict:
    """Store a video for an existing test and append its reference."""
    row = db.get(FieldTest, test_id)
    if row is None:
        raise RecordNotFound(f"Test not found: {test_id}")

    object_name = build_object_name(test_id, file_name)
    content_type = content_type or "application/octet-stream"

    try:
        storage.put_object(
            bucket_name=settings.MINIO_BUCKET,
            object_name=object_name,
            data=data,
            length=size,
            content_type=content_type,
        )
        url = minio_client.signed_url(storage, object_name)
    except S3Error as e:
        logger.error(f"Storage error for {object_name}: {e}")
        raise StorageError(str(e)) from e

    logger.info(f"Video stored in MinIO: {object_name}")

    now = datetime.utcnow()
    video = FieldTestVideo(
        test_id=test_id,
        file_name=object_name,
        url=url,
        size=size,
        type=content_type,
        uploaded_at=now,
    )
    db.add(video)

    row.latest_video_file_name = object_name
    row.latest_video_url = url
    row.video_uploaded_at = now
    row.status = "completed"
    row.updated_at = now

    _sync_mirror(db, row)
    db.commit()
    return _video_to_dict(video)


def refresh_video_url(db: Session, storage: Minio, test_id: str, file_name: str) -> str:
    """Mint a new signed link for one stored video and record it."""
    video = (
        db.query(FieldTestVideo)
        .filter(FieldTestVideo.test_id == test_id, FieldTestVideo.file_name == file_name)
        .first()
    )
    if video is None:
        raise RecordNotFound(f"Video not found: {file_name}")

    url = minio_client.signed_url(storage, file_name)
    video.url = url
    row = db.get(FieldTest, test_id)
    if row.latest_video_file_name == file_name:
        row.latest_video_url = url

    _sync_mirror(db, row)
    db.commit()
    return url


def delete_test(db: Session, storage: Minio, test_id: str) -> list[str]:
    """Remove every blob the test references, then the test itself.

    Blob cleanup is best effort; the record is always deleted last.
    Returns the object names that were targeted.
    """
    row = db.get(FieldTest, test_id)
    if row is None:
        raise RecordNotFound(f"Test not found: {test_id}")

    object_names = set()
    if row.latest_video_file_name:
        object_names.add(row.latest_video_file_name)
    for video in _videos_for(db, test_id):
        object_names.add(video.file_name)

    mirror = kv_store.get(db, _test_key(test_id)) or {}
    if mirror.get("videoFileName"):
        object_names.add(mirror["videoFileName"])
    for video in mirror.get("videos") or []:
        if isinstance(video, dict) and video.get("fileName"):
            object_names.add(video["fileName"])

    failed = minio_client.remove_objects(storage, object_names)
    if failed:
        logger.warning(f"Test {test_id}: {len(failed)} objects left in storage: {failed}")

    db.query(FieldTestVideo).filter(FieldTestVideo.test_id == test_id).delete()
    db.delete(row)
    kv_store.delete(db, _test_key(test_id))
    db.commit()

    logger.info(f"Deleted test {test_id} and {len(object_names) - len(failed)} objects")
    return sorted(object_names)


def save_session(db: Session, session_id: str, user_name: str, email: str) -> dict:
    """Store a session. An existing session is left exactly as it was."""
    key = _session_key(session_id)
    existing = kv_store.get(db, key)
    if existing is not None:
        logger.info(f"Session already stored: {session_id}")
        return existing

    session = {
        "sessionId": session_id,
        "userName": user_name,
        "email": email,
        "createdAt": datetime.utcnow().isoformat(),
    }
    kv_store.set(db, key, session)
    db.commit()
    logger.info(f"Stored session {session_id} for {email}")
    return session


def get_session(db: Session, session_id: str) -> dict:
    session = kv_store.get(db, _session_key(session_id))
    if session is None:
        raise RecordNotFound(f"Session not found: {session_id}")
    return session
