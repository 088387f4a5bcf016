"""Data shapes exchanged with the Field Capture API (camelCase on the wire)"""
import json
import random
import string
import time
from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator
from pydantic.alias_generators import to_camel

from client_errors import ValidationError

UNKNOWN = "Unknown"
SOURCES = ("gps", "ip", "manual")

REQUIRED_METADATA = ("deviceId", "deviceType", "testCycle", "environment", "roadType")

# Prompt hints for the form; the backend accepts any string
FIELD_OPTIONS = {
    "deviceId": [
        "D20A03670", "D20A04600", "D20A03710", "D20A03700", "D20A06831",
        "D20A05310", "D20A00440", "D20A06821", "D20A07941", "D20A07821",
        "D20A07681", "D20A04690", "D20A04780",
    ],
    "deviceType": ["Pre-EVT", "EVT", "DVT", "RING"],
    "testCycle": [f"GA 2 - RC{n}" for n in range(1, 7)],
    "environment": [
        "city", "urban", "suburban", "rural", "highway", "residential",
        "industrial", "mountainous", "coastal", "transportation_hub",
    ],
    "roadType": [
        "2_local", "3_local", "arterial", "freeway", "intersection",
        "2_highway", "3_highway", "parking lot",
    ],
    "trafficDensity": ["light", "moderate", "heavy", "congested"],
    "lighting": ["night_ir", "day", "transient", "night_no_ir"],
    "weatherCondition": ["clear", "cloudy", "rain", "snow", "fog", "sleet"],
    "severity": ["none", "light", "moderate", "heavy", "severe"],
    "vehicleCaptureView": ["front", "rear", "side", "overhead"],
}

_BASE36 = string.digits + string.ascii_lowercase


class WireModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data):
        # Unset columns come back as null; the field defaults stand in for them
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class UserIdentity(WireModel):
    user_name: str
    email: str


class CityState(WireModel):
    city: str = UNKNOWN
    state: str = UNKNOWN


class GeoFix(WireModel):
    latitude: float = 0.0
    longitude: float = 0.0
    city: str = UNKNOWN
    state: str = UNKNOWN
    accuracy: float = 0.0
    timestamp: str = ""
    source: str = "manual"
    approximate: bool = False


class MetadataRecord(WireModel):
    date: str = ""
    device_id: str = ""
    device_type: str = ""
    test_cycle: str = ""
    location: str = ""
    environment: str = ""
    time_start: str = ""
    time_end: str = ""
    road_type: str = ""
    posted_speed_limit: str = ""
    number_of_lanes: str = ""
    traffic_density: str = ""
    road_heading: str = ""
    camera_heading: str = ""
    lighting: str = ""
    weather_condition: str = ""
    severity: str = ""
    measured_distance: str = ""
    mount_height: str = ""
    pitch_angle: str = ""
    vehicle_capture_view: str = ""
    external_battery_plugged_in: bool = False
    firmware: str = ""
    var_version: str = ""
    comments: str = ""


class VideoReference(WireModel):
    file_name: str
    url: Optional[str] = None
    size: Optional[int] = None
    type: Optional[str] = None
    uploaded_at: Optional[str] = None


class FieldTestRecord(WireModel):
    test_id: str
    session_id: Optional[str] = None
    user_info: Optional[UserIdentity] = None
    geo_location: GeoFix = GeoFix()
    metadata: MetadataRecord = MetadataRecord()
    videos: list[VideoReference] = []
    video_file_name: Optional[str] = None
    video_url: Optional[str] = None
    video_uploaded_at: Optional[str] = None
    status: str = "pending"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("user_info", mode="before")
    @classmethod
    def _blank_user(cls, value):
        # Records created without a tester come back with every user field null
        if isinstance(value, dict) and not any(value.values()):
            return None
        return value

    @property
    def all_videos(self) -> list[VideoReference]:
        """Video list, treating a legacy single-video record as a list of one."""
        if self.videos:
            return list(self.videos)
        if self.video_file_name:
            return [VideoReference(
                file_name=self.video_file_name,
                url=self.video_url,
                uploaded_at=self.video_uploaded_at,
            )]
        return []


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _token(length: int = 9) -> str:
    return "".join(random.choice(_BASE36) for _ in range(length))


def new_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{_token()}"


def new_test_id() -> str:
    return f"test-{int(time.time() * 1000)}-{_token()}"


def new_metadata(today: Optional[date] = None) -> MetadataRecord:
    """An empty form carrying today's date."""
    return MetadataRecord(date=(today or date.today()).isoformat())


def missing_required(metadata: Optional[MetadataRecord]) -> list[str]:
    """Wire names of required fields that are still blank."""
    values = metadata.to_wire() if metadata else {}
    return [name for name in REQUIRED_METADATA if not str(values.get(name) or "").strip()]


_FIELD_BY_WIRE_NAME = {
    info.alias or name: name for name, info in MetadataRecord.model_fields.items()
}


def parse_metadata_assignments(pairs: list[str]) -> dict:
    """Turn `deviceId=D1` style pairs into MetadataRecord field updates.

    Keys may be given in wire (camelCase) or attribute (snake_case) form.
    """
    updates = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValidationError(f"Expected key=value, got {pair!r}")
        field = _FIELD_BY_WIRE_NAME.get(key, key)
        if field not in MetadataRecord.model_fields:
            raise ValidationError(f"Unknown metadata field: {key}", fields=(key,))
        if field == "external_battery_plugged_in":
            updates[field] = value.strip().lower() in ("1", "true", "yes", "y", "on")
        else:
            updates[field] = value
    return updates


def load_testers(path: str) -> list[UserIdentity]:
    """Read the tester allow-list."""
    with open(path) as f:
        return [UserIdentity.model_validate(entry) for entry in json.load(f)]
