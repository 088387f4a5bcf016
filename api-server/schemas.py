"""Request bodies for the Field Capture API (camelCase on the wire)"""
from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class SessionCreate(CamelModel):
    session_id: Optional[str] = None
    user_name: Optional[str] = None
    email: Optional[str] = None


class UserInfo(CamelModel):
    user_name: Optional[str] = None
    email: Optional[str] = None


class GeoLocation(CamelModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: Optional[str] = None
    state: Optional[str] = None
    accuracy: Optional[float] = None
    timestamp: Optional[str] = None
    source: Optional[str] = None  # "gps", "ip" or "manual"
    approximate: Optional[bool] = None


class Metadata(CamelModel):
    date: Optional[str] = None
    device_id: Optional[str] = None
    device_type: Optional[str] = None
    test_cycle: Optional[str] = None
    location: Optional[str] = None
    environment: Optional[str] = None
    time_start: Optional[str] = None
    time_end: Optional[str] = None
    road_type: Optional[str] = None
    posted_speed_limit: Optional[str] = None
    number_of_lanes: Optional[str] = None
    traffic_density: Optional[str] = None
    road_heading: Optional[str] = None
    camera_heading: Optional[str] = None
    lighting: Optional[str] = None
    weather_condition: Optional[str] = None
    severity: Optional[str] = None
    measured_distance: Optional[str] = None
    mount_height: Optional[str] = None
    pitch_angle: Optional[str] = None
    vehicle_capture_view: Optional[str] = None
    external_battery_plugged_in: Optional[bool] = None
    firmware: Optional[str] = None
    var_version: Optional[str] = None
    comments: Optional[str] = None


class MetadataUpdate(CamelModel):
    """Partial update for PUT /tests/{id}"""
    session_id: Optional[str] = None
    user_info: Optional[UserInfo] = None
    geo_location: Optional[GeoLocation] = None
    metadata: Optional[Metadata] = None


class RecordPayload(MetadataUpdate):
    """Create-or-merge body for POST /tests.

    Video fields sent by older clients are ignored; references are only
    added by the upload endpoint.
    """
    test_id: Optional[str] = None
    status: Optional[str] = None
