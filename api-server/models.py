"""SQLAlchemy models for the Field Capture database"""
import uuid

from sqlalchemy import Column, String, DateTime, Float, Integer, JSON, Text, Boolean, ForeignKey

from database import Base


class FieldTest(Base):
    """One field data-collection test, flattened into a single row"""
    __tablename__ = "tests"

    test_id = Column(String(100), primary_key=True)
    session_id = Column(String(100), nullable=True, index=True)

    # Tester identity
    user_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)

    # Geo fix
    geo_latitude = Column(Float, nullable=True)
    geo_longitude = Column(Float, nullable=True)
    geo_city = Column(String(255), nullable=True)
    geo_state = Column(String(255), nullable=True)
    geo_accuracy = Column(Float, nullable=True)
    geo_timestamp = Column(String(64), nullable=True)  # ISO-8601 as captured by the client
    geo_source = Column(String(20), nullable=True)  # "gps", "ip" or "manual"
    geo_approximate = Column(Boolean, nullable=True)

    # Metadata form
    metadata_date = Column(String(20), nullable=True)
    device_id = Column(String(100), nullable=True)
    device_type = Column(String(50), nullable=True)
    test_cycle = Column(String(50), nullable=True)
    location = Column(String(500), nullable=True)
    environment = Column(String(50), nullable=True)
    time_start = Column(String(20), nullable=True)
    time_end = Column(String(20), nullable=True)
    road_type = Column(String(50), nullable=True)
    posted_speed_limit = Column(String(20), nullable=True)
    number_of_lanes = Column(String(20), nullable=True)
    traffic_density = Column(String(50), nullable=True)
    road_heading = Column(String(50), nullable=True)
    camera_heading = Column(String(50), nullable=True)
    lighting = Column(String(50), nullable=True)
    weather_condition = Column(String(50), nullable=True)
    severity = Column(String(50), nullable=True)
    measured_distance = Column(String(20), nullable=True)
    mount_height = Column(String(20), nullable=True)
    pitch_angle = Column(String(20), nullable=True)
    vehicle_capture_view = Column(String(50), nullable=True)
    external_battery_plugged_in = Column(Boolean, nullable=True)
    firmware = Column(String(100), nullable=True)
    var_version = Column(String(100), nullable=True)
    comments = Column(Text, nullable=True)

    # Latest upload, denormalized for the history list
    latest_video_file_name = Column(String(500), nullable=True)
    latest_video_url = Column(Text, nullable=True)
    video_uploaded_at = Column(DateTime, nullable=True)

    status = Column(String(20), nullable=False, default="pending")  # "pending" or "completed"
    created_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False)


class FieldTestVideo(Base):
    """A video stored in object storage for a test"""
    __tablename__ = "test_videos"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    test_id = Column(String(100), ForeignKey("tests.test_id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(500), nullable=False)  # MinIO object name
    url = Column(Text, nullable=True)
    size = Column(Integer, nullable=True)
    type = Column(String(100), nullable=True)
    uploaded_at = Column(DateTime, nullable=False, index=True)


class KVEntry(Base):
    """Key-value mirror holding sessions and nested test documents"""
    __tablename__ = "kv_store"

    key = Column(String(255), primary_key=True)
    value = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False)
