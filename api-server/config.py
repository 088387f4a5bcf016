"""Configuration settings for the Field Capture API"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_URL: str = "postgresql://user:pass@db:5432/fieldcapture"

    # MinIO
    MINIO_ENDPOINT: str = "minio:9000"
    MINIO_EXTERNAL_ENDPOINT: str = "localhost/video-stream"
    MINIO_EXTERNAL_SCHEME: str = "http"  # Use "https" when behind a proxy
    MINIO_ACCESS_KEY: str = "admin"
    MINIO_SECRET_KEY: str = "supersecret"
    MINIO_BUCKET: str = "field-test-videos"
    MINIO_SECURE: bool = False
    MINIO_REGION: str = "us-east-1"

    # S3 signatures cap presigned links at 7 days
    SIGNED_URL_EXPIRES_SECONDS: int = 7 * 24 * 3600

    # IP geolocation
    IP_LOOKUP_TIMEOUT_SECONDS: float = 5.0

    # Auth
    JWT_SECRET_KEY: str = "change-me-in-production"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
