"""Configuration for the field client"""
import logging
import os
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_TESTERS_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "testers.json")


class ClientSettings(BaseSettings):
    """Client settings loaded from environment variables.

    The backend URL and access key each accept several variable names; the
    first one set wins, in the order listed.
    """

    api_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("FIELD_CAPTURE_API_URL", "API_BASE_URL", "BACKEND_URL"),
    )
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("FIELD_CAPTURE_API_KEY", "API_ACCESS_KEY", "API_KEY"),
    )

    session_file: str = "~/.field-capture/session.json"
    testers_file: str = DEFAULT_TESTERS_FILE

    # Location
    gps_timeout_seconds: float = 10.0
    ip_lookup_timeout_seconds: float = 5.0
    nominatim_url: str = "https://nominatim.openstreetmap.org/reverse"
    user_agent: str = "FieldCapture/1.0"

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True

    def warn_if_incomplete(self) -> bool:
        """Log what is missing. Network calls fail later; nothing fails here."""
        complete = True
        if not self.api_url:
            logger.warning(
                "Backend URL not set (FIELD_CAPTURE_API_URL, API_BASE_URL or BACKEND_URL); "
                "all network calls will fail"
            )
            complete = False
        if not self.api_key:
            logger.warning(
                "Access key not set (FIELD_CAPTURE_API_KEY, API_ACCESS_KEY or API_KEY); "
                "the backend will reject requests"
            )
            complete = False
        return complete
