"""Error types surfaced by the field client.

Every failure resolves to one of these; none of them is fatal to the
process. There are no automatic retries: the user repeats the action.
"""
from typing import Optional


class FieldCaptureError(Exception):
    """Base class for all client-side failures."""


class ValidationError(FieldCaptureError):
    """A required field is missing or a selection is unusable."""

    def __init__(self, message: str, fields: tuple = ()):
        super().__init__(message)
        self.fields = tuple(fields)


class NotFoundError(FieldCaptureError):
    """The referenced test or session does not exist on the backend."""


class UpstreamServiceError(FieldCaptureError):
    """A geolocation provider, geocoder or the storage backend failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(FieldCaptureError):
    """The request never produced a response."""
