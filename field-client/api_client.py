"""Async HTTP client for the Field Capture API.

Maps transport failures and error statuses onto the client error taxonomy:
404 → NotFoundError, 400 → ValidationError, any other failure status →
UpstreamServiceError, no response at all → NetworkError.
"""
import logging
from typing import Optional

import httpx
import pydantic

from client_errors import NetworkError, NotFoundError, UpstreamServiceError, ValidationError
from client_settings import ClientSettings
from field_types import FieldTestRecord, UserIdentity
from video_ingest import SelectedVideo

logger = logging.getLogger(__name__)


class FieldCaptureClient:
    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str] = None,
        user_agent: str = "FieldCapture/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        headers = {"User-Agent": user_agent}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        # Record and upload calls run without a timeout
        self._http = httpx.AsyncClient(
            base_url=self.base_url or "http://backend.invalid",
            headers=headers,
            timeout=None,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: ClientSettings, transport=None) -> "FieldCaptureClient":
        return cls(settings.api_url, settings.api_key, settings.user_agent, transport=transport)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.base_url:
            raise NetworkError("Backend URL is not configured")
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise NetworkError(f"Could not reach the backend: {e}") from e

        if resp.status_code >= 400:
            detail = _error_detail(resp)
            logger.warning(f"{method} {path} returned {resp.status_code}: {detail}")
            if resp.status_code == 404:
                raise NotFoundError(detail)
            if resp.status_code == 400:
                raise ValidationError(detail)
            raise UpstreamServiceError(detail, status_code=resp.status_code)

        try:
            body = resp.json()
        except ValueError as e:
            raise UpstreamServiceError(f"{method} {path} returned an unreadable body: {e}", resp.status_code) from e
        if not isinstance(body, dict):
            raise UpstreamServiceError(f"{method} {path} returned an unexpected body", resp.status_code)
        return body

    # --- Service ---

    async def health(self) -> dict:
        return await self._request("GET", "/health")

    async def location_by_ip(self) -> dict:
        return await self._request("GET", "/location/ip")

    # --- Sessions ---

    async def create_session(self, session_id: str, user: UserIdentity) -> None:
        await self._request("POST", "/session", json={
            "sessionId": session_id,
            "userName": user.user_name,
            "email": user.email,
        })

    async def get_session(self, session_id: str) -> dict:
        return await self._request("GET", f"/session/{session_id}")

    # --- Tests ---

    async def create_or_update_test(self, payload: dict) -> str:
        body = await self._request("POST", "/tests", json=payload)
        return body["testId"]

    async def update_test_metadata(self, test_id: str, patch: dict) -> str:
        body = await self._request("PUT", f"/tests/{test_id}", json=patch)
        return body["testId"]

    async def get_test(self, test_id: str) -> FieldTestRecord:
        return _parse_record(await self._request("GET", f"/tests/{test_id}"))

    async def list_tests(self) -> list[FieldTestRecord]:
        body = await self._request("GET", "/tests")
        return [_parse_record(t) for t in body.get("tests") or []]

    async def delete_test(self, test_id: str) -> None:
        await self._request("DELETE", f"/tests/{test_id}")

    async def video_url(self, test_id: str, file_name: str) -> str:
        body = await self._request("GET", f"/tests/{test_id}/videos/{file_name}/url")
        return body["url"]

    async def upload_video(self, test_id: str, video: SelectedVideo) -> dict:
        """Send one file; returns {success, fileName, signedUrl}."""
        try:
            f = open(video.path, "rb")
        except OSError as e:
            raise ValidationError(f"Cannot read {video.name}: {e}") from e
        with f:
            return await self._request(
                "POST",
                "/upload-video",
                files={"file": (video.name, f, video.content_type)},
                data={"testId": test_id},
            )


def _parse_record(data) -> FieldTestRecord:
    try:
        return FieldTestRecord.model_validate(data)
    except pydantic.ValidationError as e:
        raise UpstreamServiceError(f"Backend returned a malformed test record: {e}") from e


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)
