"""Tests for the HTTP client and its error mapping."""
import json

import httpx
import pytest

from api_client import FieldCaptureClient
from client_errors import NetworkError, NotFoundError, UpstreamServiceError, ValidationError
from video_ingest import SelectedVideo


def _client(handler, api_key="key-123"):
    return FieldCaptureClient(
        "http://api.test", api_key=api_key, transport=httpx.MockTransport(handler)
    )


class TestRequests:
    @pytest.mark.asyncio
    async def test_bearer_key_is_sent(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"status": "ok"})

        async with _client(handler) as api:
            await api.health()
        assert seen["auth"] == "Bearer key-123"

    @pytest.mark.asyncio
    async def test_create_posts_payload(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True, "testId": "test-1"})

        async with _client(handler) as api:
            test_id = await api.create_or_update_test({"testId": "test-1", "metadata": {"deviceId": "D1"}})

        assert test_id == "test-1"
        assert (seen["method"], seen["path"]) == ("POST", "/tests")
        assert seen["body"]["metadata"] == {"deviceId": "D1"}

    @pytest.mark.asyncio
    async def test_list_parses_records(self):
        body = {"tests": [{
            "testId": "test-1",
            "status": "completed",
            "metadata": {"deviceId": "D1", "firmware": None},
            "geoLocation": {"city": "Austin", "state": "Texas", "latitude": 0, "longitude": 0},
            "videos": [],
            "videoFileName": "legacy.mp4",
            "videoUrl": "http://minio/legacy.mp4",
        }]}
        async with _client(lambda r: httpx.Response(200, json=body)) as api:
            tests = await api.list_tests()

        assert tests[0].test_id == "test-1"
        assert tests[0].metadata.device_id == "D1"
        assert tests[0].metadata.firmware == ""
        assert [v.file_name for v in tests[0].all_videos] == ["legacy.mp4"]

    @pytest.mark.asyncio
    async def test_upload_sends_multipart(self, tmp_path):
        path = tmp_path / "clip.mp4"
        path.write_bytes(b"video-bytes")
        seen = {}

        def handler(request):
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content
            return httpx.Response(200, json={"success": True, "fileName": "f", "signedUrl": "u"})

        video = SelectedVideo(path=str(path), name="clip.mp4", size=11, content_type="video/mp4")
        async with _client(handler) as api:
            result = await api.upload_video("test-1", video)

        assert result["success"] is True
        assert seen["content_type"].startswith("multipart/form-data")
        assert b"video-bytes" in seen["body"]
        assert b'name="testId"' in seen["body"]


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_404_is_not_found(self):
        async with _client(lambda r: httpx.Response(404, json={"detail": "Test not found"})) as api:
            with pytest.raises(NotFoundError, match="Test not found"):
                await api.update_test_metadata("test-x", {"metadata": {}})

    @pytest.mark.asyncio
    async def test_400_is_validation_error(self):
        async with _client(lambda r: httpx.Response(400, json={"detail": "testId is required"})) as api:
            with pytest.raises(ValidationError):
                await api.create_or_update_test({})

    @pytest.mark.asyncio
    async def test_500_is_upstream_error(self):
        async with _client(lambda r: httpx.Response(500, json={"success": False})) as api:
            with pytest.raises(UpstreamServiceError) as exc_info:
                await api.location_by_ip()
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as api:
            with pytest.raises(NetworkError):
                await api.list_tests()

    @pytest.mark.asyncio
    async def test_missing_base_url_is_network_error(self):
        async with FieldCaptureClient(None) as api:
            with pytest.raises(NetworkError, match="not configured"):
                await api.health()


class TestUnexpectedBodies:
    @pytest.mark.asyncio
    async def test_record_without_tester_lists(self):
        body = {"tests": [
            {"testId": "test-1", "userInfo": {"userName": None, "email": None}, "metadata": {}},
            {"testId": "test-2", "userInfo": {"userName": "Field Tester A", "email": "tester.a@example.com"}},
        ]}
        async with _client(lambda r: httpx.Response(200, json=body)) as api:
            tests = await api.list_tests()

        assert tests[0].user_info is None
        assert tests[1].user_info.email == "tester.a@example.com"

    @pytest.mark.asyncio
    async def test_malformed_record_is_upstream_error(self):
        body = {"testId": "test-1", "videos": "not-a-list"}
        async with _client(lambda r: httpx.Response(200, json=body)) as api:
            with pytest.raises(UpstreamServiceError, match="malformed"):
                await api.get_test("test-1")

    @pytest.mark.asyncio
    async def test_non_json_success_is_upstream_error(self):
        async with _client(lambda r: httpx.Response(200, text="<html>proxy</html>")) as api:
            with pytest.raises(UpstreamServiceError, match="unreadable"):
                await api.health()

    @pytest.mark.asyncio
    async def test_list_body_is_upstream_error(self):
        async with _client(lambda r: httpx.Response(200, json=["Austin"])) as api:
            with pytest.raises(UpstreamServiceError):
                await api.location_by_ip()

    @pytest.mark.asyncio
    async def test_unreadable_video_is_validation_error(self, tmp_path):
        video = SelectedVideo(
            path=str(tmp_path / "gone.mp4"), name="gone.mp4", size=1, content_type="video/mp4"
        )
        async with _client(lambda r: httpx.Response(200, json={"success": True})) as api:
            with pytest.raises(ValidationError, match="Cannot read gone.mp4"):
                await api.upload_video("test-1", video)
