"""Tests for identifiers, metadata helpers, the tester list and the session file."""
import re
from datetime import date

import pytest

from client_errors import ValidationError
from client_settings import DEFAULT_TESTERS_FILE
from field_types import (
    MetadataRecord,
    load_testers,
    missing_required,
    new_metadata,
    new_session_id,
    new_test_id,
    parse_metadata_assignments,
)
from session_store import SessionStore


def test_id_formats():
    assert re.fullmatch(r"session-\d{13}-[0-9a-z]{9}", new_session_id())
    assert re.fullmatch(r"test-\d{13}-[0-9a-z]{9}", new_test_id())


def test_new_metadata_carries_date():
    assert new_metadata(date(2026, 1, 15)).date == "2026-01-15"


def test_missing_required_lists_wire_names():
    metadata = MetadataRecord(device_id="D1", environment="urban", road_type="  ")
    assert missing_required(metadata) == ["deviceType", "testCycle", "roadType"]
    assert missing_required(None) == ["deviceId", "deviceType", "testCycle", "environment", "roadType"]


def test_metadata_wire_names():
    wire = MetadataRecord(external_battery_plugged_in=True, var_version="VAR-3").to_wire()
    assert wire["externalBatteryPluggedIn"] is True
    assert wire["varVersion"] == "VAR-3"
    assert len(wire) == 25


def test_parse_assignments():
    updates = parse_metadata_assignments(
        ["deviceId=D1", "test_cycle=GA 2 - RC1", "externalBatteryPluggedIn=yes", "comments=a=b"]
    )
    assert updates == {
        "device_id": "D1",
        "test_cycle": "GA 2 - RC1",
        "external_battery_plugged_in": True,
        "comments": "a=b",
    }


def test_parse_assignments_rejects_unknown_field():
    with pytest.raises(ValidationError):
        parse_metadata_assignments(["speed=10"])


def test_parse_assignments_rejects_missing_equals():
    with pytest.raises(ValidationError):
        parse_metadata_assignments(["deviceId"])


def test_bundled_testers_load():
    testers = load_testers(DEFAULT_TESTERS_FILE)
    assert len(testers) == 6
    assert all("@" in t.email for t in testers)


class TestSessionStore:
    def test_get_or_create_is_stable(self, tmp_path):
        store = SessionStore(str(tmp_path / "nested" / "session.json"))
        first, created = store.get_or_create()
        second, created_again = store.get_or_create()

        assert created is True
        assert created_again is False
        assert first == second

    def test_unreadable_file_is_ignored(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("not json")
        assert SessionStore(str(path)).load() is None

    def test_clear(self, tmp_path):
        store = SessionStore(str(tmp_path / "session.json"))
        store.save("session-1-abc")
        store.clear()
        assert store.load() is None
