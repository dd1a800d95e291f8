from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import SerializationError
from core.models import ApplicationInfo, Event, ExtraMap, ExtraScalar, parse_extras, parse_timestamp


def test_event_from_json() -> None:
    frame = json.dumps(
        {
            "id": 25,
            "appid": 5,
            "message": "Backup finished",
            "title": "Backup",
            "priority": 6,
            "extras": {"client::display": {"contentType": "text/markdown"}, "retries": 2},
            "date": "2018-02-27T19:36:10.5045044+01:00",
        }
    )
    event = Event.from_json(frame)
    assert event.id == 25
    assert event.app_id == 5
    assert event.title == "Backup"
    assert event.message == "Backup finished"
    assert event.priority == 6
    assert event.extras["retries"] == ExtraScalar("2")
    nested = event.extras["client::display"]
    assert isinstance(nested, ExtraMap)
    assert nested.items["contentType"] == ExtraScalar("text/markdown")
    assert event.date == datetime(2018, 2, 27, 19, 36, 10, 504504, tzinfo=timezone(timedelta(hours=1)))


def test_event_defaults_for_optional_fields() -> None:
    event = Event.from_json('{"id": 1, "appid": 2, "message": "hi"}')
    assert event.title == ""
    assert event.priority == 0
    assert dict(event.extras) == {}


@pytest.mark.parametrize(
    "frame",
    [
        "not json",
        "[1, 2]",
        '{"id": 1, "message": "no app id"}',
        '{"id": 1, "appid": "x"}',
        '{"id": 1, "appid": 2, "extras": [1]}',
        '{"id": 1, "appid": 2, "date": "yesterday"}',
    ],
)
def test_malformed_frames_raise_serialization_error(frame: str) -> None:
    with pytest.raises(SerializationError):
        Event.from_json(frame)


def test_parse_extras_scalars() -> None:
    extras = parse_extras({"flag": False, "none": None, "items": [1, "a"], "ratio": 0.5})
    assert extras["flag"] == ExtraScalar("false")
    assert extras["none"] == ExtraScalar("null")
    assert extras["items"] == ExtraScalar('[1, "a"]')
    assert extras["ratio"] == ExtraScalar("0.5")


def test_parse_timestamp_zulu() -> None:
    assert parse_timestamp("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("raw", "microsecond"),
    [
        ("2024-01-01T10:00:00.1Z", 100000),
        ("2024-01-01T10:00:00.12Z", 120000),
        ("2024-01-01T10:00:00.1234Z", 123400),
        ("2024-01-01T10:00:00.12345Z", 123450),
        ("2024-01-01T10:00:00.123456789Z", 123456),
    ],
)
def test_parse_timestamp_any_fraction_length(raw: str, microsecond: int) -> None:
    assert parse_timestamp(raw) == datetime(2024, 1, 1, 10, 0, 0, microsecond, tzinfo=timezone.utc)


def test_event_with_short_fraction_is_not_dropped() -> None:
    event = Event.from_json('{"id": 1, "appid": 2, "message": "hi", "date": "2024-01-01T10:00:00.12345+02:00"}')
    assert event.date == datetime(2024, 1, 1, 10, 0, 0, 123450, tzinfo=timezone(timedelta(hours=2)))


def test_application_info_from_payload() -> None:
    app = ApplicationInfo.from_payload(
        {"id": 5, "token": "AWH0wZ5r0Mbac.r", "name": "Backup Server", "description": "nightly", "internal": False}
    )
    assert app == ApplicationInfo(app_id=5, name="Backup Server", description="nightly")
    with pytest.raises(SerializationError):
        ApplicationInfo.from_payload({"name": "no id"})
