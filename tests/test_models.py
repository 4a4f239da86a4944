"""Tests for data models"""

from datetime import datetime, timedelta, timezone
import pytest

from dishwatch.models.camera import DiscoveredCamera, MonitoredCamera
from dishwatch.models.credentials import Credential, TokenResponse
from dishwatch.models.errors import ClassificationError, ErrorLog
from dishwatch.models.events import EventKind, Phase, RawEvent, Transition

from conftest import CAMERA_ID, USER_ID, T0, at, event_payload


def test_raw_event_from_payload():
    """Test raw event parsing"""
    event = RawEvent.from_payload(event_payload("e1", at(0, 0), at(0, 15)), CAMERA_ID)

    assert event.event_id == "e1"
    assert event.camera_id == CAMERA_ID
    assert event.kind == EventKind.MOTION
    assert event.start == at(0, 0)
    assert event.end == at(0, 15)
    assert event.duration_seconds(at(1)) == 15


def test_raw_event_ongoing_duration():
    """Ongoing events are measured up to the observation time"""
    event = RawEvent.from_payload(event_payload("e1", at(0, 0)), CAMERA_ID)

    assert event.end is None
    assert event.duration_seconds(at(0, 42)) == 42


def test_raw_event_kind_normalization():
    """Unknown kinds are kept as unknown instead of rejected"""
    assert RawEvent.from_payload(event_payload("e1", at(0), kind="Sound"), CAMERA_ID).kind == EventKind.SOUND
    assert RawEvent.from_payload(event_payload("e2", at(0), kind="chime"), CAMERA_ID).kind == EventKind.UNKNOWN


def test_raw_event_naive_timestamps_are_utc():
    payload = event_payload("e1", at(0))
    payload["startTime"] = "2026-03-14T00:00:00"

    event = RawEvent.from_payload(payload, CAMERA_ID)

    assert event.start == T0
    assert event.start.tzinfo is not None


def test_raw_event_defaults_device_id():
    payload = event_payload("e1", at(0))
    del payload["deviceId"]

    assert RawEvent.from_payload(payload, CAMERA_ID).camera_id == CAMERA_ID


@pytest.mark.parametrize(
    "payload",
    [
        "not a dict",
        {"eventType": "motion", "startTime": "2026-03-14T00:00:00Z"},
        {"eventId": "e1", "eventType": "motion"},
        {"eventId": "e1", "eventType": "motion", "startTime": "yesterday"},
        {
            "eventId": "e1",
            "eventType": "motion",
            "startTime": "2026-03-14T00:01:00Z",
            "endTime": "2026-03-14T00:00:00Z",
        },
        {"eventId": "e1", "eventType": "motion", "startTime": "2026-03-14T00:00:00Z", "deviceId": "other"},
    ],
)
def test_raw_event_malformed(payload):
    with pytest.raises(ClassificationError):
        RawEvent.from_payload(payload, CAMERA_ID)


def test_transition_key_and_payload():
    transition = Transition(
        camera_id=CAMERA_ID,
        user_id=USER_ID,
        from_phase=Phase.IDLE,
        to_phase=Phase.RUNNING,
        timestamp=at(0, 15),
        sequence=7,
    )

    assert transition.key == f"{CAMERA_ID}:000000000007"
    payload = transition.to_payload()
    assert payload["event"] == "dishwasher_transition"
    assert payload["to_phase"] == "Running"
    assert payload["sequence"] == 7


def test_credential_from_token_response():
    response = TokenResponse(access_token="a1", expires_in=3600, refresh_token="r1", scope="s1 s2")

    credential = Credential.from_token_response(USER_ID, response, T0)

    assert credential.expires_at == T0 + timedelta(hours=1)
    assert credential.scopes == {"s1", "s2"}
    assert credential.is_fresh(T0, timedelta(seconds=60))
    assert not credential.is_fresh(T0 + timedelta(minutes=59, seconds=30), timedelta(seconds=60))


def test_credential_keeps_previous_refresh_token():
    previous = Credential(
        user_id=USER_ID,
        access_token="a1",
        refresh_token="r1",
        expires_at=T0,
        scopes={"s1"},
    )
    response = TokenResponse(access_token="a2", expires_in=60)

    credential = Credential.from_token_response(USER_ID, response, T0, previous=previous)

    assert credential.refresh_token == "r1"
    assert credential.scopes == {"s1"}
    assert credential.access_token == "a2"


def test_invalid_credential_is_never_fresh():
    credential = Credential(
        user_id=USER_ID,
        access_token="a1",
        refresh_token="r1",
        expires_at=T0 + timedelta(days=1),
        invalid=True,
    )

    assert not credential.is_fresh(T0, timedelta(seconds=60))


def test_discovered_camera_from_upstream():
    camera = DiscoveredCamera.from_upstream({
        "name": "enterprises/p/devices/cam-9",
        "type": "sdm.devices.types.CAMERA",
        "traits": {"sdm.devices.traits.Info": {"customName": "Dishwasher cam"}},
    })

    assert camera.device_id == "cam-9"
    assert camera.display_name == "Dishwasher cam"
    assert camera.room_name is None
    assert camera.is_camera


def test_monitored_camera_identity():
    a = MonitoredCamera(camera_id=CAMERA_ID, user_id=USER_ID, display_name="Kitchen")
    b = MonitoredCamera(camera_id=CAMERA_ID, user_id=USER_ID, monitoring_enabled=False)

    assert a == b
    assert len({a, b}) == 1


def test_error_log_webhook_payload():
    error_log = ErrorLog(
        operation="poll_camera",
        error_type="UpstreamServerError",
        error_message="HTTP 503",
        retry_count=1,
        camera_id=CAMERA_ID,
        timestamp=datetime(2026, 3, 14, tzinfo=timezone.utc),
        context={"cursor": "c1"},
    )

    payload = error_log.to_webhook_payload()

    assert payload["event"] == "system_error"
    assert payload["timestamp"] == "2026-03-14T00:00:00+00:00"
    assert payload["camera_id"] == CAMERA_ID
    assert payload["user_id"] is None
    assert payload["context"] == {"cursor": "c1"}
