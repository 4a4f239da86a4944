"""Tests for CameraApiClient"""

from unittest.mock import AsyncMock, patch
import pytest

from dishwatch.clients.camera_api import CameraApiClient, parse_retry_after
from dishwatch.models.errors import (
    CameraNotFoundError,
    RateLimitedError,
    UpstreamServerError,
    UpstreamUnauthorizedError,
)

from conftest import CAMERA_ID, at, event_payload


def api_response(status: int, payload=None, body: str = "", headers=None):
    response = AsyncMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value=body)
    response.headers = headers or {}
    return response


@pytest.fixture
def api_client(mock_config):
    return CameraApiClient(mock_config.camera_api)


DEVICES = {
    "devices": [
        {
            "name": "enterprises/proj-1/devices/cam-kitchen-01",
            "type": "sdm.devices.types.CAMERA",
            "traits": {
                "sdm.devices.traits.Info": {"customName": "Kitchen"},
                "sdm.devices.traits.CameraMotion": {},
            },
            "parentRelations": [
                {"parent": "enterprises/proj-1/structures/s/rooms/r", "displayName": "Kitchen"}
            ],
        },
        {
            "name": "enterprises/proj-1/devices/doorbell-1",
            "type": "sdm.devices.types.DOORBELL",
            "traits": {"sdm.devices.traits.CameraLiveStream": {}},
        },
        {
            "name": "enterprises/proj-1/devices/thermostat-1",
            "type": "sdm.devices.types.THERMOSTAT",
            "traits": {"sdm.devices.traits.Temperature": {}},
        },
    ]
}


@pytest.mark.asyncio
async def test_list_cameras_filters_devices(api_client):
    with patch("aiohttp.ClientSession.get") as mock_get:
        mock_get.return_value.__aenter__.return_value = api_response(200, DEVICES)

        cameras = await api_client.list_cameras("token-1")

        assert [c.device_id for c in cameras] == ["cam-kitchen-01", "doorbell-1"]
        assert cameras[0].display_name == "Kitchen"
        assert cameras[0].room_name == "Kitchen"
        assert cameras[1].display_name == "doorbell-1"

        url = mock_get.call_args[0][0]
        assert url == "https://cameras.test/v1/enterprises/proj-1/devices"
        assert mock_get.call_args.kwargs["headers"] == {"Authorization": "Bearer token-1"}


@pytest.mark.asyncio
async def test_fetch_events_with_cursor(api_client):
    events = [event_payload("e1", at(0, 0), at(0, 15))]
    with patch("aiohttp.ClientSession.get") as mock_get:
        mock_get.return_value.__aenter__.return_value = api_response(
            200, {"events": events, "nextCursor": "cursor-2"}
        )

        page = await api_client.fetch_events("token-1", CAMERA_ID, "cursor-1")

        assert page.events == events
        assert page.next_cursor == "cursor-2"
        assert mock_get.call_args.kwargs["params"] == {"since": "cursor-1"}
        assert mock_get.call_args[0][0].endswith(f"/devices/{CAMERA_ID}/events")


@pytest.mark.asyncio
async def test_fetch_events_empty_keeps_cursor(api_client):
    with patch("aiohttp.ClientSession.get") as mock_get:
        mock_get.return_value.__aenter__.return_value = api_response(200, {})

        page = await api_client.fetch_events("token-1", CAMERA_ID, "cursor-1")

        assert page.events == []
        assert page.next_cursor == "cursor-1"


@pytest.mark.asyncio
async def test_fetch_events_without_cursor(api_client):
    with patch("aiohttp.ClientSession.get") as mock_get:
        mock_get.return_value.__aenter__.return_value = api_response(200, {"events": []})

        await api_client.fetch_events("token-1", CAMERA_ID)

        assert mock_get.call_args.kwargs["params"] is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error_type",
    [
        (401, UpstreamUnauthorizedError),
        (404, CameraNotFoundError),
        (500, UpstreamServerError),
        (503, UpstreamServerError),
    ],
)
async def test_http_errors_are_mapped(api_client, status, error_type):
    with patch("aiohttp.ClientSession.get") as mock_get:
        mock_get.return_value.__aenter__.return_value = api_response(status, body="error")

        with pytest.raises(error_type) as exc_info:
            await api_client.fetch_events("token-1", CAMERA_ID)

        assert exc_info.value.camera_id == CAMERA_ID
        assert exc_info.value.status == status


@pytest.mark.asyncio
async def test_rate_limit_carries_retry_after(api_client):
    with patch("aiohttp.ClientSession.get") as mock_get:
        mock_get.return_value.__aenter__.return_value = api_response(
            429, body="quota", headers={"Retry-After": "45"}
        )

        with pytest.raises(RateLimitedError) as exc_info:
            await api_client.fetch_events("token-1", CAMERA_ID)

        assert exc_info.value.retry_after == 45.0


@pytest.mark.asyncio
async def test_malformed_events_list(api_client):
    with patch("aiohttp.ClientSession.get") as mock_get:
        mock_get.return_value.__aenter__.return_value = api_response(200, {"events": "nope"})

        with pytest.raises(UpstreamServerError):
            await api_client.fetch_events("token-1", CAMERA_ID)


def test_parse_retry_after():
    assert parse_retry_after("30") == 30.0
    assert parse_retry_after(" 2.5 ") == 2.5
    assert parse_retry_after(None) is None
    assert parse_retry_after("Wed, 21 Oct 2026 07:28:00 GMT") is None
    assert parse_retry_after("-1") is None
