"""Tests for WebhookNotifier"""

import pytest
from unittest.mock import AsyncMock, patch, MagicMock
from aiohttp import ClientError

from dishwatch.models.events import Phase, Transition
from dishwatch.services.notifier import WebhookNotifier

from conftest import CAMERA_ID, USER_ID, at


def webhook_response(content_type: str = "application/json", payload=None):
    response = AsyncMock()
    response.raise_for_status = MagicMock()
    response.content_type = content_type
    response.json = AsyncMock(return_value=payload)
    return response


@pytest.fixture
def notifier():
    return WebhookNotifier(
        webhook_url="https://hooks.test/dishwasher",
        rate_limit_per_second=100
    )


@pytest.mark.asyncio
async def test_send_webhook_success(notifier):
    """Test successful webhook send"""
    with patch("aiohttp.ClientSession.post") as mock_post:
        mock_post.return_value.__aenter__.return_value = webhook_response(payload={"success": True})

        result = await notifier.send({"event": "test"})

        assert result == {"success": True}
        mock_post.assert_called_once()
        assert mock_post.call_args[0][0] == "https://hooks.test/dishwasher"


@pytest.mark.asyncio
async def test_send_webhook_non_json_body(notifier):
    with patch("aiohttp.ClientSession.post") as mock_post:
        mock_post.return_value.__aenter__.return_value = webhook_response(content_type="text/plain")

        assert await notifier.send({"event": "test"}) is None


@pytest.mark.asyncio
async def test_notify_transition_payload(notifier):
    """Transition is serialized with its event name"""
    transition = Transition(
        camera_id=CAMERA_ID,
        user_id=USER_ID,
        from_phase=Phase.RUNNING,
        to_phase=Phase.FINISHING,
        timestamp=at(5, 20),
        sequence=2,
    )

    with patch("aiohttp.ClientSession.post") as mock_post:
        mock_post.return_value.__aenter__.return_value = webhook_response()

        await notifier.notify(transition)

        payload = mock_post.call_args.kwargs["json"]
        assert payload["event"] == "dishwasher_transition"
        assert payload["camera_id"] == CAMERA_ID
        assert payload["from_phase"] == "Running"
        assert payload["to_phase"] == "Finishing"
        assert payload["sequence"] == 2
        assert payload["timestamp"].startswith("2026-03-14T00:05:20")


@pytest.mark.asyncio
async def test_send_webhook_failure_propagates(notifier):
    """Retries belong to the transition bus, so errors surface to the caller"""
    with patch("aiohttp.ClientSession.post") as mock_post:
        response = webhook_response()
        response.raise_for_status = MagicMock(side_effect=ClientError("HTTP 500"))
        mock_post.return_value.__aenter__.return_value = response

        with pytest.raises(ClientError):
            await notifier.send({"event": "test"})

        assert mock_post.call_count == 1
