"""Tests for MonitoringEngine"""

from datetime import timedelta
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse
import pytest

from dishwatch.models.camera import DiscoveredCamera
from dishwatch.models.errors import InvalidOAuthState, MissingAuthorizationCode
from dishwatch.models.events import Phase, utc_now
from dishwatch.orchestrator import MonitoringEngine
from dishwatch.services.state_store import MemoryStore

from conftest import CAMERA_ID, USER_ID


def state_from_url(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


@pytest.fixture
def engine(mock_config):
    return MonitoringEngine(mock_config, backend=MemoryStore())


@pytest.mark.asyncio
async def test_engine_initialization(engine):
    """Test engine initializes all components"""
    assert engine.vault is not None
    assert engine.registry is not None
    assert engine.scheduler is not None
    assert engine.bus is not None
    assert engine.error_logger is not None

    # Webhook configured: registered as a bus collaborator
    assert engine.notifier is not None
    assert "webhook_notifier" in engine.bus.stats()
    assert engine.scheduler.max_workers == 4


@pytest.mark.asyncio
async def test_engine_without_webhook(mock_config):
    mock_config.notifier.webhook_url = ""

    engine = MonitoringEngine(mock_config, backend=MemoryStore())

    assert engine.notifier is None
    assert engine.bus.stats() == {}


@pytest.mark.asyncio
async def test_engine_start_and_stop(engine):
    """Test engine starts and stops background services"""
    await engine.start()
    assert engine._running is True
    assert engine.get_status()["scheduler"]["running"] is True

    await engine.stop()

    status = engine.get_status()
    assert status["running"] is False
    assert status["scheduler"]["running"] is False


@pytest.mark.asyncio
async def test_authorization_flow(engine, token_response):
    engine.oauth_client.exchange_code = AsyncMock(return_value=token_response)
    await engine.set_monitoring(USER_ID, CAMERA_ID, True)
    await engine.registry.mark_user_degraded(USER_ID, True)

    url = await engine.begin_authorization(USER_ID)
    user_id = await engine.complete_authorization("auth-code", state_from_url(url))

    assert user_id == USER_ID
    engine.oauth_client.exchange_code.assert_called_once_with("auth-code")
    assert await engine.vault.get_valid_token(USER_ID) == "access-1"
    assert (await engine.registry.user_status(USER_ID))["degraded"] is False


@pytest.mark.asyncio
async def test_authorization_state_is_single_use(engine, token_response):
    engine.oauth_client.exchange_code = AsyncMock(return_value=token_response)
    state = state_from_url(await engine.begin_authorization(USER_ID))

    await engine.complete_authorization("auth-code", state)

    with pytest.raises(InvalidOAuthState):
        await engine.complete_authorization("auth-code", state)


@pytest.mark.asyncio
async def test_authorization_rejects_unknown_or_expired_state(engine):
    engine.oauth_client.exchange_code = AsyncMock()

    with pytest.raises(InvalidOAuthState):
        await engine.complete_authorization("auth-code", "forged")

    state = state_from_url(await engine.begin_authorization(USER_ID))
    engine._pending_authorizations[state] = (USER_ID, utc_now() - timedelta(minutes=11))

    with pytest.raises(InvalidOAuthState):
        await engine.complete_authorization("auth-code", state)

    engine.oauth_client.exchange_code.assert_not_called()


@pytest.mark.asyncio
async def test_authorization_requires_code(engine):
    state = state_from_url(await engine.begin_authorization(USER_ID))

    with pytest.raises(MissingAuthorizationCode):
        await engine.complete_authorization(None, state)


@pytest.mark.asyncio
async def test_deauthorize_pauses_cameras(engine, token_response):
    await engine.vault.store_initial_credential(USER_ID, token_response)
    await engine.set_monitoring(USER_ID, CAMERA_ID, True)

    await engine.deauthorize(USER_ID)

    assert engine.vault.get_credential(USER_ID) is None
    assert await engine.registry.cameras_due_for_poll() == []


@pytest.mark.asyncio
async def test_discover_cameras(engine, token_response):
    await engine.vault.store_initial_credential(USER_ID, token_response)
    discovered = [
        DiscoveredCamera(
            name="enterprises/p/devices/cam-1",
            device_id="cam-1",
            type_name="sdm.devices.types.CAMERA",
            display_name="Kitchen",
        )
    ]
    engine.api_client.list_cameras = AsyncMock(return_value=discovered)

    assert await engine.discover_cameras(USER_ID) == discovered
    engine.api_client.list_cameras.assert_called_once_with("access-1")


@pytest.mark.asyncio
async def test_camera_state_and_history(engine):
    assert await engine.camera_state(CAMERA_ID) is None

    await engine.set_monitoring(USER_ID, CAMERA_ID, True)

    state = await engine.camera_state(CAMERA_ID)
    assert state["phase"] == Phase.IDLE.value
    assert await engine.camera_history(CAMERA_ID) == []


@pytest.mark.asyncio
async def test_get_status(engine, token_response):
    await engine.vault.store_initial_credential(USER_ID, token_response)
    await engine.set_monitoring(USER_ID, CAMERA_ID, True)
    await engine.set_monitoring(USER_ID, "cam-paused", False)

    status = engine.get_status()

    assert status["total_users"] == 1
    assert status["total_cameras"] == 2
    assert status["monitored_cameras"] == 1
    assert status["degraded_cameras"] == 0
    assert status["storage_degraded"] is False
    assert status["pending_transitions"] == 0
    assert status["failing_cameras"] == {}
