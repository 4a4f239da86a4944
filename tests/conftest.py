"""Pytest configuration and shared fixtures"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock, MagicMock
import pytest

from dishwatch.utils.config import (
    AppConfig,
    ServerConfig,
    OAuthConfig,
    CameraApiConfig,
    PollingConfig,
    ClassifierConfig,
    BusConfig,
    NotifierConfig,
    StorageConfig,
    ErrorLoggingConfig,
    LoggingConfig,
)
from dishwatch.models.credentials import TokenResponse
from dishwatch.models.events import RawEvent
from dishwatch.services.state_store import MemoryStore, StateStore

CAMERA_ID = "cam-kitchen-01"
USER_ID = "user-alice"

# Midnight of the test day; scenarios are expressed as offsets from it
T0 = datetime(2026, 3, 14, 0, 0, 0, tzinfo=timezone.utc)


def at(minutes: int = 0, seconds: int = 0) -> datetime:
    """Timestamp relative to T0"""
    return T0 + timedelta(minutes=minutes, seconds=seconds)


def event_payload(
    event_id: str,
    start: datetime,
    end: Optional[datetime] = None,
    kind: str = "motion",
    camera_id: str = CAMERA_ID,
) -> dict:
    """Upstream event payload as returned by the events endpoint"""
    payload = {
        "eventId": event_id,
        "eventType": kind,
        "startTime": start.isoformat(),
        "deviceId": camera_id,
    }
    if end is not None:
        payload["endTime"] = end.isoformat()
    return payload


def raw_event(event_id: str, start: datetime, end: Optional[datetime] = None, kind: str = "motion") -> RawEvent:
    return RawEvent.from_payload(event_payload(event_id, start, end, kind), CAMERA_ID)


class FakeClock:
    """Settable clock for time-driven components"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def mock_config(tmp_path: Path) -> AppConfig:
    """Create a mock AppConfig for testing"""
    return AppConfig(
        server=ServerConfig(
            host="0.0.0.0",
            port=10000,
            public_url="http://test.example.com"
        ),
        oauth=OAuthConfig(
            client_id="test-client",
            client_secret="test-secret",
            redirect_uri="http://test.example.com/auth/callback",
            refresh_initial_delay=0.0,
        ),
        camera_api=CameraApiConfig(
            base_url="https://cameras.test/v1",
            project_id="proj-1",
        ),
        polling=PollingConfig(
            default_interval_seconds=30,
            max_interval_seconds=300,
            max_workers=4,
            tick_seconds=0.01,
            rate_limit_per_second=100,
            rate_limit_burst=5,
        ),
        classifier=ClassifierConfig(),
        bus=BusConfig(max_attempts=2, initial_delay=0.0),
        notifier=NotifierConfig(
            webhook_url="https://hooks.test/dishwasher",
            timeout_seconds=10,
            rate_limit_per_second=100,
        ),
        storage=StorageConfig(state_file=str(tmp_path / "state.json")),
        error_logging=ErrorLoggingConfig(
            send_to_webhook=False,
            keep_in_memory=10
        ),
        logging=LoggingConfig(
            level="INFO",
            format="%(message)s",
            file=str(tmp_path / "test.log"),
            max_size_mb=10,
            backup_count=1
        )
    )


@pytest.fixture
def memory_store() -> StateStore:
    """StateStore backed by memory"""
    return StateStore(MemoryStore())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_response() -> TokenResponse:
    return TokenResponse(
        access_token="access-1",
        expires_in=3600,
        refresh_token="refresh-1",
        scope="https://www.googleapis.com/auth/sdm.service",
    )


@pytest.fixture
def mock_bus():
    """Create a mock TransitionBus"""
    bus = AsyncMock()
    bus.publish = AsyncMock()
    return bus


@pytest.fixture
def mock_error_logger():
    """Create a mock ErrorLogger"""
    logger = AsyncMock()
    logger.record_failure = AsyncMock()
    logger.record_success = MagicMock()
    logger.get_recent_errors = MagicMock(return_value=[])
    return logger


@pytest.fixture
def mock_oauth_client():
    """Create a mock OAuthClient"""
    client = MagicMock()
    client.refresh = AsyncMock()
    client.exchange_code = AsyncMock()
    client.authorization_url = MagicMock(return_value="https://accounts.test/auth?state=x")
    return client
