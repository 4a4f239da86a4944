"""State store - key-value persistence for checkpoints, credentials and the outbox"""

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from ..models.camera import MonitoredCamera
from ..models.credentials import Credential
from ..models.cycle import CycleState
from ..models.errors import StorageError
from ..models.events import Transition

logger = logging.getLogger(__name__)

CYCLE_STATE_PREFIX = "cycle_state/"
TRANSITIONS_PREFIX = "transitions/"
CREDENTIALS_PREFIX = "credentials/"
OUTBOX_PREFIX = "outbox/"
REGISTRY_KEY = "registry/cameras"


class KeyValueStore(ABC):
    """Opaque key-value backend; values are JSON-compatible"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def put(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        ...

    async def append(self, key: str, item: Any) -> None:
        """Append to a list value, creating it if missing"""
        current = await self.get(key) or []
        current.append(item)
        await self.put(key, current)


class MemoryStore(KeyValueStore):
    """In-process backend (tests, ephemeral runs)"""

    def __init__(self):
        self.data: dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        value = self.data.get(key)
        # Hand out copies so callers can't mutate stored state
        return json.loads(json.dumps(value)) if value is not None else None

    async def put(self, key: str, value: Any) -> None:
        self.data[key] = json.loads(json.dumps(value))

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self.data if k.startswith(prefix))


class JsonFileStore(KeyValueStore):
    """
    Single JSON document on disk

    Every write rewrites the whole document through a temporary file and an
    atomic rename, so a crash leaves either the old or the new snapshot.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._data: Optional[dict[str, Any]] = None
        self._lock = asyncio.Lock()

    def _load(self) -> dict[str, Any]:
        if self._data is None:
            if self.path.exists():
                try:
                    with open(self.path, "r", encoding="utf-8") as f:
                        self._data = json.load(f)
                except (OSError, json.JSONDecodeError) as e:
                    raise StorageError(f"Failed to read {self.path}: {e}") from e
                logger.info(f"📂 Loaded state store from {self.path} ({len(self._data)} keys)")
            else:
                self._data = {}
        return self._data

    def _flush(self) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {self.path}: {e}") from e

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            value = self._load().get(key)
            return json.loads(json.dumps(value)) if value is not None else None

    async def put(self, key: str, value: Any) -> None:
        async with self._lock:
            data = self._load()
            previous = data.get(key)
            data[key] = json.loads(json.dumps(value))
            try:
                self._flush()
            except StorageError:
                # Keep memory consistent with disk
                if previous is None:
                    data.pop(key, None)
                else:
                    data[key] = previous
                raise

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = self._load()
            if key in data:
                previous = data.pop(key)
                try:
                    self._flush()
                except StorageError:
                    data[key] = previous
                    raise

    async def keys(self, prefix: str = "") -> list[str]:
        async with self._lock:
            return sorted(k for k in self._load() if k.startswith(prefix))


class StateStore:
    """
    Typed facade over the key-value backend

    Layout:
        cycle_state/<camera>   latest CycleState snapshot
        transitions/<camera>   append-only transition log
        credentials/<user>     OAuth2 credential
        registry/cameras       monitored cameras
        outbox/<camera>:<seq>  transitions not yet delivered by the bus

    The first failed write switches the store into degraded mode: further
    writes are skipped and ``degraded`` is surfaced in the engine status.
    """

    def __init__(self, backend: KeyValueStore):
        self.backend = backend
        self.degraded = False
        self.last_error: Optional[str] = None

    async def _write(self, operation: str, key: str, value: Any) -> bool:
        if self.degraded:
            logger.warning(f"Store degraded, skipping {operation} for {key}")
            return False
        try:
            await self.backend.put(key, value)
            return True
        except StorageError as e:
            self._enter_degraded(e)
            return False

    async def _delete(self, key: str) -> bool:
        if self.degraded:
            return False
        try:
            await self.backend.delete(key)
            return True
        except StorageError as e:
            self._enter_degraded(e)
            return False

    def _enter_degraded(self, error: StorageError) -> None:
        self.degraded = True
        self.last_error = str(error)
        logger.critical(f"❌ State store failure, checkpointing halted: {error}")

    # --- Cycle state / transition log ------------------------------------

    async def load_cycle_state(self, camera_id: str) -> Optional[CycleState]:
        raw = await self.backend.get(CYCLE_STATE_PREFIX + camera_id)
        return CycleState.model_validate(raw) if raw is not None else None

    async def save_cycle_state(self, state: CycleState) -> bool:
        return await self._write(
            "save_cycle_state", CYCLE_STATE_PREFIX + state.camera_id, state.model_dump(mode="json")
        )

    async def checkpoint(self, state: CycleState, transitions: list[Transition]) -> bool:
        """
        Queue the transitions in the outbox, append them to the camera's log,
        then persist the snapshot

        A transition reaches the snapshot only after it is in the outbox, so
        the bus redelivers it on start even if publishing never happened.
        """
        if self.degraded:
            logger.warning(f"Store degraded, checkpoint for {state.camera_id} skipped")
            return False
        key = TRANSITIONS_PREFIX + state.camera_id
        try:
            for transition in transitions:
                await self.backend.put(OUTBOX_PREFIX + transition.key, transition.model_dump(mode="json"))
            for transition in transitions:
                await self.backend.append(key, transition.model_dump(mode="json"))
        except StorageError as e:
            self._enter_degraded(e)
            return False
        return await self.save_cycle_state(state)

    async def load_transitions(self, camera_id: str) -> list[Transition]:
        raw = await self.backend.get(TRANSITIONS_PREFIX + camera_id) or []
        return [Transition.model_validate(item) for item in raw]

    # --- Credentials ------------------------------------------------------

    async def save_credential(self, credential: Credential) -> bool:
        return await self._write(
            "save_credential", CREDENTIALS_PREFIX + credential.user_id, credential.model_dump(mode="json")
        )

    async def delete_credential(self, user_id: str) -> bool:
        return await self._delete(CREDENTIALS_PREFIX + user_id)

    async def load_credentials(self) -> list[Credential]:
        credentials = []
        for key in await self.backend.keys(CREDENTIALS_PREFIX):
            raw = await self.backend.get(key)
            if raw is not None:
                credentials.append(Credential.model_validate(raw))
        return credentials

    # --- Camera registry --------------------------------------------------

    async def save_cameras(self, cameras: list[MonitoredCamera]) -> bool:
        return await self._write(
            "save_cameras", REGISTRY_KEY, [camera.model_dump(mode="json") for camera in cameras]
        )

    async def load_cameras(self) -> list[MonitoredCamera]:
        raw = await self.backend.get(REGISTRY_KEY) or []
        return [MonitoredCamera.model_validate(item) for item in raw]

    # --- Outbox -----------------------------------------------------------

    async def put_outbox(self, transition: Transition) -> bool:
        return await self._write(
            "put_outbox", OUTBOX_PREFIX + transition.key, transition.model_dump(mode="json")
        )

    async def delete_outbox(self, transition: Transition) -> bool:
        return await self._delete(OUTBOX_PREFIX + transition.key)

    async def load_outbox(self) -> list[Transition]:
        """Pending transitions ordered by camera then sequence number"""
        pending = []
        for key in await self.backend.keys(OUTBOX_PREFIX):
            raw = await self.backend.get(key)
            if raw is not None:
                pending.append(Transition.model_validate(raw))
        return pending
