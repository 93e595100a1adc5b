"""Persistence backends for the client dedup cache snapshot.

A snapshot is a flat JSON object ``{message_key: last_seen_epoch_ms}``.
"""

import json
import os
from pathlib import Path
from typing import Protocol

import redis.asyncio as redis_async

from app.logging_config import get_logger

logger = get_logger("client.snapshot_store")

DEFAULT_SNAPSHOT_KEY = "whatsapp_processed_messages"


class SnapshotStore(Protocol):
    async def load(self) -> dict[str, int]: ...

    async def save(self, snapshot: dict[str, int]) -> None: ...

    async def clear(self) -> None: ...


def _coerce_snapshot(data: object) -> dict[str, int]:
    if not isinstance(data, dict):
        return {}
    snapshot: dict[str, int] = {}
    for key, value in data.items():
        try:
            snapshot[str(key)] = int(value)
        except (TypeError, ValueError):
            continue
    return snapshot


class MemorySnapshotStore:
    """Keeps the snapshot in process, for tests and throwaway views."""

    def __init__(self, initial: dict[str, int] | None = None):
        self.snapshot = dict(initial or {})

    async def load(self) -> dict[str, int]:
        return dict(self.snapshot)

    async def save(self, snapshot: dict[str, int]) -> None:
        self.snapshot = dict(snapshot)

    async def clear(self) -> None:
        self.snapshot = {}


class JsonFileSnapshotStore:
    """One JSON file per namespaced key under ``directory``; written atomically via rename."""

    def __init__(self, directory: str | Path, key: str = DEFAULT_SNAPSHOT_KEY):
        self.path = Path(directory) / f"{key}.json"

    async def load(self) -> dict[str, int]:
        if not self.path.exists():
            return {}
        try:
            return _coerce_snapshot(json.loads(self.path.read_text(encoding="utf-8")))
        except (OSError, ValueError) as e:
            logger.warning("Dedup snapshot unreadable, starting empty", extra={"context": {"path": str(self.path), "error": str(e)}})
            return {}

    async def save(self, snapshot: dict[str, int]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(snapshot), encoding="utf-8")
        os.replace(tmp_path, self.path)

    async def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


class RedisSnapshotStore:
    """Snapshot stored as a JSON string under a namespaced Redis key."""

    def __init__(self, client: "redis_async.Redis", key: str = DEFAULT_SNAPSHOT_KEY, namespace: str = "inbox:client"):
        self.client = client
        self.key = f"{namespace}:{key}"

    @classmethod
    def from_url(cls, redis_url: str, key: str = DEFAULT_SNAPSHOT_KEY, *, socket_timeout_seconds: float = 0.5):
        client = redis_async.Redis.from_url(
            redis_url,
            socket_timeout=socket_timeout_seconds,
            socket_connect_timeout=socket_timeout_seconds,
            decode_responses=True,
        )
        return cls(client, key)

    async def load(self) -> dict[str, int]:
        raw = await self.client.get(self.key)
        if not raw:
            return {}
        try:
            return _coerce_snapshot(json.loads(raw))
        except ValueError as e:
            logger.warning("Dedup snapshot in redis is not JSON", extra={"context": {"key": self.key, "error": str(e)}})
            return {}

    async def save(self, snapshot: dict[str, int]) -> None:
        await self.client.set(self.key, json.dumps(snapshot))

    async def clear(self) -> None:
        await self.client.delete(self.key)
