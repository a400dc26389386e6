"""Redis implementation of the checkpoint store."""

from __future__ import annotations

from typing import Any, Optional

try:
    import redis.asyncio as redis
    from redis.exceptions import WatchError
except ImportError:
    redis = None
    WatchError = None

from ..errors import NamespaceDeleted, VersionConflict
from ..models import WorkflowState
from .models import Checkpoint
from .store import CheckpointStore


class RedisCheckpointStore(CheckpointStore):
    """Redis-based checkpoint store for processes sharing one server.

    Each namespace is a hash holding the serialized state, its version and a
    tombstone flag. Writes use WATCH/MULTI so a concurrent writer aborts the
    transaction instead of overwriting it.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        key_prefix: str = "sectionflow:checkpoint:",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisCheckpointStore")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.key_prefix = key_prefix
        self._redis: Optional[Any] = None

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisCheckpointStore":
        store = cls(**kwargs)
        store._redis = redis.Redis.from_url(url, decode_responses=True)
        return store

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._redis is None:
            self._redis = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _key(self, namespace: str) -> str:
        return f"{self.key_prefix}{namespace}"

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    # ------------------------------------------------------------------
    async def put(
        self, namespace: str, state: WorkflowState, expected_version: int
    ) -> int:
        client = await self._client()
        key = self._key(namespace)
        payload = state.to_json()

        async with client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.hgetall(key)
                if current.get("deleted") == "1":
                    raise NamespaceDeleted(namespace)
                version = int(current.get("version", 0))
                if version != expected_version:
                    raise VersionConflict(namespace, expected_version, version)
                pipe.multi()
                pipe.hset(
                    key,
                    mapping={"state": payload, "version": version + 1, "deleted": 0},
                )
                await pipe.execute()
            except WatchError:
                latest = await client.hget(key, "version")
                raise VersionConflict(
                    namespace, expected_version, int(latest or 0)
                ) from None
        return expected_version + 1

    async def get(self, namespace: str) -> Checkpoint | None:
        client = await self._client()
        data = await client.hgetall(self._key(namespace))
        if not data or data.get("deleted") == "1" or not data.get("state"):
            return None
        return Checkpoint(
            namespace=namespace,
            state=WorkflowState.from_json(data["state"]),
            version=int(data["version"]),
        )

    async def list(self, prefix: str = "") -> list[str]:
        client = await self._client()
        namespaces = []
        async for key in client.scan_iter(match=f"{self.key_prefix}{prefix}*"):
            namespace = key[len(self.key_prefix):]
            if not namespace.startswith(prefix):
                continue
            if await client.hget(key, "deleted") == "1":
                continue
            namespaces.append(namespace)
        return sorted(namespaces)

    async def delete(self, namespace: str) -> None:
        client = await self._client()
        key = self._key(namespace)
        async with client.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping={"deleted": 1, "state": ""})
            pipe.hincrby(key, "version", 1)
            await pipe.execute()
