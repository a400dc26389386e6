import os
import uuid

import pytest

from sectionflow.checkpoint.redis import RedisCheckpointStore
from sectionflow.errors import NamespaceDeleted, VersionConflict
from tests.fixtures.states import make_state


@pytest.mark.asyncio
async def test_redis_checkpoint_store(graph):
    store = RedisCheckpointStore.from_url(
        os.getenv("TEST_REDIS_URL", "redis://localhost:6379/15"),
        key_prefix=f"sectionflow-test-{uuid.uuid4()}:",
    )
    try:
        await store.connect()
    except Exception:
        pytest.skip("Redis server not available")

    try:
        state = make_state(graph)
        assert await store.put("instance:a", state, 0) == 1
        with pytest.raises(VersionConflict):
            await store.put("instance:a", state, 0)
        assert await store.put("instance:a", state, 1) == 2

        checkpoint = await store.get("instance:a")
        assert checkpoint is not None
        assert checkpoint.version == 2
        assert checkpoint.state == state
        assert await store.list("instance:") == ["instance:a"]

        await store.delete("instance:a")
        assert await store.get("instance:a") is None
        assert await store.list("instance:") == []
        with pytest.raises(NamespaceDeleted):
            await store.put("instance:a", state, 2)
    finally:
        await store.disconnect()


def test_redis_store_from_url_does_not_connect():
    store = RedisCheckpointStore.from_url("redis://example.invalid:6379/0")
    assert store._key("instance:a") == "sectionflow:checkpoint:instance:a"
