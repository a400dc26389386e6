"""Contract tests shared by the local checkpoint stores."""

import asyncio

import pytest

from sectionflow.checkpoint import InMemoryCheckpointStore, SQLiteCheckpointStore
from sectionflow.errors import NamespaceDeleted, VersionConflict
from sectionflow.models import SectionStatus
from tests.fixtures.states import make_state


@pytest.fixture(params=["inmemory", "sqlite"])
def checkpoint_store(request, tmp_path):
    if request.param == "inmemory":
        yield InMemoryCheckpointStore()
    else:
        store = SQLiteCheckpointStore(tmp_path / "checkpoints.db")
        yield store
        store.close()


@pytest.mark.asyncio
async def test_put_and_get(checkpoint_store, graph):
    state = make_state(graph, problem_statement=SectionStatus.APPROVED)

    version = await checkpoint_store.put("instance:a", state, 0)
    assert version == 1

    checkpoint = await checkpoint_store.get("instance:a")
    assert checkpoint is not None
    assert checkpoint.version == 1
    assert checkpoint.state == state
    assert checkpoint.state.sections["problem_statement"].status == SectionStatus.APPROVED


@pytest.mark.asyncio
async def test_versions_increase(checkpoint_store, graph):
    state = make_state(graph)
    assert await checkpoint_store.put("instance:a", state, 0) == 1
    assert await checkpoint_store.put("instance:a", state, 1) == 2

    with pytest.raises(VersionConflict) as exc_info:
        await checkpoint_store.put("instance:a", state, 1)
    assert exc_info.value.actual == 2
    assert (await checkpoint_store.get("instance:a")).version == 2


@pytest.mark.asyncio
async def test_create_twice_conflicts(checkpoint_store, graph):
    state = make_state(graph)
    await checkpoint_store.put("instance:a", state, 0)
    with pytest.raises(VersionConflict):
        await checkpoint_store.put("instance:a", state, 0)


@pytest.mark.asyncio
async def test_update_of_missing_namespace_conflicts(checkpoint_store, graph):
    state = make_state(graph)
    with pytest.raises(VersionConflict) as exc_info:
        await checkpoint_store.put("instance:a", state, 3)
    assert exc_info.value.expected == 3
    assert exc_info.value.actual == 0

    # A rejected write leaves the store usable.
    assert await checkpoint_store.put("instance:a", state, 0) == 1
    assert await checkpoint_store.put("instance:a", state, 1) == 2


@pytest.mark.asyncio
async def test_concurrent_puts_with_same_version(checkpoint_store, graph):
    state = make_state(graph)
    await checkpoint_store.put("instance:a", state, 0)

    first = state.model_copy(deep=True)
    first.errors.append("first")
    second = state.model_copy(deep=True)
    second.errors.append("second")

    results = await asyncio.gather(
        checkpoint_store.put("instance:a", first, 1),
        checkpoint_store.put("instance:a", second, 1),
        return_exceptions=True,
    )

    assert sorted(type(r).__name__ for r in results) == ["VersionConflict", "int"]
    winner = "first" if results[0] == 2 else "second"
    stored = await checkpoint_store.get("instance:a")
    assert stored.version == 2
    assert stored.state.errors == [winner]


@pytest.mark.asyncio
async def test_get_missing_returns_none(checkpoint_store):
    assert await checkpoint_store.get("instance:missing") is None


@pytest.mark.asyncio
async def test_list_by_prefix(checkpoint_store, graph):
    state = make_state(graph)
    await checkpoint_store.put("instance:b", state, 0)
    await checkpoint_store.put("instance:a", state, 0)
    await checkpoint_store.put("other:c", state, 0)

    assert await checkpoint_store.list("instance:") == ["instance:a", "instance:b"]
    assert len(await checkpoint_store.list()) == 3


@pytest.mark.asyncio
async def test_delete_leaves_tombstone(checkpoint_store, graph):
    state = make_state(graph)
    await checkpoint_store.put("instance:a", state, 0)

    await checkpoint_store.delete("instance:a")

    assert await checkpoint_store.get("instance:a") is None
    assert await checkpoint_store.list("instance:") == []
    with pytest.raises(NamespaceDeleted):
        await checkpoint_store.put("instance:a", state, 0)
    with pytest.raises(NamespaceDeleted):
        await checkpoint_store.put("instance:a", state, 1)


@pytest.mark.asyncio
async def test_sqlite_store_survives_reopen(tmp_path, graph):
    path = tmp_path / "checkpoints.db"
    store = SQLiteCheckpointStore(path)
    await store.put("instance:a", make_state(graph), 0)
    store.close()

    reopened = SQLiteCheckpointStore(path)
    checkpoint = await reopened.get("instance:a")
    assert checkpoint is not None
    assert checkpoint.version == 1
    reopened.close()
