import pytest

from chatsync.domain.errors import StoreUnavailable
from chatsync.infra.ids import PushIdGenerator
from chatsync.infra.store import SERVER_TIMESTAMP, InMemoryStore, join_path, split_path


def test_push_ids_sort_in_generation_order_within_one_millisecond():
    generator = PushIdGenerator(lambda: 1_700_000_000_000)
    ids = [generator.next_id() for _ in range(200)]
    assert ids == sorted(ids)
    assert len(set(ids)) == 200
    assert all(len(value) == 20 for value in ids)


def test_push_ids_survive_clock_going_backwards():
    ticks = iter([1_000, 2_000, 1_500])
    generator = PushIdGenerator(lambda: next(ticks))
    ids = [generator() for _ in range(3)]
    assert ids == sorted(ids)


def test_split_path_rejects_traversal():
    assert split_path("/chats//a/messages/") == ["chats", "a", "messages"]
    assert join_path("chats", "a/messages") == "chats/a/messages"
    with pytest.raises(ValueError):
        split_path("chats/../users")


@pytest.mark.asyncio
async def test_write_read_and_prune(memory_store):
    await memory_store.write("users/u1", {"pseudo": "amy", "createdAt": SERVER_TIMESTAMP})
    record = await memory_store.read("users/u1")
    assert record["pseudo"] == "amy"
    assert isinstance(record["createdAt"], int)

    await memory_store.write("users/u1/pseudo", None)
    assert await memory_store.read("users/u1/pseudo") is None

    await memory_store.remove("users/u1")
    assert await memory_store.read("users") is None
    assert await memory_store.child_keys("users") == []


@pytest.mark.asyncio
async def test_reads_return_copies(memory_store):
    await memory_store.write("users/u1", {"pseudo": "amy"})
    record = await memory_store.read("users/u1")
    record["pseudo"] = "mutated"
    assert (await memory_store.read("users/u1"))["pseudo"] == "amy"


@pytest.mark.asyncio
async def test_server_timestamps_are_monotonic_with_a_frozen_clock(memory_store):
    first = await memory_store.append_child("c/messages", {"timestamp": SERVER_TIMESTAMP})
    second = await memory_store.append_child("c/messages", {"timestamp": SERVER_TIMESTAMP})
    values = await memory_store.read("c/messages")
    assert values[first]["timestamp"] < values[second]["timestamp"]
    assert await memory_store.child_keys("c/messages") == [first, second]


@pytest.mark.asyncio
async def test_child_added_only_sees_appends_after_subscribe(memory_store):
    await memory_store.append_child("c/messages", {"n": 0})
    seen = []
    handle = await memory_store.subscribe_child_added("c/messages", lambda child_id, value: seen.append(value["n"]))
    await memory_store.append_child("c/messages", {"n": 1})
    await memory_store.append_child("c/messages", {"n": 2})
    assert seen == [1, 2]

    handle.cancel()
    handle()
    await memory_store.append_child("c/messages", {"n": 3})
    assert seen == [1, 2]
    assert memory_store.subscriber_count("c/messages") == 0


@pytest.mark.asyncio
async def test_failing_callback_does_not_stop_delivery(memory_store):
    seen = []

    def explode(child_id, value):
        raise RuntimeError("boom")

    await memory_store.subscribe_child_added("c/messages", explode)
    await memory_store.subscribe_child_added("c/messages", lambda child_id, value: seen.append(child_id))
    first = await memory_store.append_child("c/messages", {"n": 1})
    second = await memory_store.append_child("c/messages", {"n": 2})
    assert seen == [first, second]


@pytest.mark.asyncio
async def test_nested_append_from_callback_is_delivered_in_commit_order(memory_store):
    order = []

    async def reply(child_id, value):
        order.append(value["n"])
        if value["n"] == 1:
            await memory_store.append_child("c/messages", {"n": 2})

    await memory_store.subscribe_child_added("c/messages", reply)
    await memory_store.append_child("c/messages", {"n": 1})
    assert order == [1, 2]


@pytest.mark.asyncio
async def test_offline_store_raises_store_unavailable(memory_store):
    memory_store.set_online(False)
    with pytest.raises(StoreUnavailable):
        await memory_store.append_child("c/messages", {"n": 1})
    with pytest.raises(StoreUnavailable):
        await memory_store.read("c")
    memory_store.set_online(True)
    assert await memory_store.read("c") is None


@pytest.mark.asyncio
async def test_append_rejects_empty_values():
    store = InMemoryStore()
    with pytest.raises(ValueError):
        await store.append_child("c/messages", {})
