import pytest

from chatsync.domain.chat.feed import FeedAggregator, FeedState
from chatsync.domain.chat.keys import direct_conversation
from chatsync.domain.chat.lifecycle import ConversationScope
from chatsync.domain.chat.models import ChatMessage, OutgoingMessage
from chatsync.domain.errors import StoreUnavailable


def _message(message_id: str, sent_at: int, conversation_key: str = "amy_bob", text: str = "x") -> ChatMessage:
    return ChatMessage(
        id=message_id,
        conversation_key=conversation_key,
        sender_id="amy",
        text=text,
        sent_at=sent_at,
    )


@pytest.mark.asyncio
async def test_ingest_is_idempotent_and_ordered(adapter):
    feed = FeedAggregator(adapter, direct_conversation("amy", "bob"))
    await feed.load()
    assert feed.state is FeedState.LIVE

    for message_id, sent_at in (("m3", 3), ("m1", 1), ("m2", 2)):
        assert feed.ingest(_message(message_id, sent_at))
    assert not feed.ingest(_message("m2", 2))

    assert [m.id for m in feed.messages] == ["m1", "m2", "m3"]
    assert [m.id for m in feed.display()] == ["m3", "m2", "m1"]
    assert len(feed) == 3
    assert "m1" in feed


@pytest.mark.asyncio
async def test_equal_timestamps_tie_break_on_id(adapter):
    feed = FeedAggregator(adapter, direct_conversation("amy", "bob"))
    await feed.load()
    feed.ingest(_message("b", 5))
    feed.ingest(_message("a", 5))
    assert [m.id for m in feed.messages] == ["a", "b"]


@pytest.mark.asyncio
async def test_feed_ignores_other_conversations(adapter):
    feed = FeedAggregator(adapter, direct_conversation("amy", "bob"))
    await feed.load()
    assert not feed.ingest(_message("m1", 1, conversation_key="amy_cat"))
    assert len(feed) == 0


@pytest.mark.asyncio
async def test_snapshot_and_live_appends_merge_without_duplicates(adapter):
    conversation = direct_conversation("amy", "bob")
    await adapter.append_message(conversation, OutgoingMessage(sender_id="amy", text="hello"))
    await adapter.append_message(conversation, OutgoingMessage(sender_id="bob", text="hey"))

    feed = FeedAggregator(adapter, conversation)
    changes = []
    feed.on_change(lambda messages: changes.append([m.text for m in messages]))
    await feed.load()
    assert [m.text for m in feed.display()] == ["hey", "hello"]

    message_id = await adapter.append_message(conversation, OutgoingMessage(sender_id="amy", text="hi"))
    assert [m.text for m in feed.display()] == ["hi", "hey", "hello"]

    # The same record arriving again, e.g. as an optimistic insert, is dropped.
    echo = await adapter.read_message(conversation, message_id)
    assert not feed.ingest(echo)
    assert [m.text for m in feed.display()].count("hi") == 1
    assert changes == [["hey", "hello"], ["hi", "hey", "hello"]]


@pytest.mark.asyncio
async def test_appends_during_load_are_not_lost(adapter, memory_store):
    conversation = direct_conversation("amy", "bob")
    await adapter.append_message(conversation, OutgoingMessage(sender_id="amy", text="before"))
    feed = FeedAggregator(adapter, conversation)

    original_read_all = adapter.read_all

    async def racing_read_all(target):
        await adapter.append_message(target, OutgoingMessage(sender_id="bob", text="during"))
        return await original_read_all(target)

    adapter.read_all = racing_read_all
    await feed.load()
    assert [m.text for m in feed.messages] == ["before", "during"]


@pytest.mark.asyncio
async def test_close_silences_feed(adapter, memory_store):
    conversation = direct_conversation("amy", "bob")
    feed = FeedAggregator(adapter, conversation)
    changes = []
    feed.on_change(changes.append)
    await feed.load()
    feed.close()

    assert feed.state is FeedState.CLOSED
    assert memory_store.subscriber_count(conversation.messages_path) == 0
    await adapter.append_message(conversation, OutgoingMessage(sender_id="amy", text="late"))
    assert not feed.ingest(_message("m9", 9))
    assert len(feed) == 0
    assert changes == [[]]
    feed.close()


@pytest.mark.asyncio
async def test_listener_errors_are_contained(adapter):
    feed = FeedAggregator(adapter, direct_conversation("amy", "bob"))
    seen = []

    def broken(messages):
        raise RuntimeError("render failed")

    feed.on_change(broken)
    unsubscribe = feed.on_change(lambda messages: seen.append(len(messages)))
    await feed.load()
    feed.ingest(_message("m1", 1))
    unsubscribe()
    feed.ingest(_message("m2", 2))
    assert seen == [0, 1]


@pytest.mark.asyncio
async def test_failed_snapshot_releases_subscription(adapter, memory_store):
    conversation = direct_conversation("amy", "bob")

    async def unavailable(target):
        raise StoreUnavailable("store_unavailable")

    adapter.read_all = unavailable
    feed = FeedAggregator(adapter, conversation)
    with pytest.raises(StoreUnavailable):
        await feed.load()
    assert memory_store.subscriber_count(conversation.messages_path) == 0


@pytest.mark.asyncio
async def test_scope_switches_feeds_before_subscribing_again(adapter, memory_store):
    scope = ConversationScope(adapter)
    first = await scope.open(direct_conversation("amy", "bob"))
    second = await scope.open(direct_conversation("amy", "cat"))

    assert first.state is FeedState.CLOSED
    assert scope.feed is second
    assert scope.conversation.value == "amy_cat"
    assert memory_store.subscriber_count("chats/amy_bob/messages") == 0
    assert memory_store.subscriber_count("chats/amy_cat/messages") == 1

    scope.close()
    assert scope.feed is None
    assert second.state is FeedState.CLOSED
    assert memory_store.subscriber_count("chats/amy_cat/messages") == 0


@pytest.mark.asyncio
async def test_message_sent_before_feed_opens_shows_once(clock, adapter):
    clock.now = 100
    conversation = direct_conversation("a", "b")
    await adapter.append_message(conversation, OutgoingMessage(sender_id="a", text="hi"))

    feed = FeedAggregator(adapter, conversation)
    await feed.load()
    # A late subscription delivery of the same record must not duplicate it.
    (snapshot,) = feed.messages
    feed.ingest(snapshot)

    (message,) = feed.display()
    assert message.text == "hi"
    assert message.sender_id == "a"
    assert message.sent_at >= 100
