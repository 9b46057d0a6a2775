import pytest

from chatsync.domain.chat.feed import FeedAggregator
from chatsync.domain.chat.keys import direct_conversation
from chatsync.domain.chat.models import ComposeState, LocalBlob
from chatsync.domain.chat.service import ChatService, location_text, location_url
from chatsync.domain.errors import InvalidArgument, StoreUnavailable, UnsupportedType, UploadFailed


@pytest.fixture
def service(adapter, resolver):
    return ChatService(adapter, resolver)


@pytest.mark.asyncio
async def test_send_text_clears_draft(service, adapter):
    conversation = direct_conversation("amy", "bob")
    compose = ComposeState(text="  hello  ")
    message = await service.send(conversation, "amy", compose)

    assert compose.is_empty()
    assert message.text == "hello"
    assert message.sent_at > 0
    stored = await adapter.read_all(conversation)
    assert [m.id for m in stored] == [message.id]
    assert await adapter.store.read("chats/amy_bob/participantIds") == ["amy", "bob"]


@pytest.mark.asyncio
async def test_empty_draft_is_rejected(service):
    with pytest.raises(InvalidArgument):
        await service.send(direct_conversation("amy", "bob"), "amy", ComposeState(text="   "))


@pytest.mark.asyncio
async def test_store_outage_keeps_draft(service, memory_store, object_storage):
    memory_store.set_online(False)
    blob = LocalBlob(name="cat.png", data=b"\x89PNG")
    compose = ComposeState(text="retry me", attachment=blob)
    with pytest.raises(StoreUnavailable):
        await service.send(direct_conversation("amy", "bob"), "amy", compose)
    assert compose.text == "retry me"
    assert compose.attachment is blob


@pytest.mark.asyncio
async def test_failed_upload_keeps_draft_and_appends_nothing(service, adapter, object_storage):
    object_storage.available = False
    conversation = direct_conversation("amy", "bob")
    compose = ComposeState(attachment=LocalBlob(name="notes.pdf", data=b"%PDF"))
    with pytest.raises(UploadFailed):
        await service.send(conversation, "amy", compose)
    assert compose.attachment is not None
    assert await adapter.read_all(conversation) == []


@pytest.mark.asyncio
async def test_unsupported_attachment_keeps_draft(service):
    compose = ComposeState(text="see file", attachment=LocalBlob(name="blob", data=b"1"))
    with pytest.raises(UnsupportedType):
        await service.send(direct_conversation("amy", "bob"), "amy", compose)
    assert compose.text == "see file"


@pytest.mark.asyncio
async def test_attachment_message_references_upload(service, object_storage):
    conversation = direct_conversation("amy", "bob")
    message = await service.send(conversation, "amy", ComposeState(attachment=LocalBlob(name="cat.png", data=b"img")))
    assert message.is_attachment_only()
    assert message.attachment.kind == "image"
    assert len(object_storage.objects) == 1


@pytest.mark.asyncio
async def test_optimistic_insert_and_echo_appear_once(service, adapter):
    conversation = direct_conversation("amy", "bob")
    feed = FeedAggregator(adapter, conversation)
    await feed.load()
    message = await service.send(conversation, "amy", ComposeState(text="hi"), feed=feed)
    assert [m.id for m in feed.display()] == [message.id]
    feed.close()


@pytest.mark.asyncio
async def test_unreadable_send_returns_none_and_feed_gets_the_echo(service, adapter, monkeypatch):
    conversation = direct_conversation("amy", "bob")
    feed = FeedAggregator(adapter, conversation)
    await feed.load()

    async def unreadable(*args, **kwargs):
        raise StoreUnavailable("store_unavailable")

    monkeypatch.setattr(adapter, "read_message", unreadable)
    compose = ComposeState(text="hi")
    assert await service.send(conversation, "amy", compose, feed=feed) is None
    assert compose.is_empty()
    shown = feed.display()
    assert [m.text for m in shown] == ["hi"]
    assert shown[0].sent_at > 0
    feed.close()


@pytest.mark.asyncio
async def test_share_location(service):
    message = await service.share_location(direct_conversation("amy", "bob"), "amy", 48.8584, 2.2945)
    assert message.text == "📍 Location: https://www.google.com/maps?q=48.8584,2.2945"
    assert location_url(message.text) == "https://www.google.com/maps?q=48.8584,2.2945"
    assert location_url("just text") is None


def test_location_out_of_range():
    with pytest.raises(InvalidArgument):
        location_text(91, 0)


@pytest.mark.asyncio
async def test_add_and_delete_chat(service, adapter):
    assert await service.add_chat("amy", "bob") is True
    assert await service.add_chat("bob", "amy") is False
    assert await adapter.list_direct_keys() == {"amy_bob"}

    await service.send(direct_conversation("amy", "bob"), "amy", ComposeState(text="bye"))
    await service.delete_chat("bob", "amy")
    assert await adapter.list_direct_keys() == set()
    assert await adapter.read_all(direct_conversation("amy", "bob")) == []
