"""Message store adapter over the hierarchical store."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

from pydantic import ValidationError

from chatsync.domain.errors import InvalidArgument
from chatsync.infra.store import SERVER_TIMESTAMP, HierarchicalStore, SubscriptionHandle

from .models import ChatMessage, ConversationKey, OutgoingMessage
from .schemas import MessageRecord, outgoing_to_record

log = logging.getLogger(__name__)

AppendCallback = Callable[[ChatMessage], Union[None, Awaitable[None]]]

CHATS_ROOT = "chats"


class MessageStoreAdapter:
	"""Append-only writes, snapshot reads and append subscriptions per conversation."""

	def __init__(self, store: HierarchicalStore) -> None:
		self._store = store

	@property
	def store(self) -> HierarchicalStore:
		return self._store

	def _parse(self, conversation: ConversationKey, message_id: str, raw: Any) -> Optional[ChatMessage]:
		try:
			return MessageRecord.model_validate(raw).to_model(conversation, message_id)
		except ValidationError:
			log.warning(
				"skipping malformed message record",
				extra={"conversation_key": conversation.value, "message_id": message_id},
			)
			return None

	async def append_message(self, conversation: ConversationKey, message: OutgoingMessage) -> str:
		"""Write one immutable message and return its store-assigned id.

		Direct conversations are created on their first message. Raises
		``StoreUnavailable`` when the store cannot be reached; nothing is
		written in that case.
		"""
		if not message.sender_id:
			raise InvalidArgument("sender_required")
		if conversation.is_direct:
			await self._ensure_direct_node(conversation)
		record = outgoing_to_record(message, SERVER_TIMESTAMP)
		message_id = await self._store.append_child(conversation.messages_path, record)
		log.info(
			"message appended",
			extra={"conversation_key": conversation.value, "message_id": message_id},
		)
		return message_id

	async def read_all(self, conversation: ConversationKey) -> List[ChatMessage]:
		raw = await self._store.read(conversation.messages_path)
		if not isinstance(raw, dict):
			return []
		messages = [
			message
			for message_id, value in raw.items()
			if (message := self._parse(conversation, message_id, value)) is not None
		]
		messages.sort(key=lambda m: m.sort_key)
		return messages

	async def read_message(self, conversation: ConversationKey, message_id: str) -> Optional[ChatMessage]:
		raw = await self._store.read(f"{conversation.messages_path}/{message_id}")
		if raw is None:
			return None
		return self._parse(conversation, message_id, raw)

	async def read_last(self, conversation: ConversationKey) -> Optional[ChatMessage]:
		"""Most recently appended message; child ids sort in append order."""
		keys = await self._store.child_keys(conversation.messages_path)
		for message_id in reversed(keys):
			message = await self.read_message(conversation, message_id)
			if message is not None:
				return message
		return None

	async def subscribe_appends(self, conversation: ConversationKey, on_append: AppendCallback) -> SubscriptionHandle:
		"""Deliver each message appended after this call, once, in commit order."""

		async def _on_child(child_id: str, value: Any) -> None:
			message = self._parse(conversation, child_id, value)
			if message is None:
				return
			result = on_append(message)
			if inspect.isawaitable(result):
				await result

		return await self._store.subscribe_child_added(conversation.messages_path, _on_child)

	async def delete_conversation(self, conversation: ConversationKey) -> None:
		"""Remove the conversation and all of its messages. Irreversible."""
		await self._store.remove(conversation.root_path)
		log.info("conversation deleted", extra={"conversation_key": conversation.value})

	async def conversation_exists(self, conversation: ConversationKey) -> bool:
		return bool(await self._store.child_keys(conversation.root_path))

	async def ensure_direct_conversation(self, conversation: ConversationKey) -> bool:
		"""Create the direct conversation node; False when it already exists."""
		if not conversation.is_direct:
			raise InvalidArgument("direct_conversation_required")
		if await self.conversation_exists(conversation):
			return False
		await self._write_direct_meta(conversation)
		return True

	async def _ensure_direct_node(self, conversation: ConversationKey) -> None:
		existing = await self._store.read(f"{conversation.root_path}/participantIds")
		if existing is None:
			await self._write_direct_meta(conversation)

	async def _write_direct_meta(self, conversation: ConversationKey) -> None:
		# Child writes keep any messages already stored under the node.
		await self._store.write(f"{conversation.root_path}/participantIds", list(conversation.participants))
		await self._store.write(f"{conversation.root_path}/createdAt", SERVER_TIMESTAMP)

	async def list_direct_keys(self) -> Set[str]:
		return set(await self._store.child_keys(CHATS_ROOT))
