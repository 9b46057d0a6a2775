"""Per-conversation message feed: snapshot + live appends, deduplicated and ordered."""

from __future__ import annotations

import bisect
import enum
import logging
from typing import Callable, List, Optional, Set, Tuple

from chatsync.infra.store import SubscriptionHandle
from chatsync.obs import metrics as obs_metrics

from .models import ChatMessage, ConversationKey
from .store import MessageStoreAdapter

log = logging.getLogger(__name__)

FeedListener = Callable[[List[ChatMessage]], None]


class FeedState(str, enum.Enum):
	LOADING = "loading"
	LIVE = "live"
	CLOSED = "closed"


class FeedAggregator:
	"""Owns the seen-id set and ordered messages for one open conversation.

	Messages are kept ascending by ``(sent_at, id)``; ``display()`` returns them
	most recent first. Listeners registered with ``on_change`` receive the
	display order after every effective change once the feed is live.
	"""

	def __init__(self, adapter: MessageStoreAdapter, conversation: ConversationKey) -> None:
		self._adapter = adapter
		self.conversation = conversation
		self._state = FeedState.LOADING
		self._seen: Set[str] = set()
		self._keys: List[Tuple[int, str]] = []
		self._messages: List[ChatMessage] = []
		self._listeners: List[FeedListener] = []
		self._handle: Optional[SubscriptionHandle] = None

	@property
	def state(self) -> FeedState:
		return self._state

	@property
	def messages(self) -> Tuple[ChatMessage, ...]:
		return tuple(self._messages)

	def display(self) -> List[ChatMessage]:
		return list(reversed(self._messages))

	def __len__(self) -> int:
		return len(self._messages)

	def __contains__(self, message_id: object) -> bool:
		return message_id in self._seen

	async def load(self) -> None:
		"""Subscribe, then merge the bulk snapshot; appends racing the read are deduplicated."""
		if self._state is not FeedState.LOADING:
			raise RuntimeError(f"cannot load a {self._state.value} feed")
		if self._handle is not None:
			raise RuntimeError("feed is already loading")
		handle = await self._adapter.subscribe_appends(self.conversation, self.ingest)
		if self._state is FeedState.CLOSED:
			handle.cancel()
			return
		self._handle = handle
		try:
			snapshot = await self._adapter.read_all(self.conversation)
		except Exception:
			handle.cancel()
			self._handle = None
			raise
		if self._state is FeedState.CLOSED:
			return
		for message in snapshot:
			if not self._insert(message):
				obs_metrics.inc_feed_duplicate()
		self._state = FeedState.LIVE
		log.debug(
			"feed live",
			extra={"conversation_key": self.conversation.value, "message_count": len(self._messages)},
		)
		self._notify()

	def ingest(self, message: ChatMessage) -> bool:
		"""Merge one message; returns False when it was already seen or the feed is closed."""
		if self._state is FeedState.CLOSED:
			return False
		if message.conversation_key != self.conversation.value:
			log.warning(
				"ignoring message for another conversation",
				extra={"conversation_key": self.conversation.value, "message_id": message.id},
			)
			return False
		if not self._insert(message):
			obs_metrics.inc_feed_duplicate()
			return False
		if self._state is FeedState.LIVE:
			self._notify()
		return True

	def _insert(self, message: ChatMessage) -> bool:
		if message.id in self._seen:
			return False
		self._seen.add(message.id)
		key = message.sort_key
		idx = bisect.bisect_right(self._keys, key)
		self._keys.insert(idx, key)
		self._messages.insert(idx, message)
		return True

	def on_change(self, listener: FeedListener) -> Callable[[], None]:
		self._listeners.append(listener)

		def _unsubscribe() -> None:
			if listener in self._listeners:
				self._listeners.remove(listener)

		return _unsubscribe

	def _notify(self) -> None:
		snapshot = self.display()
		for listener in list(self._listeners):
			try:
				listener(snapshot)
			except Exception:
				log.exception("feed listener failed", extra={"conversation_key": self.conversation.value})

	def close(self) -> None:
		"""Cancel the subscription synchronously and discard all feed state."""
		if self._state is FeedState.CLOSED:
			return
		self._state = FeedState.CLOSED
		if self._handle is not None:
			self._handle.cancel()
			self._handle = None
		self._listeners.clear()
		self._seen.clear()
		self._keys.clear()
		self._messages.clear()
