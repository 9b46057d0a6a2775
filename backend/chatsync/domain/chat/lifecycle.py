"""Mount-scoped ownership of the feed shown by a chat view."""

from __future__ import annotations

from typing import Optional

from .feed import FeedAggregator
from .models import ConversationKey
from .store import MessageStoreAdapter


class ConversationScope:
	"""Holds at most one open feed.

	``open`` closes the previous feed before the next subscription is created,
	so a late callback can never reach a discarded feed.
	"""

	def __init__(self, adapter: MessageStoreAdapter) -> None:
		self._adapter = adapter
		self._feed: Optional[FeedAggregator] = None

	@property
	def feed(self) -> Optional[FeedAggregator]:
		return self._feed

	@property
	def conversation(self) -> Optional[ConversationKey]:
		return self._feed.conversation if self._feed is not None else None

	async def open(self, conversation: ConversationKey) -> FeedAggregator:
		self.close()
		feed = FeedAggregator(self._adapter, conversation)
		self._feed = feed
		try:
			await feed.load()
		except Exception:
			feed.close()
			if self._feed is feed:
				self._feed = None
			raise
		return feed

	def close(self) -> None:
		feed, self._feed = self._feed, None
		if feed is not None:
			feed.close()
