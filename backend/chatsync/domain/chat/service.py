"""Send flow and conversation actions for chat views."""

from __future__ import annotations

import logging
import re
from typing import Optional

from chatsync.domain.errors import ChatSyncError, InvalidArgument, StoreUnavailable
from chatsync.obs import logging as obs_logging
from chatsync.obs import metrics as obs_metrics

from .attachments import AttachmentResolver
from .feed import FeedAggregator
from .keys import direct_conversation
from .models import Attachment, ChatMessage, ComposeState, ConversationKey, OutgoingMessage
from .store import MessageStoreAdapter

log = logging.getLogger(__name__)

LOCATION_PREFIX = "📍 Location: "
MAPS_URL = "https://www.google.com/maps?q={latitude},{longitude}"
_LOCATION_RE = re.compile(r"https://www\.google\.com/maps\?q=-?\d+(?:\.\d+)?,-?\d+(?:\.\d+)?")


def location_text(latitude: float, longitude: float) -> str:
	if not -90.0 <= float(latitude) <= 90.0 or not -180.0 <= float(longitude) <= 180.0:
		raise InvalidArgument("location_out_of_range")
	return LOCATION_PREFIX + MAPS_URL.format(latitude=latitude, longitude=longitude)


def location_url(text: str) -> Optional[str]:
	"""Return the maps link embedded in a shared-location message, if any."""
	if not text or LOCATION_PREFIX.strip() not in text:
		return None
	match = _LOCATION_RE.search(text)
	return match.group(0) if match else None


class ChatService:
	def __init__(self, adapter: MessageStoreAdapter, resolver: AttachmentResolver) -> None:
		self._adapter = adapter
		self._resolver = resolver

	async def send(
		self,
		conversation: ConversationKey,
		sender_id: str,
		compose: ComposeState,
		*,
		feed: FeedAggregator | None = None,
	) -> Optional[ChatMessage]:
		"""Upload the draft's attachment if any, append the message, then clear the draft.

		Any failure leaves ``compose`` exactly as it was so the user can retry.
		Returns the stored message, or None when it was written but could not be
		read back; the subscription echo still delivers it to the feed. When
		``feed`` is given the stored message is inserted optimistically and the
		echo is then dropped as a duplicate.
		"""
		if compose.is_empty():
			raise InvalidArgument("empty_message")
		text = compose.text.strip()
		attachment: Optional[Attachment] = None
		tokens = obs_logging.bind_context(user_id=sender_id, conversation_key=conversation.value)
		try:
			if compose.attachment is not None:
				result = await self._resolver.upload(compose.attachment)
				if not result.ok:
					raise result.error  # type: ignore[misc]
				attachment = result.attachment
			message_id = await self._adapter.append_message(
				conversation,
				OutgoingMessage(sender_id=sender_id, text=text, attachment=attachment),
			)
		except ChatSyncError as exc:
			obs_metrics.inc_chat_send_failed(exc.code)
			log.info(
				"send failed, draft kept",
				extra={"reason": exc.code},
			)
			raise
		finally:
			obs_logging.reset_context(tokens)
		compose.clear()
		obs_metrics.inc_chat_send(attachment.kind if attachment is not None else "text")
		try:
			message = await self._adapter.read_message(conversation, message_id)
		except StoreUnavailable:
			log.warning("sent message not readable yet", extra={"message_id": message_id})
			return None
		if message is None:
			return None
		if feed is not None and feed.conversation == conversation:
			feed.ingest(message)
		return message

	async def share_location(
		self,
		conversation: ConversationKey,
		sender_id: str,
		latitude: float,
		longitude: float,
		*,
		feed: FeedAggregator | None = None,
	) -> Optional[ChatMessage]:
		compose = ComposeState(text=location_text(latitude, longitude))
		return await self.send(conversation, sender_id, compose, feed=feed)

	async def add_chat(self, current_user_id: str, other_user_id: str) -> bool:
		"""Create the direct conversation; False when it already exists."""
		conversation = direct_conversation(current_user_id, other_user_id)
		created = await self._adapter.ensure_direct_conversation(conversation)
		if created:
			log.info("chat added", extra={"conversation_key": conversation.value})
		return created

	async def delete_chat(self, current_user_id: str, other_user_id: str) -> None:
		await self._adapter.delete_conversation(direct_conversation(current_user_id, other_user_id))
