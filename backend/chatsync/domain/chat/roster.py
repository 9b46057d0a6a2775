"""Contact roster: who the current user already chats with, and previews."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Collection, Iterable, List, Optional, Sequence, TypeVar, Union

from pydantic import ValidationError

from chatsync.settings import settings

from .keys import direct_conversation, direct_key
from .models import ChatMessage, ConversationKey, FILE_KIND, IMAGE_KIND, Preview, Roster, RosterEntry, User
from .store import MessageStoreAdapter

log = logging.getLogger(__name__)

USERS_ROOT = "users"
NO_MESSAGES_TEXT = "no messages yet"
ATTACHMENT_PLACEHOLDERS = {
	IMAGE_KIND: "image sent",
	FILE_KIND: "file sent",
}

T = TypeVar("T", bound=Union[User, RosterEntry])


def preview_for(message: Optional[ChatMessage]) -> Preview:
	if message is None:
		return Preview(text=NO_MESSAGES_TEXT)
	if message.text.strip():
		return Preview(text=message.text, timestamp=message.sent_at)
	if message.attachment is not None:
		placeholder = ATTACHMENT_PLACEHOLDERS.get(message.attachment.kind, ATTACHMENT_PLACEHOLDERS[FILE_KIND])
		return Preview(text=placeholder, timestamp=message.sent_at)
	return Preview(text="", timestamp=message.sent_at)


def build_roster(current_user_id: str, all_users: Iterable[User], direct_keys: Collection[str]) -> Roster:
	"""Split every other user by whether a direct conversation with them exists.

	One key derivation per user; users come back ordered by pseudo.
	"""
	existing = direct_keys if isinstance(direct_keys, (set, frozenset, dict)) else set(direct_keys)
	others = sorted(
		(user for user in all_users if user.id != current_user_id),
		key=lambda user: (user.pseudo.lower(), user.id),
	)
	roster = Roster()
	for user in others:
		if direct_key(current_user_id, user.id) in existing:
			roster.with_conversation.append(RosterEntry(user=user))
		else:
			roster.without_conversation.append(user)
	return roster


def filter_by_pseudo(items: Sequence[T], term: str) -> List[T]:
	needle = str(term or "").strip().lower()
	if not needle:
		return list(items)
	result: List[T] = []
	for item in items:
		user = item.user if isinstance(item, RosterEntry) else item
		if needle in user.pseudo.lower():
			result.append(item)
	return result


class RosterBuilder:
	def __init__(self, adapter: MessageStoreAdapter, *, placeholder_avatar_url: str | None = None) -> None:
		self._adapter = adapter
		self._placeholder = placeholder_avatar_url or settings.placeholder_avatar_url

	async def load_users(self) -> List[User]:
		from chatsync.domain.identity.schemas import UserRecord

		raw = await self._adapter.store.read(USERS_ROOT)
		if not isinstance(raw, dict):
			return []
		users: List[User] = []
		for user_id, value in raw.items():
			try:
				user = UserRecord.model_validate(value or {}).to_model(user_id)
			except ValidationError:
				log.warning("skipping malformed user record", extra={"target_user_id": user_id})
				continue
			if not user.picture_ref:
				user.picture_ref = self._placeholder
			users.append(user)
		return users

	async def last_message_preview(self, conversation: ConversationKey) -> Preview:
		return preview_for(await self._adapter.read_last(conversation))

	async def load(self, current_user_id: str) -> Roster:
		users = await self.load_users()
		keys = await self._adapter.list_direct_keys()
		roster = build_roster(current_user_id, users, keys)
		entries: List[RosterEntry] = []
		for entry in roster.with_conversation:
			preview = await self.last_message_preview(direct_conversation(current_user_id, entry.user.id))
			entries.append(replace(entry, last_message_preview=preview.text, last_message_at=preview.timestamp))
		roster.with_conversation = entries
		return roster
