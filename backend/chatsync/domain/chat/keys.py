"""Conversation key derivation."""

from __future__ import annotations

from typing import Protocol

from chatsync.domain.errors import InvalidArgument

from .models import ConversationKey, DIRECT, GROUP

KEY_SEPARATOR = "_"


class IdSource(Protocol):
	def generate_id(self) -> str:
		...


def direct_key(user_one: str, user_two: str) -> str:
	"""Return the order-independent key for a 1:1 conversation."""
	first, second = str(user_one or ""), str(user_two or "")
	if not first or not second:
		raise InvalidArgument("participant_required")
	if first == second:
		raise InvalidArgument("cannot_chat_with_self")
	return KEY_SEPARATOR.join(sorted((first, second)))


def group_key(ids: IdSource) -> str:
	"""Return a fresh opaque group id from the store's id facility."""
	return ids.generate_id()


def direct_conversation(user_one: str, user_two: str) -> ConversationKey:
	key = direct_key(user_one, user_two)
	return ConversationKey(kind=DIRECT, value=key, participants=tuple(sorted((str(user_one), str(user_two)))))


def group_conversation(group_id: str) -> ConversationKey:
	if not group_id:
		raise InvalidArgument("group_id_required")
	return ConversationKey(kind=GROUP, value=str(group_id))
