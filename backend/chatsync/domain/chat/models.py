"""Domain models for chat sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

DIRECT = "direct"
GROUP = "group"

IMAGE_KIND = "image"
FILE_KIND = "file"


@dataclass(frozen=True, slots=True)
class ConversationKey:
	"""Identity of a conversation plus the store paths derived from it."""

	kind: str
	value: str
	participants: Tuple[str, ...] = ()

	@property
	def root_path(self) -> str:
		collection = "chats" if self.kind == DIRECT else "groups"
		return f"{collection}/{self.value}"

	@property
	def messages_path(self) -> str:
		return f"{self.root_path}/messages"

	@property
	def is_direct(self) -> bool:
		return self.kind == DIRECT

	def __str__(self) -> str:
		return self.value


@dataclass(frozen=True, slots=True)
class Attachment:
	ref: str
	kind: str
	display_name: str

	@property
	def is_image(self) -> bool:
		return self.kind == IMAGE_KIND


@dataclass(frozen=True, slots=True)
class ChatMessage:
	id: str
	conversation_key: str
	sender_id: str
	text: str
	sent_at: int
	attachment: Optional[Attachment] = None

	@property
	def sort_key(self) -> Tuple[int, str]:
		return (self.sent_at, self.id)

	def is_attachment_only(self) -> bool:
		return self.attachment is not None and not self.text.strip()


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
	"""A message before the store has assigned its id (and, usually, its timestamp)."""

	sender_id: str
	text: str
	attachment: Optional[Attachment] = None
	sent_at: Optional[int] = None


@dataclass(frozen=True, slots=True)
class LocalBlob:
	"""A file picked on the device, read into memory."""

	name: str
	data: bytes

	@property
	def size(self) -> int:
		return len(self.data)


@dataclass(slots=True)
class ComposeState:
	"""Draft owned by the chat view; only a successful send clears it."""

	text: str = ""
	attachment: Optional[LocalBlob] = None

	def is_empty(self) -> bool:
		return not self.text.strip() and self.attachment is None

	def clear(self) -> None:
		self.text = ""
		self.attachment = None


@dataclass(slots=True)
class User:
	id: str
	email: str = ""
	fullname: str = ""
	pseudo: str = ""
	phone: str = ""
	picture_ref: Optional[str] = None
	created_at: Optional[int] = None

	def display_name(self) -> str:
		return self.fullname or self.pseudo or "Unknown"


@dataclass(slots=True)
class Group:
	id: str
	name: str
	member_ids: Tuple[str, ...]
	creator_id: str
	created_at: Optional[int] = None

	def has_member(self, user_id: str) -> bool:
		return user_id in self.member_ids


@dataclass(frozen=True, slots=True)
class Preview:
	text: str
	timestamp: Optional[int] = None


@dataclass(frozen=True, slots=True)
class RosterEntry:
	user: User
	last_message_preview: Optional[str] = None
	last_message_at: Optional[int] = None


@dataclass(slots=True)
class Roster:
	with_conversation: List[RosterEntry] = field(default_factory=list)
	without_conversation: List[User] = field(default_factory=list)
