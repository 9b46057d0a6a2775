"""Pydantic schemas for records kept in the hierarchical store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Attachment, ChatMessage, ConversationKey, FILE_KIND, Group, IMAGE_KIND, OutgoingMessage


def to_epoch_ms(value: Any) -> Optional[int]:
	"""Coerce epoch milliseconds or an ISO-8601 string to epoch milliseconds."""
	if value is None or value == "":
		return None
	if isinstance(value, bool):
		raise ValueError("timestamp must be numeric or ISO-8601")
	if isinstance(value, (int, float)):
		return int(value)
	if isinstance(value, str):
		text = value.strip()
		if text.lstrip("-").isdigit():
			return int(text)
		if text.endswith("Z"):
			text = text[:-1] + "+00:00"
		parsed = datetime.fromisoformat(text)
		if parsed.tzinfo is None:
			parsed = parsed.replace(tzinfo=timezone.utc)
		return int(parsed.timestamp() * 1000)
	raise ValueError("timestamp must be numeric or ISO-8601")


def _rank_of(value: Any) -> int:
	try:
		return to_epoch_ms(value) or 0
	except ValueError:
		return 0


class FileRecord(BaseModel):
	model_config = ConfigDict(extra="ignore")

	uri: str = Field(..., min_length=1)
	type: str = FILE_KIND
	name: str = ""

	@field_validator("type", mode="before")
	def _kind(cls, value):  # type: ignore[override]
		# Older clients stored the MIME type here.
		text = str(value or "").lower()
		if text == IMAGE_KIND or text in ("image/jpeg", "image/png"):
			return IMAGE_KIND
		return FILE_KIND

	def to_attachment(self) -> Attachment:
		return Attachment(ref=self.uri, kind=self.type, display_name=self.name)

	@classmethod
	def from_attachment(cls, attachment: Attachment) -> "FileRecord":
		return cls(uri=attachment.ref, type=attachment.kind, name=attachment.display_name)


class MessageRecord(BaseModel):
	"""Stored shape of a message under ``.../messages/{id}``."""

	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	sender_id: str = Field(..., alias="senderId", min_length=1)
	text: str = ""
	timestamp: int
	file: Optional[FileRecord] = None

	@field_validator("timestamp", mode="before")
	def _timestamp(cls, value):  # type: ignore[override]
		result = to_epoch_ms(value)
		if result is None:
			raise ValueError("timestamp required")
		return result

	@field_validator("text", mode="before")
	def _text(cls, value):  # type: ignore[override]
		return "" if value is None else str(value)

	def to_model(self, conversation: ConversationKey, message_id: str) -> ChatMessage:
		return ChatMessage(
			id=message_id,
			conversation_key=conversation.value,
			sender_id=self.sender_id,
			text=self.text,
			sent_at=self.timestamp,
			attachment=self.file.to_attachment() if self.file else None,
		)


def outgoing_to_record(message: OutgoingMessage, timestamp: Any) -> dict:
	"""Build the store payload; ``timestamp`` may be the server-timestamp sentinel."""
	return {
		"senderId": message.sender_id,
		"text": message.text,
		"timestamp": message.sent_at if message.sent_at is not None else timestamp,
		"file": FileRecord.from_attachment(message.attachment).model_dump() if message.attachment else None,
	}


class GroupRecord(BaseModel):
	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	name: str
	members: List[str] = Field(default_factory=list)
	group_creator: str = Field(..., alias="groupCreator")
	created_at: Optional[int] = Field(default=None, alias="createdAt")

	@field_validator("members", mode="before")
	def _members(cls, value):  # type: ignore[override]
		if not isinstance(value, dict):
			return value or []
		# Sparse arrays come back from the store as index-keyed mappings.
		if all(str(key).isdigit() and isinstance(member, str) for key, member in value.items()):
			return [value[key] for key in sorted(value, key=int)]
		# Otherwise one key per member, valued with its join rank.
		return [member for _rank, member in sorted((_rank_of(rank), str(member)) for member, rank in value.items())]

	@field_validator("created_at", mode="before")
	def _created(cls, value):  # type: ignore[override]
		return to_epoch_ms(value)

	def to_model(self, group_id: str) -> Group:
		return Group(
			id=group_id,
			name=self.name,
			member_ids=tuple(self.members),
			creator_id=self.group_creator,
			created_at=self.created_at,
		)
