"""User profile records under ``users/{id}``."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from chatsync.domain.chat.attachments import AttachmentResolver, classify
from chatsync.domain.chat.models import IMAGE_KIND, LocalBlob, User
from chatsync.domain.errors import InvalidArgument, NotFound, UnsupportedType
from chatsync.domain.identity.schemas import ProfileUpdate, UserRecord
from chatsync.infra.store import SERVER_TIMESTAMP, HierarchicalStore

log = logging.getLogger(__name__)

USERS_ROOT = "users"


def _user_path(user_id: str) -> str:
	if not user_id:
		raise InvalidArgument("user_id_required")
	return f"{USERS_ROOT}/{user_id}"


class ProfileService:
	"""Reads and whole-record writes of user profiles; the last save wins."""

	def __init__(self, store: HierarchicalStore, resolver: AttachmentResolver | None = None) -> None:
		self._store = store
		self._resolver = resolver

	async def get(self, user_id: str) -> Optional[User]:
		raw = await self._store.read(_user_path(user_id))
		if not isinstance(raw, dict):
			return None
		try:
			return UserRecord.model_validate(raw).to_model(user_id)
		except ValidationError:
			log.warning("malformed user record", extra={"target_user_id": user_id})
			return None

	async def create_user_record(self, user_id: str, email: str, profile: ProfileUpdate) -> User:
		record = UserRecord(email=email, fullname=profile.fullname, pseudo=profile.pseudo, phone=profile.phone)
		payload = record.to_store()
		payload["createdAt"] = SERVER_TIMESTAMP
		await self._store.write(_user_path(user_id), payload)
		user = await self.get(user_id)
		if user is None:
			raise NotFound("user_not_found")
		return user

	async def save(self, user_id: str, update: ProfileUpdate) -> User:
		current = await self.get(user_id)
		if current is None:
			raise NotFound("user_not_found")
		current.fullname = update.fullname
		current.pseudo = update.pseudo
		current.phone = update.phone
		await self._store.write(_user_path(user_id), UserRecord.from_model(current).to_store())
		log.info("profile saved", extra={"target_user_id": user_id})
		return current

	async def update_picture(self, user_id: str, blob: LocalBlob) -> User:
		"""Upload a new profile picture and store its public URL.

		Only images are accepted; a failed upload raises its ``UploadFailed``.
		"""
		if self._resolver is None:
			raise RuntimeError("profile pictures need an attachment resolver")
		current = await self.get(user_id)
		if current is None:
			raise NotFound("user_not_found")
		_, kind = classify(blob.name)
		if kind != IMAGE_KIND:
			raise UnsupportedType("image_required")
		result = await self._resolver.upload(blob)
		if not result.ok:
			raise result.error  # type: ignore[misc]
		attachment = result.attachment
		await self._store.write(f"{_user_path(user_id)}/picture", attachment.ref)
		current.picture_ref = attachment.ref
		return current
