"""Pydantic schemas for user records and profile payloads."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chatsync.domain.chat.models import User
from chatsync.domain.chat.schemas import to_epoch_ms
from chatsync.domain.identity import policy


class UserRecord(BaseModel):
	"""Stored shape of ``users/{id}``."""

	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	email: str = ""
	fullname: str = ""
	pseudo: str = ""
	phone: str = ""
	picture: Optional[str] = None
	created_at: Optional[int] = Field(default=None, alias="createdAt")

	@field_validator("email", "fullname", "pseudo", "phone", mode="before")
	def _text(cls, value):  # type: ignore[override]
		return "" if value is None else str(value)

	@field_validator("created_at", mode="before")
	def _created(cls, value):  # type: ignore[override]
		return to_epoch_ms(value)

	def to_model(self, user_id: str) -> User:
		return User(
			id=user_id,
			email=self.email,
			fullname=self.fullname,
			pseudo=self.pseudo,
			phone=self.phone,
			picture_ref=self.picture or None,
			created_at=self.created_at,
		)

	@classmethod
	def from_model(cls, user: User) -> "UserRecord":
		return cls(
			email=user.email,
			fullname=user.fullname,
			pseudo=user.pseudo,
			phone=user.phone,
			picture=user.picture_ref,
			created_at=user.created_at,
		)

	def to_store(self) -> dict:
		return self.model_dump(by_alias=True, exclude_none=True)


class ProfileUpdate(BaseModel):
	"""Editable profile fields; the whole record is written on save."""

	fullname: str = ""
	pseudo: str
	phone: str = ""

	@field_validator("fullname")
	def _fullname(cls, value: str) -> str:
		return policy.normalise_fullname(value)

	@field_validator("pseudo")
	def _pseudo(cls, value: str) -> str:
		return policy.normalise_pseudo(value)

	@field_validator("phone")
	def _phone(cls, value: str) -> str:
		return policy.normalise_phone(value)


class SignUpRequest(ProfileUpdate):
	email: str
	password: str = Field(..., repr=False)

	@field_validator("email")
	def _email(cls, value: str) -> str:
		return policy.normalise_email(value)

	@field_validator("password")
	def _password(cls, value: str) -> str:
		return policy.guard_password(value)
