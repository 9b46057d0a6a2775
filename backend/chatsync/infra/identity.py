"""Identity provider collaborator (email/password accounts)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Protocol

import ulid

from chatsync.infra.password import check_needs_rehash, hash_password, verify_password


class IdentityError(RuntimeError):
	def __init__(self, code: str) -> None:
		super().__init__(code)
		self.code = code


class IdentityProvider(Protocol):
	async def sign_up(self, email: str, password: str) -> str:
		...

	async def sign_in(self, email: str, password: str) -> str:
		...

	async def sign_out(self) -> None:
		...

	def current_user_id(self) -> Optional[str]:
		...


@dataclass(slots=True)
class _Account:
	user_id: str
	email: str
	password_hash: str


def _normalise_email(email: str) -> str:
	return str(email or "").strip().lower()


class InMemoryIdentityProvider:
	"""Account registry with argon2 password hashes, kept in process memory."""

	def __init__(self) -> None:
		self._accounts: Dict[str, _Account] = {}
		self._current: Optional[str] = None

	async def sign_up(self, email: str, password: str) -> str:
		key = _normalise_email(email)
		if not key or "@" not in key:
			raise IdentityError("invalid_email")
		if key in self._accounts:
			raise IdentityError("email_in_use")
		account = _Account(user_id=str(ulid.new()), email=key, password_hash=hash_password(password))
		self._accounts[key] = account
		self._current = account.user_id
		return account.user_id

	async def sign_in(self, email: str, password: str) -> str:
		account = self._accounts.get(_normalise_email(email))
		if account is None or not verify_password(account.password_hash, password):
			raise IdentityError("invalid_credentials")
		if check_needs_rehash(account.password_hash):
			account.password_hash = hash_password(password)
		self._current = account.user_id
		return account.user_id

	async def sign_out(self) -> None:
		self._current = None

	def current_user_id(self) -> Optional[str]:
		return self._current
