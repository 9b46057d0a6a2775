"""Sign-in state, opt-in remembered credentials and logout teardown."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from chatsync.domain.chat.lifecycle import ConversationScope
from chatsync.domain.chat.models import User
from chatsync.domain.chat.store import MessageStoreAdapter
from chatsync.domain.errors import SessionError
from chatsync.domain.identity.profile_service import ProfileService
from chatsync.domain.identity.schemas import SignUpRequest
from chatsync.infra.identity import IdentityError, IdentityProvider
from chatsync.infra.secure_cache import SecureCache
from chatsync.obs import metrics as obs_metrics
from chatsync.settings import settings

log = logging.getLogger(__name__)


class SessionManager:
	"""Owns the signed-in user and every conversation scope opened for them.

	Credentials are cached only when the user opts in. ``logout`` always
	clears the cache, even when signing out fails, and then checks that
	nothing is left behind.
	"""

	def __init__(
		self,
		identity: IdentityProvider,
		cache: SecureCache,
		profiles: ProfileService,
		adapter: MessageStoreAdapter,
		*,
		remember_keys: Sequence[str] | None = None,
	) -> None:
		self._identity = identity
		self._cache = cache
		self._profiles = profiles
		self._adapter = adapter
		keys = tuple(remember_keys) if remember_keys is not None else settings.remember_keys()
		if len(keys) != 2:
			raise ValueError("remember_keys needs an email key and a password key")
		self._email_key, self._password_key = keys
		self._scopes: List[ConversationScope] = []
		self._user_id: Optional[str] = None

	@property
	def current_user_id(self) -> Optional[str]:
		return self._user_id

	@property
	def is_signed_in(self) -> bool:
		return self._user_id is not None

	def new_scope(self) -> ConversationScope:
		if self._user_id is None:
			raise SessionError("not_signed_in")
		scope = ConversationScope(self._adapter)
		self._scopes.append(scope)
		return scope

	def release_scope(self, scope: ConversationScope) -> None:
		scope.close()
		if scope in self._scopes:
			self._scopes.remove(scope)

	async def sign_up(self, request: SignUpRequest, *, remember_me: bool = False) -> User:
		try:
			user_id = await self._identity.sign_up(request.email, request.password)
		except IdentityError as exc:
			obs_metrics.inc_session_event("sign_up", "rejected")
			raise SessionError(exc.code) from exc
		user = await self._profiles.create_user_record(user_id, request.email, request)
		self._user_id = user_id
		await self._apply_remember(request.email, request.password, remember_me)
		obs_metrics.inc_session_event("sign_up", "ok")
		log.info("account created", extra={"target_user_id": user_id})
		return user

	async def sign_in(self, email: str, password: str, remember_me: bool = False) -> str:
		try:
			user_id = await self._identity.sign_in(email, password)
		except IdentityError as exc:
			obs_metrics.inc_session_event("sign_in", "rejected")
			raise SessionError(exc.code) from exc
		self._user_id = user_id
		await self._apply_remember(email, password, remember_me)
		obs_metrics.inc_session_event("sign_in", "ok")
		return user_id

	async def auto_login(self) -> Optional[str]:
		"""Sign in with remembered credentials; stale ones are forgotten."""
		email = await self._cache.get(self._email_key)
		password = await self._cache.get(self._password_key)
		if not email or not password:
			return None
		try:
			user_id = await self._identity.sign_in(email, password)
		except IdentityError:
			obs_metrics.inc_session_event("auto_login", "rejected")
			log.info("remembered credentials rejected; clearing cache")
			await self._forget_credentials()
			return None
		self._user_id = user_id
		obs_metrics.inc_session_event("auto_login", "ok")
		return user_id

	async def logout(self) -> None:
		for scope in list(self._scopes):
			scope.close()
		self._scopes.clear()
		self._user_id = None
		sign_out_error: Optional[BaseException] = None
		try:
			await self._identity.sign_out()
		except Exception as exc:
			sign_out_error = exc
			log.warning("sign out failed; clearing credentials anyway", extra={"error": str(exc)})
		await self._forget_credentials()
		leftover = await self._remaining_credentials()
		if leftover:
			obs_metrics.inc_session_event("logout", "residue")
			raise SessionError("credentials_not_cleared", message=f"cache still holds: {', '.join(leftover)}")
		if sign_out_error is not None:
			obs_metrics.inc_session_event("logout", "sign_out_failed")
			raise SessionError("sign_out_failed") from sign_out_error
		obs_metrics.inc_session_event("logout", "ok")

	async def _apply_remember(self, email: str, password: str, remember_me: bool) -> None:
		if remember_me:
			await self._cache.set(self._email_key, email)
			await self._cache.set(self._password_key, password)
		else:
			await self._forget_credentials()

	async def _forget_credentials(self) -> None:
		for key in (self._email_key, self._password_key):
			try:
				await self._cache.remove(key)
			except Exception:
				log.exception("failed to remove cached credential", extra={"cache_key": key})

	async def _remaining_credentials(self) -> List[str]:
		leftover: List[str] = []
		for key in (self._email_key, self._password_key):
			try:
				value = await self._cache.get(key)
			except Exception:
				log.exception("failed to verify cached credential", extra={"cache_key": key})
				leftover.append(key)
				continue
			if value is not None:
				leftover.append(key)
		return leftover
