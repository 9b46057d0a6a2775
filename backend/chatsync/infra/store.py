"""Hierarchical key-value store interface and in-memory implementation.

Paths are slash-separated (``chats/{key}/messages``). Writing ``None`` or an
empty mapping removes the node, and removing the last child of a node removes
the node too. ``append_child`` stores the value under a fresh time-ordered id and
notifies every ``child_added`` subscription registered before the write, in
commit order.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Protocol, Tuple, Union

from chatsync.domain.errors import StoreUnavailable
from chatsync.infra.ids import PushIdGenerator
from chatsync.obs import metrics as obs_metrics

log = logging.getLogger(__name__)

ChildCallback = Callable[[str, Any], Union[None, Awaitable[None]]]


class _ServerTimestamp:
	"""Placeholder resolved to the store's clock (epoch ms) at write time."""

	_instance: Optional["_ServerTimestamp"] = None

	def __new__(cls) -> "_ServerTimestamp":
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __repr__(self) -> str:
		return "SERVER_TIMESTAMP"

	def __deepcopy__(self, memo: dict) -> "_ServerTimestamp":
		return self


SERVER_TIMESTAMP = _ServerTimestamp()


def split_path(path: str) -> List[str]:
	parts = [part for part in str(path).strip("/").split("/") if part]
	for part in parts:
		if part in (".", ".."):
			raise ValueError(f"invalid path segment: {part!r}")
	return parts


def join_path(*segments: str) -> str:
	return "/".join(part for segment in segments for part in split_path(segment))


def resolve_server_values(value: Any, timestamp: int) -> Any:
	if value is SERVER_TIMESTAMP:
		return timestamp
	if isinstance(value, dict):
		return {str(key): resolve_server_values(nested, timestamp) for key, nested in value.items()}
	if isinstance(value, (list, tuple)):
		return [resolve_server_values(item, timestamp) for item in value]
	return value


def contains_server_values(value: Any) -> bool:
	if value is SERVER_TIMESTAMP:
		return True
	if isinstance(value, dict):
		return any(contains_server_values(nested) for nested in value.values())
	if isinstance(value, (list, tuple)):
		return any(contains_server_values(item) for item in value)
	return False


class SubscriptionHandle:
	"""Cancellation handle for a ``child_added`` subscription.

	Calling the handle or ``cancel()`` stops further deliveries. Both are
	idempotent and take effect before the next callback.
	"""

	def __init__(self, path: str, on_cancel: Callable[["SubscriptionHandle"], None] | None = None) -> None:
		self.path = path
		self._active = True
		self._on_cancel = on_cancel
		obs_metrics.subscription_opened()

	@property
	def active(self) -> bool:
		return self._active

	def cancel(self) -> None:
		if not self._active:
			return
		self._active = False
		obs_metrics.subscription_closed()
		on_cancel, self._on_cancel = self._on_cancel, None
		if on_cancel is not None:
			on_cancel(self)

	def __call__(self) -> None:
		self.cancel()

	def __repr__(self) -> str:
		state = "active" if self._active else "cancelled"
		return f"<SubscriptionHandle {self.path} {state}>"


async def deliver(handle: SubscriptionHandle, callback: ChildCallback, child_id: str, value: Any) -> None:
	"""Invoke one subscription callback; failures are logged and swallowed."""
	if not handle.active:
		return
	try:
		result = callback(child_id, value)
		if inspect.isawaitable(result):
			await result
	except Exception:
		obs_metrics.inc_subscription_callback_error()
		log.exception(
			"child_added callback failed",
			extra={"path": handle.path, "child_id": child_id},
		)


class HierarchicalStore(Protocol):
	async def read(self, path: str) -> Any | None:
		...

	async def write(self, path: str, value: Any) -> None:
		...

	async def remove(self, path: str) -> None:
		...

	async def append_child(self, collection_path: str, value: Any) -> str:
		...

	async def child_keys(self, path: str) -> List[str]:
		...

	async def subscribe_child_added(self, collection_path: str, callback: ChildCallback) -> SubscriptionHandle:
		...

	def generate_id(self) -> str:
		...


def _now_ms() -> int:
	return int(time.time() * 1000)


class InMemoryStore:
	"""Process-local store used in tests and offline development."""

	def __init__(self, *, clock: Callable[[], int] = _now_ms) -> None:
		self._lock = asyncio.Lock()
		self._clock = clock
		self._ids = PushIdGenerator(clock)
		self._root: Dict[str, Any] = {}
		self._subscribers: Dict[str, List[Tuple[SubscriptionHandle, ChildCallback]]] = {}
		self._pending: Deque[Tuple[SubscriptionHandle, ChildCallback, str, Any]] = deque()
		self._draining = False
		self._last_server_ts = 0
		self.online = True

	def set_online(self, online: bool) -> None:
		self.online = online

	def _ensure_online(self) -> None:
		if not self.online:
			raise StoreUnavailable("store_unavailable")

	def _server_time(self) -> int:
		now = max(int(self._clock()), self._last_server_ts + 1)
		self._last_server_ts = now
		return now

	def _node(self, parts: List[str]) -> Any | None:
		node: Any = self._root
		for part in parts:
			if not isinstance(node, dict) or part not in node:
				return None
			node = node[part]
		return node

	def _set(self, parts: List[str], value: Any) -> None:
		if not parts:
			if not isinstance(value, dict):
				raise ValueError("root must be a mapping")
			self._root = value
			return
		node = self._root
		for part in parts[:-1]:
			child = node.get(part)
			if not isinstance(child, dict):
				child = {}
				node[part] = child
			node = child
		node[parts[-1]] = value

	def _delete(self, parts: List[str]) -> None:
		if not parts:
			self._root = {}
			return
		trail: List[Tuple[Dict[str, Any], str]] = []
		node: Any = self._root
		for part in parts:
			if not isinstance(node, dict) or part not in node:
				return
			trail.append((node, part))
			node = node[part]
		parent, key = trail.pop()
		del parent[key]
		# Prune parents left empty by the removal.
		while trail and not parent:
			parent, key = trail.pop()
			del parent[key]

	@staticmethod
	def _is_empty(value: Any) -> bool:
		return value is None or (isinstance(value, dict) and not value)

	async def read(self, path: str) -> Any | None:
		async with self._lock:
			self._ensure_online()
			node = self._node(split_path(path))
			return copy.deepcopy(node)

	async def write(self, path: str, value: Any) -> None:
		parts = split_path(path)
		async with self._lock:
			self._ensure_online()
			if self._is_empty(value):
				self._delete(parts)
				return
			stamped = copy.deepcopy(value)
			if contains_server_values(stamped):
				stamped = resolve_server_values(stamped, self._server_time())
			self._set(parts, stamped)

	async def remove(self, path: str) -> None:
		await self.write(path, None)

	async def append_child(self, collection_path: str, value: Any) -> str:
		parts = split_path(collection_path)
		if not parts:
			raise ValueError("collection path required")
		if self._is_empty(value):
			raise ValueError("cannot append an empty value")
		async with self._lock:
			self._ensure_online()
			child_id = self._ids.next_id()
			stamped = resolve_server_values(copy.deepcopy(value), self._server_time())
			self._set(parts + [child_id], stamped)
			collection = "/".join(parts)
			for handle, callback in self._subscribers.get(collection, []):
				if handle.active:
					self._pending.append((handle, callback, child_id, copy.deepcopy(stamped)))
		await self._drain()
		return child_id

	async def _drain(self) -> None:
		# A drain already in progress delivers anything queued behind it, in order.
		if self._draining:
			return
		self._draining = True
		try:
			while self._pending:
				handle, callback, child_id, value = self._pending.popleft()
				await deliver(handle, callback, child_id, value)
		finally:
			self._draining = False

	async def child_keys(self, path: str) -> List[str]:
		async with self._lock:
			self._ensure_online()
			node = self._node(split_path(path))
			if not isinstance(node, dict):
				return []
			return sorted(node.keys())

	async def subscribe_child_added(self, collection_path: str, callback: ChildCallback) -> SubscriptionHandle:
		collection = "/".join(split_path(collection_path))
		async with self._lock:
			self._ensure_online()
			handle = SubscriptionHandle(collection, on_cancel=self._unsubscribe)
			self._subscribers.setdefault(collection, []).append((handle, callback))
			return handle

	def _unsubscribe(self, handle: SubscriptionHandle) -> None:
		entries = self._subscribers.get(handle.path)
		if not entries:
			return
		remaining = [entry for entry in entries if entry[0] is not handle]
		if remaining:
			self._subscribers[handle.path] = remaining
		else:
			self._subscribers.pop(handle.path, None)

	def subscriber_count(self, collection_path: str) -> int:
		return len(self._subscribers.get("/".join(split_path(collection_path)), []))

	def generate_id(self) -> str:
		return self._ids.next_id()
