"""Redis-backed hierarchical store.

Layout under the configured key prefix:

- ``paths``: sorted set (all scores 0) of every leaf path, so a subtree is one
  ``ZRANGEBYLEX`` over ``[path/`` .. ``(path0``.
- ``values``: hash of leaf path -> JSON value.
- ``seq:{collection}``: last timestamp handed out by ``append_child``. Appends
  WATCH it, so every client gets a strictly larger timestamp (and child id)
  than the previous commit to that collection.
- ``stream:{collection}``: one stream entry per ``append_child``; subscriptions
  poll it from the last entry id visible when they were registered.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from chatsync.domain.errors import StoreUnavailable
from chatsync.infra.ids import PushIdGenerator, push_id_at
from chatsync.infra.redis import redis_client
from chatsync.infra.store import (
	ChildCallback,
	SubscriptionHandle,
	contains_server_values,
	deliver,
	resolve_server_values,
	split_path,
)
from chatsync.settings import settings

log = logging.getLogger(__name__)

_READ_BATCH = 100
_UNAVAILABLE = (RedisConnectionError, RedisTimeoutError)


def _flatten(base: str, value: Any, out: Dict[str, str]) -> None:
	if value is None:
		return
	if isinstance(value, dict):
		for key, nested in value.items():
			_flatten(f"{base}/{key}" if base else str(key), nested, out)
		return
	if not base:
		raise ValueError("root must be a mapping")
	out[base] = json.dumps(value)


def _unflatten(base: str, leaves: Dict[str, str]) -> Optional[Dict[str, Any]]:
	result: Dict[str, Any] = {}
	cut = len(base) + 1 if base else 0
	for leaf_path, raw in leaves.items():
		parts = leaf_path[cut:].split("/")
		node = result
		for part in parts[:-1]:
			node = node.setdefault(part, {})
		node[parts[-1]] = json.loads(raw)
	return result or None


class RedisStore:
	def __init__(
		self,
		client: Any = None,
		*,
		prefix: str | None = None,
		poll_interval: float | None = None,
		clock: Callable[[], int] | None = None,
	) -> None:
		self._redis = client if client is not None else redis_client
		self._prefix = settings.redis_key_prefix if prefix is None else prefix
		self._poll_interval = settings.redis_poll_interval_seconds if poll_interval is None else poll_interval
		self._clock = clock
		self._ids = PushIdGenerator(clock) if clock is not None else PushIdGenerator()
		self._tasks: Dict[SubscriptionHandle, asyncio.Task] = {}

	@property
	def _paths_key(self) -> str:
		return f"{self._prefix}paths"

	@property
	def _values_key(self) -> str:
		return f"{self._prefix}values"

	def _stream_key(self, collection: str) -> str:
		return f"{self._prefix}stream:{collection}"

	def _seq_key(self, collection: str) -> str:
		return f"{self._prefix}seq:{collection}"

	async def _call(self, awaitable: Awaitable[Any]) -> Any:
		try:
			return await awaitable
		except _UNAVAILABLE as exc:
			raise StoreUnavailable("store_unavailable") from exc

	async def _server_time(self) -> int:
		if self._clock is not None:
			now = int(self._clock())
		else:
			seconds, micros = await self._call(self._redis.time())
			now = int(seconds) * 1000 + int(micros) // 1000
		return now

	async def _subtree_leaves(self, path: str) -> List[str]:
		if path:
			low, high = f"[{path}/", f"({path}0"
		else:
			low, high = "-", "+"
		return list(await self._call(self._redis.zrangebylex(self._paths_key, low, high)))

	async def read(self, path: str) -> Any | None:
		key = "/".join(split_path(path))
		if key:
			raw = await self._call(self._redis.hget(self._values_key, key))
			if raw is not None:
				return json.loads(raw)
		leaves = await self._subtree_leaves(key)
		if not leaves:
			return None
		raws = await self._call(self._redis.hmget(self._values_key, leaves))
		found = {leaf: raw for leaf, raw in zip(leaves, raws) if raw is not None}
		return _unflatten(key, found)

	async def write(self, path: str, value: Any) -> None:
		parts = split_path(path)
		key = "/".join(parts)
		if value is None or (isinstance(value, dict) and not value):
			await self.remove(key)
			return
		if contains_server_values(value):
			value = resolve_server_values(value, await self._server_time())
		flat: Dict[str, str] = {}
		_flatten(key, value, flat)
		# A write replaces the subtree and any leaf sitting on an ancestor path.
		stale = await self._subtree_leaves(key)
		stale.extend("/".join(parts[:idx]) for idx in range(1, len(parts) + 1))
		async with self._redis.pipeline(transaction=True) as pipe:
			if stale:
				pipe.zrem(self._paths_key, *stale)
				pipe.hdel(self._values_key, *stale)
			if flat:
				pipe.zadd(self._paths_key, {leaf: 0 for leaf in flat})
				pipe.hset(self._values_key, mapping=flat)
			await self._call(pipe.execute())

	async def remove(self, path: str) -> None:
		key = "/".join(split_path(path))
		stale = await self._subtree_leaves(key)
		if key:
			stale.append(key)
		streams = [self._stream_key(key)]
		try:
			async for stream in self._redis.scan_iter(match=f"{self._stream_key(key)}/*"):
				streams.append(stream)
		except _UNAVAILABLE as exc:
			raise StoreUnavailable("store_unavailable") from exc
		async with self._redis.pipeline(transaction=True) as pipe:
			if stale:
				pipe.zrem(self._paths_key, *stale)
				pipe.hdel(self._values_key, *stale)
			pipe.delete(*streams)
			await self._call(pipe.execute())

	async def append_child(self, collection_path: str, value: Any) -> str:
		collection = "/".join(split_path(collection_path))
		if not collection:
			raise ValueError("collection path required")
		seq_key = self._seq_key(collection)
		while True:
			try:
				async with self._redis.pipeline(transaction=True) as pipe:
					await pipe.watch(seq_key)
					last = await pipe.get(seq_key)
					# Timestamps are unique per collection, so child ids sort in commit order.
					stamp = max(await self._server_time(), int(last or 0) + 1)
					child_id = push_id_at(stamp)
					flat: Dict[str, str] = {}
					_flatten(f"{collection}/{child_id}", resolve_server_values(value, stamp), flat)
					if not flat:
						raise ValueError("cannot append an empty value")
					pipe.multi()
					pipe.set(seq_key, stamp)
					pipe.zadd(self._paths_key, {leaf: 0 for leaf in flat})
					pipe.hset(self._values_key, mapping=flat)
					pipe.xadd(self._stream_key(collection), {"child_id": child_id})
					await pipe.execute()
			except WatchError:
				log.debug("append raced another writer; retrying", extra={"path": collection})
				continue
			except _UNAVAILABLE as exc:
				raise StoreUnavailable("store_unavailable") from exc
			return child_id

	async def child_keys(self, path: str) -> List[str]:
		key = "/".join(split_path(path))
		cut = len(key) + 1 if key else 0
		return sorted({leaf[cut:].split("/", 1)[0] for leaf in await self._subtree_leaves(key)})

	async def subscribe_child_added(self, collection_path: str, callback: ChildCallback) -> SubscriptionHandle:
		collection = "/".join(split_path(collection_path))
		stream = self._stream_key(collection)
		latest = await self._call(self._redis.xrevrange(stream, count=1))
		last_id = latest[0][0] if latest else "0-0"
		handle = SubscriptionHandle(collection, on_cancel=self._cancel_task)
		self._tasks[handle] = asyncio.create_task(self._poll(handle, collection, stream, last_id, callback))
		return handle

	def _cancel_task(self, handle: SubscriptionHandle) -> None:
		task = self._tasks.pop(handle, None)
		if task is None:
			return
		try:
			current = asyncio.current_task()
		except RuntimeError:
			current = None
		# A callback cancelling its own subscription lets the poll loop exit on its own.
		if task is not current:
			task.cancel()

	async def _poll(self, handle: SubscriptionHandle, collection: str, stream: str, last_id: str, callback: ChildCallback) -> None:
		cursor = {"last_id": last_id}
		while handle.active:
			try:
				delivered = await self._poll_once(handle, collection, stream, cursor, callback)
			except StoreUnavailable:
				log.warning("child_added poll failed; retrying", extra={"path": collection, "last_id": cursor["last_id"]})
				delivered = False
			except Exception:
				log.exception("child_added poll crashed; retrying", extra={"path": collection, "last_id": cursor["last_id"]})
				delivered = False
			if not delivered and handle.active:
				await asyncio.sleep(self._poll_interval)

	async def _poll_once(
		self,
		handle: SubscriptionHandle,
		collection: str,
		stream: str,
		cursor: Dict[str, str],
		callback: ChildCallback,
	) -> bool:
		"""Deliver one batch; the cursor only moves past entries that were handled."""
		batches = await self._call(self._redis.xread({stream: cursor["last_id"]}, count=_READ_BATCH))
		if isinstance(batches, dict):
			batches = list(batches.items())
		if not batches:
			return False
		for _stream, entries in batches:
			for entry_id, fields in entries:
				child_id = fields.get("child_id")
				value = await self.read(f"{collection}/{child_id}") if child_id else None
				cursor["last_id"] = entry_id
				# Removed before we got to it.
				if value is None:
					continue
				await deliver(handle, callback, child_id, value)
				if not handle.active:
					return True
		return True

	def generate_id(self) -> str:
		return self._ids.next_id()

	async def close(self) -> None:
		tasks = list(self._tasks.values())
		for handle in list(self._tasks):
			handle.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
