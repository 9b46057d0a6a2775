"""Local secure cache used only for opt-in "remember me" credentials."""

from __future__ import annotations

from typing import Dict, Optional, Protocol


class SecureCache(Protocol):
	async def get(self, key: str) -> Optional[str]:
		...

	async def set(self, key: str, value: str) -> None:
		...

	async def remove(self, key: str) -> None:
		...


class InMemorySecureCache:
	def __init__(self) -> None:
		self._items: Dict[str, str] = {}

	async def get(self, key: str) -> Optional[str]:
		return self._items.get(key)

	async def set(self, key: str, value: str) -> None:
		self._items[key] = str(value)

	async def remove(self, key: str) -> None:
		self._items.pop(key, None)

	def __len__(self) -> int:
		return len(self._items)
