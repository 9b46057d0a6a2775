"""Time-ordered child ids for store collections.

Ids are 20 characters: 8 encode the millisecond timestamp, 12 are random. When
two ids are minted in the same millisecond the random part of the previous id
is incremented instead of redrawn, so ids always sort lexicographically in the
order they were generated.
"""

from __future__ import annotations

import secrets
import time
from typing import Callable, List

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"
_TIME_CHARS = 8
_RANDOM_CHARS = 12


def _now_ms() -> int:
	return int(time.time() * 1000)


def _encode_time(timestamp: int) -> str:
	time_chars = []
	remaining = int(timestamp)
	for _ in range(_TIME_CHARS):
		time_chars.append(PUSH_CHARS[remaining % 64])
		remaining //= 64
	if remaining or timestamp < 0:
		raise ValueError("timestamp out of range")
	return "".join(reversed(time_chars))


def push_id_at(timestamp: int) -> str:
	"""Child id for a timestamp the store has already made unique within its collection."""
	return _encode_time(timestamp) + "".join(PUSH_CHARS[secrets.randbelow(64)] for _ in range(_RANDOM_CHARS))


class PushIdGenerator:
	def __init__(self, clock: Callable[[], int] = _now_ms) -> None:
		self._clock = clock
		self._last_ts = -1
		self._last_random: List[int] = [0] * _RANDOM_CHARS

	def __call__(self) -> str:
		return self.next_id()

	def next_id(self) -> str:
		now = self._clock()
		# A clock that steps backwards is treated as the same millisecond.
		if now <= self._last_ts:
			self._increment_random()
			now = self._last_ts
		else:
			self._last_random = [secrets.randbelow(64) for _ in range(_RANDOM_CHARS)]
		self._last_ts = now
		return _encode_time(now) + "".join(PUSH_CHARS[value] for value in self._last_random)

	def _increment_random(self) -> None:
		idx = _RANDOM_CHARS - 1
		while idx >= 0 and self._last_random[idx] == 63:
			self._last_random[idx] = 0
			idx -= 1
		if idx < 0:
			# All 12 random chars overflowed within one millisecond; borrow the next tick.
			self._last_ts += 1
			return
		self._last_random[idx] += 1

