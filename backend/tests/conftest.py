import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from chatsync.domain.chat.attachments import AttachmentResolver
from chatsync.domain.chat.store import MessageStoreAdapter
from chatsync.infra.object_storage import InMemoryObjectStorage
from chatsync.infra.store import InMemoryStore


class ManualClock:
	"""Epoch-ms clock that only moves when a test advances it."""

	def __init__(self, start: int = 1_700_000_000_000) -> None:
		self.now = start

	def __call__(self) -> int:
		return self.now

	def advance(self, ms: int = 1) -> int:
		self.now += ms
		return self.now


@pytest_asyncio.fixture
async def fake_redis():
	from chatsync.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture
def clock():
	return ManualClock()


@pytest.fixture
def memory_store(clock):
	return InMemoryStore(clock=clock)


@pytest.fixture
def adapter(memory_store):
	return MessageStoreAdapter(memory_store)


@pytest.fixture
def object_storage():
	return InMemoryObjectStorage()


@pytest.fixture
def resolver(object_storage):
	return AttachmentResolver(object_storage, bucket="images", image_max_bytes=1024, file_max_bytes=4096)
