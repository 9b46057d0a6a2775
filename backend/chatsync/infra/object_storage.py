"""Object storage collaborators for attachment and avatar blobs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple
from urllib.parse import quote

import httpx

from chatsync.settings import settings


class ObjectStorageError(RuntimeError):
	"""Raised when the backend rejects or fails a put."""


@dataclass(frozen=True, slots=True)
class StorageRef:
	bucket: str
	path: str


class ObjectStorage(Protocol):
	async def put(self, bucket: str, path: str, data: bytes, content_type: str) -> StorageRef:
		...

	def public_url(self, ref: StorageRef) -> str:
		...


class InMemoryObjectStorage:
	"""Keeps blobs in a dict; used in tests and offline development."""

	def __init__(self, base_url: str = "https://storage.local") -> None:
		self.base_url = base_url.rstrip("/")
		self.objects: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
		self.available = True

	async def put(self, bucket: str, path: str, data: bytes, content_type: str) -> StorageRef:
		if not self.available:
			raise ObjectStorageError("storage unavailable")
		key = (bucket, path)
		if key in self.objects:
			raise ObjectStorageError("object already exists")
		self.objects[key] = (bytes(data), content_type)
		return StorageRef(bucket=bucket, path=path)

	def public_url(self, ref: StorageRef) -> str:
		return f"{self.base_url}/{ref.bucket}/{quote(ref.path)}"


@dataclass
class HttpObjectStorage:
	"""Storage REST API client (``/storage/v1/object/{bucket}/{path}``)."""

	http: httpx.AsyncClient
	base_url: str = settings.storage_base_url
	api_key: Optional[str] = settings.storage_api_key
	request_timeout: float = settings.storage_timeout_seconds

	def _object_url(self, ref: StorageRef, *, public: bool = False) -> str:
		scope = "object/public" if public else "object"
		return f"{self.base_url.rstrip('/')}/storage/v1/{scope}/{ref.bucket}/{quote(ref.path)}"

	def _headers(self, content_type: str) -> Dict[str, str]:
		headers = {"content-type": content_type, "x-upsert": "false"}
		if self.api_key:
			headers["authorization"] = f"Bearer {self.api_key}"
			headers["apikey"] = self.api_key
		return headers

	async def put(self, bucket: str, path: str, data: bytes, content_type: str) -> StorageRef:
		ref = StorageRef(bucket=bucket, path=path)
		try:
			response = await self.http.post(
				self._object_url(ref),
				content=data,
				headers=self._headers(content_type),
				timeout=self.request_timeout,
			)
		except httpx.HTTPError as exc:
			raise ObjectStorageError(f"upload transport error: {exc}") from exc
		if response.status_code >= 400:
			raise ObjectStorageError(f"upload rejected: {response.status_code}")
		return ref

	def public_url(self, ref: StorageRef) -> str:
		return self._object_url(ref, public=True)
