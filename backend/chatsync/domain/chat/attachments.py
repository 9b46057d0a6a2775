"""Attachment upload and classification for chat messages."""

from __future__ import annotations

import logging
import mimetypes
import re
from dataclasses import dataclass
from typing import Optional, Tuple

import ulid

from chatsync.domain.errors import UnsupportedType, UploadFailed
from chatsync.infra.object_storage import ObjectStorage, ObjectStorageError
from chatsync.obs import metrics as obs_metrics
from chatsync.settings import settings

from .models import Attachment, FILE_KIND, IMAGE_KIND, LocalBlob

log = logging.getLogger(__name__)

IMAGE_MIME_TYPES = frozenset({"image/jpeg", "image/png"})
IMAGES_PREFIX = "images"
FILES_PREFIX = "files"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True, slots=True)
class UploadResult:
	"""Outcome of an upload; failures are returned, not raised."""

	attachment: Optional[Attachment] = None
	error: Optional[UploadFailed] = None

	@property
	def ok(self) -> bool:
		return self.attachment is not None and self.error is None

	@classmethod
	def success(cls, attachment: Attachment) -> "UploadResult":
		return cls(attachment=attachment)

	@classmethod
	def failure(cls, code: str, message: str | None = None) -> "UploadResult":
		return cls(error=UploadFailed(code, message=message))


def classify(display_name: str) -> Tuple[str, str]:
	"""Return ``(mime_type, kind)`` derived from the file extension."""
	mime, _ = mimetypes.guess_type(str(display_name or ""), strict=False)
	if not mime:
		raise UnsupportedType("unsupported_type", message=f"unsupported file type: {display_name!r}")
	mime = mime.lower()
	return mime, IMAGE_KIND if mime in IMAGE_MIME_TYPES else FILE_KIND


def safe_object_name(display_name: str) -> str:
	cleaned = _UNSAFE_NAME_CHARS.sub("_", display_name.rsplit("/", 1)[-1]).strip("._")
	return cleaned or "upload"


def build_object_path(kind: str, display_name: str) -> str:
	prefix = IMAGES_PREFIX if kind == IMAGE_KIND else FILES_PREFIX
	return f"{prefix}/{ulid.new()}_{safe_object_name(display_name)}"


class AttachmentResolver:
	def __init__(
		self,
		storage: ObjectStorage,
		*,
		bucket: str | None = None,
		image_max_bytes: int | None = None,
		file_max_bytes: int | None = None,
	) -> None:
		self._storage = storage
		self._bucket = bucket or settings.storage_bucket
		self._image_max = settings.image_max_bytes if image_max_bytes is None else image_max_bytes
		self._file_max = settings.file_max_bytes if file_max_bytes is None else file_max_bytes

	def _limit(self, kind: str) -> int:
		return self._image_max if kind == IMAGE_KIND else self._file_max

	async def upload(self, blob: LocalBlob, display_name: str | None = None) -> UploadResult:
		"""Upload ``blob`` and resolve its public reference.

		Raises ``UnsupportedType`` for an unknown extension. Size and backend
		failures come back as a failed ``UploadResult`` so the caller can offer
		a retry.
		"""
		name = display_name or blob.name
		mime, kind = classify(name)
		if blob.size == 0:
			obs_metrics.inc_attachment_upload(kind, "rejected")
			return UploadResult.failure("media_empty")
		if blob.size > self._limit(kind):
			obs_metrics.inc_attachment_upload(kind, "rejected")
			return UploadResult.failure("media_too_large")
		path = build_object_path(kind, name)
		try:
			ref = await self._storage.put(self._bucket, path, blob.data, mime)
		except ObjectStorageError as exc:
			obs_metrics.inc_attachment_upload(kind, "failed")
			log.warning("attachment upload failed", extra={"object_path": path, "error": str(exc)})
			return UploadResult.failure("upload_failed", str(exc))
		obs_metrics.inc_attachment_upload(kind, "ok")
		return UploadResult.success(Attachment(ref=self._storage.public_url(ref), kind=kind, display_name=name))
