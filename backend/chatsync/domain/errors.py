"""Error taxonomy shared by the chat sync domain."""

from __future__ import annotations


class ChatSyncError(RuntimeError):
	def __init__(self, code: str, *, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.detail = message or code


class InvalidArgument(ChatSyncError, ValueError):
	"""Bad input to a key derivation or send; fatal to the call only."""


class StoreUnavailable(ChatSyncError):
	"""The remote store could not be reached. Retry with the draft preserved."""


class UploadFailed(ChatSyncError):
	"""The object store rejected or failed an attachment upload."""


class UnsupportedType(ChatSyncError):
	"""An attachment's extension does not map to a known MIME type."""


class NotFound(ChatSyncError):
	pass


class SessionError(ChatSyncError):
	pass
