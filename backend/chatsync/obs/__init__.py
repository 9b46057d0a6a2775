"""Observability helpers for the chat sync core."""

from __future__ import annotations

from chatsync.obs import logging as obs_logging
from chatsync.obs import metrics as obs_metrics

_initialised = False


def init() -> None:
	global _initialised
	if _initialised:
		return
	obs_logging.configure_logging()
	_initialised = True


__all__ = ["init", "obs_logging", "obs_metrics"]
