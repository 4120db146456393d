"""Request metrics and JSON logging for the chat app."""

from __future__ import annotations

from fastapi import FastAPI

from clubchat.obs import logging as obs_logging
from clubchat.obs import middleware
from clubchat.settings import settings

_logging_ready = False


def init(app: FastAPI) -> None:
	"""Install the request middleware; logging is configured once per process."""
	global _logging_ready
	if not settings.obs_enabled:
		return
	middleware.install(app)
	if not _logging_ready:
		obs_logging.configure_logging()
		_logging_ready = True


__all__ = ["init"]
