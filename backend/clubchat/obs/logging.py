"""Structured JSON logging with per-request context and chat-content redaction."""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from clubchat.settings import settings

_LOGGER_NAME = "clubchat"

# fields bound by the HTTP middleware and copied onto every record
_CONTEXT: Dict[str, ContextVar[Optional[str]]] = {
	"request_id": ContextVar("obs_request_id", default=None),
	"route": ContextVar("obs_route", default=None),
	"user_id": ContextVar("obs_user_id", default=None),
}

_SECRET_KEYWORDS = ("token", "secret", "authorization", "password")
# message text and chat-list previews never reach the log stream
_CONTENT_FIELDS = frozenset({"body", "text", "preview", "last_message", "email"})

_MAX_STRING_LENGTH = 256
_MAX_COLLECTION_ITEMS = 10

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def bind_context(**fields: Optional[str]) -> Dict[str, Token]:
	"""Bind contextual fields for the current request and return reset tokens."""
	tokens: Dict[str, Token] = {}
	for key, value in fields.items():
		var = _CONTEXT.get(key)
		if var is not None and value is not None:
			tokens[key] = var.set(value)
	return tokens


def reset_context(tokens: Dict[str, Token]) -> None:
	for key, token in tokens.items():
		_CONTEXT[key].reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT["request_id"].get()


def _redacted(key: str) -> bool:
	lowered = key.lower()
	return lowered in _CONTENT_FIELDS or any(keyword in lowered for keyword in _SECRET_KEYWORDS)


def _clip(value: Any) -> Any:
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING_LENGTH else f"{value[:_MAX_STRING_LENGTH]}…"
	if isinstance(value, datetime):
		return value.isoformat()
	if isinstance(value, dict):
		items = list(value.items())
		clipped = {str(key): "[redacted]" if _redacted(str(key)) else _clip(nested) for key, nested in items[:_MAX_COLLECTION_ITEMS]}
		if len(items) > _MAX_COLLECTION_ITEMS:
			clipped["…"] = f"+{len(items) - _MAX_COLLECTION_ITEMS} keys"
		return clipped
	if isinstance(value, (list, tuple, set, frozenset)):
		values = [_clip(item) for item in list(value)[:_MAX_COLLECTION_ITEMS]]
		if len(value) > _MAX_COLLECTION_ITEMS:
			values.append("…")
		return values
	return value


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per line: fixed service fields, request context, then ``extra``."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for key, var in _CONTEXT.items():
			value = var.get()
			if value:
				payload[key] = value
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key in _RECORD_ATTRS or key in payload:
				continue
			payload[key] = "[redacted]" if _redacted(key) else _clip(value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Randomly sample info-level logs, keep warnings/errors."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	"""Route the root logger through the JSON formatter and sampling filter."""
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
