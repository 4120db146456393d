"""HS256 access tokens for chat clients.

Tokens identify a directory user through ``sub``. Roles are never trusted from
the token; the auth dependency re-reads them from the directory.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict

import jwt
from jwt import InvalidTokenError

from clubchat.settings import settings

ISSUER = "clubchat-auth"
AUDIENCE = "clubchat-app"
ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 3600


@dataclass(frozen=True)
class AccessClaims:
	subject: str
	issued_at: int
	expires_at: int


def encode_access(user_id: str, *, ttl_seconds: int = DEFAULT_TTL_SECONDS, **extra: Any) -> str:
	now = int(time.time())
	claims: Dict[str, Any] = {**extra, "sub": str(user_id), "iss": ISSUER, "aud": AUDIENCE, "iat": now, "exp": now + ttl_seconds}
	return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def decode_access(token: str) -> AccessClaims:
	"""Validate signature, expiry, issuer and audience.

	Raises jwt.InvalidTokenError subclasses on failure.
	"""
	payload = jwt.decode(
		token,
		settings.secret_key,
		algorithms=[ALGORITHM],
		audience=AUDIENCE,
		issuer=ISSUER,
		leeway=5,
		options={"require": ["sub", "exp", "iat", "iss", "aud"]},
	)
	subject = str(payload.get("sub") or "").strip()
	if not subject:
		raise InvalidTokenError("missing_claim:sub")
	return AccessClaims(subject=subject, issued_at=int(payload["iat"]), expires_at=int(payload["exp"]))
