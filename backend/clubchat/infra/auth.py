"""Authentication helpers for FastAPI endpoints.

The caller's identity comes from a bearer JWT; in development a plain
``X-User-Id`` header is accepted too. Either way the id is resolved against the
directory so the role used for chat policy is the stored one.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from clubchat.domain.chat.models import Identity
from clubchat.domain.chat.service import ChatService, get_service
from clubchat.infra import jwt as jwt_helper
from clubchat.settings import settings

_bearer_scheme = HTTPBearer(auto_error=False)


def subject_from_token(token: str) -> str:
	try:
		return jwt_helper.decode_access(token).subject
	except InvalidTokenError:
		# every decode failure is reported as invalid_token
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token") from None


def chat_service() -> ChatService:
	return get_service()


async def get_current_identity(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
	service: ChatService = Depends(chat_service),
) -> Identity:
	"""Resolve the signed-in user, or reject the request with 401."""
	user_id: Optional[str] = None
	if credentials and credentials.scheme.lower() == "bearer":
		user_id = subject_from_token(credentials.credentials)
	elif settings.is_dev() and x_user_id:
		user_id = x_user_id.strip()
	if not user_id:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	identity = await service.directory.get_user(user_id)
	if identity is None:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unknown_user")
	return identity
