"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from clubchat.api.request_id import get_request_id
from clubchat.domain.chat.exceptions import (
    AccessDenied,
    ChatError,
    ConnectivityFailure,
    EditWindowExpired,
    InvalidMessage,
    MessageNotFound,
    NotAuthor,
    NotParticipant,
    SelfConversation,
    UserNotFound,
)

log = logging.getLogger("clubchat.api")

_CHAT_STATUS: tuple[tuple[type[ChatError], int], ...] = (
    (AccessDenied, status.HTTP_403_FORBIDDEN),
    (NotAuthor, status.HTTP_403_FORBIDDEN),
    (NotParticipant, status.HTTP_403_FORBIDDEN),
    (EditWindowExpired, status.HTTP_409_CONFLICT),
    (MessageNotFound, status.HTTP_404_NOT_FOUND),
    (UserNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidMessage, status.HTTP_400_BAD_REQUEST),
    (SelfConversation, status.HTTP_400_BAD_REQUEST),
    (ConnectivityFailure, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(exc: ChatError) -> int:
    for exc_type, code in _CHAT_STATUS:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": exc.detail, "request_id": rid}
        return JSONResponse(status_code=exc.status_code, content=payload, headers={"X-Request-Id": rid})

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": "validation_error", "errors": exc.errors(), "request_id": rid}
        return JSONResponse(status_code=422, content=payload, headers={"X-Request-Id": rid})

    @app.exception_handler(ChatError)
    async def chat_exc_handler(request: Request, exc: ChatError):  # type: ignore[override]
        rid = get_request_id(request)
        code = status_for(exc)
        if code >= 500:
            log.warning("chat.unavailable", extra={"reason": exc.reason, "path": request.url.path})
        payload = {"detail": exc.reason, "request_id": rid}
        return JSONResponse(status_code=code, content=payload, headers={"X-Request-Id": rid})
