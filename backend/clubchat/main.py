"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clubchat.api import chat, ops
from clubchat.api.errors import install_error_handlers
from clubchat.domain.chat.service import get_service
from clubchat.domain.chat.sockets import ChatNamespace
from clubchat.infra import postgres
from clubchat.infra.redis import close_redis
from clubchat.infra.schema import ensure_chat_schema
from clubchat.obs import init as obs_init
from clubchat.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.chat_backend == "postgres":
		pool = await postgres.init_pool()
		await ensure_chat_schema(pool)
	service = get_service()
	await service.hub.start()
	try:
		yield
	finally:
		await service.hub.stop()
		if settings.chat_backend == "postgres":
			await postgres.close_pool()
		if settings.chat_live_backend == "redis":
			await close_redis()


def create_app() -> FastAPI:
	app = FastAPI(title="Club Chat", lifespan=lifespan)
	install_error_handlers(app)
	obs_init(app)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=settings.allowed_origins(),
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)
	app.include_router(chat.router, tags=["chat"])
	app.include_router(ops.router, tags=["ops"])
	return app


app = create_app()

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=settings.allowed_origins())
chat_namespace = ChatNamespace()
sio.register_namespace(chat_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
