"""Socket.IO namespace pushing live chat-list and message-log snapshots."""

from __future__ import annotations

import logging
from typing import Dict, Optional

import socketio
from jwt import InvalidTokenError

from clubchat.infra import jwt as jwt_helper
from clubchat.obs import metrics as obs_metrics
from clubchat.settings import settings

from .exceptions import ChatError
from .live import Subscription
from .schemas import InboxEntryResponse, MessageResponse
from .service import ChatService, get_service

log = logging.getLogger(__name__)


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


class ChatNamespace(socketio.AsyncNamespace):
	"""Each client gets full snapshots of the lists it subscribed to."""

	def __init__(self, service: ChatService | None = None) -> None:
		super().__init__("/chat")
		self._service = service
		self._users: Dict[str, str] = {}
		self._inbox: Dict[str, Subscription] = {}
		self._threads: Dict[str, Dict[str, Subscription]] = {}

	@property
	def service(self) -> ChatService:
		return self._service or get_service()

	async def _authenticate(self, environ: dict, auth: Optional[dict]) -> str:
		scope = environ.get("asgi.scope", environ)
		auth_payload = auth or environ.get("auth") or {}
		token = auth_payload.get("token")
		if token:
			try:
				user_id = jwt_helper.decode_access(str(token)).subject
			except InvalidTokenError:
				raise ConnectionRefusedError("invalid_token") from None
		elif settings.is_dev():
			user_id = str(auth_payload.get("userId") or _header(scope, "x-user-id") or "").strip()
		else:
			user_id = ""
		if not user_id:
			raise ConnectionRefusedError("missing user id")
		if await self.service.directory.get_user(user_id) is None:
			raise ConnectionRefusedError("unknown_user")
		return user_id

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		user_id = await self._authenticate(environ, auth)
		obs_metrics.socket_connected(self.namespace)
		self._users[sid] = user_id
		await self.enter_room(sid, self.user_room(user_id))
		await self.emit("chat:ack", {"ok": True}, room=sid)

	async def on_disconnect(self, sid: str, *args) -> None:
		user_id = self._users.pop(sid, None)
		if user_id is None:
			return
		obs_metrics.socket_disconnected(self.namespace)
		inbox = self._inbox.pop(sid, None)
		if inbox is not None:
			inbox.close()
		for subscription in self._threads.pop(sid, {}).values():
			subscription.close()
		await self.leave_room(sid, self.user_room(user_id))

	def _require_user(self, sid: str) -> str:
		user_id = self._users.get(sid)
		if not user_id:
			raise ConnectionRefusedError("unauthenticated")
		return user_id

	async def on_inbox_subscribe(self, sid: str, payload: Optional[dict] = None) -> dict:
		obs_metrics.socket_event(self.namespace, "inbox_subscribe")
		user_id = self._require_user(sid)
		search = (payload or {}).get("search")
		previous = self._inbox.pop(sid, None)
		if previous is not None:
			previous.close()

		async def push(entries) -> None:
			obs_metrics.socket_event(self.namespace, "chat:inbox")
			items = [InboxEntryResponse.from_model(entry).model_dump(mode="json") for entry in entries]
			await self.emit("chat:inbox", {"items": items}, room=sid)

		try:
			self._inbox[sid] = await self.service.subscribe_inbox(user_id, push, search=search)
		except ChatError as exc:
			log.info("chat.socket.subscribe_rejected", extra={"reason": exc.reason})
			return {"ok": False, "error": exc.reason}
		return {"ok": True}

	async def on_messages_subscribe(self, sid: str, payload: dict) -> dict:
		obs_metrics.socket_event(self.namespace, "messages_subscribe")
		user_id = self._require_user(sid)
		conversation_id = str((payload or {}).get("conversation_id") or "")
		threads = self._threads.setdefault(sid, {})
		if conversation_id in threads:
			return {"ok": True}

		async def push(messages) -> None:
			obs_metrics.socket_event(self.namespace, "chat:messages")
			items = [MessageResponse.from_model(message).model_dump(mode="json") for message in messages]
			await self.emit("chat:messages", {"conversation_id": conversation_id, "items": items}, room=sid)

		try:
			threads[conversation_id] = await self.service.subscribe_messages(user_id, conversation_id, push)
		except ChatError as exc:
			log.info("chat.socket.subscribe_rejected", extra={"reason": exc.reason})
			return {"ok": False, "error": exc.reason}
		return {"ok": True}

	async def on_messages_unsubscribe(self, sid: str, payload: dict) -> dict:
		obs_metrics.socket_event(self.namespace, "messages_unsubscribe")
		conversation_id = str((payload or {}).get("conversation_id") or "")
		subscription = self._threads.get(sid, {}).pop(conversation_id, None)
		if subscription is not None:
			subscription.close()
		return {"ok": True}

	@staticmethod
	def user_room(user_id: str) -> str:
		return f"user:{user_id}"
