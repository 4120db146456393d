"""Chat service: keeps the message log and both participants' chat lists in step.

There is no transaction spanning the two chat-list rows of a conversation. Each
operation writes them in a fixed order with merge semantics, so re-running an
operation after a failure converges both rows.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import asyncpg
import redis.exceptions

from clubchat.obs import metrics as obs_metrics
from clubchat.settings import settings

from . import live, policy
from .directory import DirectoryService, InMemoryDirectory
from .exceptions import (
	ChatError,
	ConnectivityFailure,
	InvalidMessage,
	MessageNotFound,
	NotParticipant,
	PartialFanoutFailure,
	UserNotFound,
)
from .inbox import InboxIndex, InMemoryInboxIndex
from .models import (
	EMPTY_PREVIEW,
	START_PREVIEW,
	ChatMessage,
	ConversationKey,
	Identity,
	InboxEntry,
)
from .store import Clock, ConversationStore, InMemoryConversationStore, utcnow

log = logging.getLogger("clubchat.chat")

T = TypeVar("T")

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
	asyncio.TimeoutError,
	OSError,
	asyncpg.exceptions.InterfaceError,
	asyncpg.exceptions.PostgresConnectionError,
	redis.exceptions.ConnectionError,
	redis.exceptions.TimeoutError,
)


class ChatService:
	def __init__(
		self,
		*,
		store: ConversationStore | None = None,
		inbox: InboxIndex | None = None,
		directory: DirectoryService | None = None,
		hub: live.LiveQueryHub | None = None,
		clock: Clock | None = None,
		timeout_seconds: float | None = None,
	) -> None:
		self._clock = clock or utcnow
		self.store = store or InMemoryConversationStore(clock=self._clock)
		self.inbox = inbox or InMemoryInboxIndex()
		self.directory = directory or InMemoryDirectory()
		self.hub = hub or live.LiveQueryHub()
		self._timeout_seconds = timeout_seconds

	@property
	def timeout_seconds(self) -> float:
		return self._timeout_seconds or settings.chat_operation_timeout_seconds

	async def _call(self, awaitable: Awaitable[T]) -> T:
		try:
			return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
		except ChatError:
			raise
		except _TRANSIENT_ERRORS as exc:
			raise ConnectivityFailure() from exc

	async def _dual_write(
		self,
		operation: str,
		first: Callable[[], Awaitable[Any]],
		second: Callable[[], Awaitable[Any]],
		*,
		conversation_id: str,
	) -> None:
		"""Write both chat-list rows; the first failing write aborts the second."""
		await self._call(first())
		try:
			await self._call(second())
		except ConnectivityFailure as exc:
			obs_metrics.inc_chat_fanout_failure(operation)
			log.warning(
				"chat.fanout.partial",
				extra={"operation": operation, "conversation_id": conversation_id},
			)
			raise PartialFanoutFailure() from exc

	async def _require_user(self, user_id: str) -> Identity:
		user = await self._call(self.directory.get_user(user_id))
		if user is None:
			raise UserNotFound()
		return user

	def _check_initiate(self, initiator: Identity, target: Identity, operation: str) -> None:
		try:
			policy.ensure_can_initiate(initiator, target)
		except ChatError as exc:
			obs_metrics.inc_chat_denied(exc.reason)
			log.info(
				f"chat.{operation}.denied",
				extra={"initiator": initiator.id, "target": target.id, "reason": exc.reason},
			)
			raise

	def _clean_body(self, text: str) -> str:
		body = (text or "").strip()
		if not body:
			raise InvalidMessage("empty_body")
		if len(body) > settings.chat_max_body_length:
			raise InvalidMessage("body_too_long")
		return body

	async def _notify(self, *topics: str) -> None:
		await self.hub.notify(*topics)

	async def list_contacts(self, actor_id: str, search: Optional[str] = None) -> List[Identity]:
		actor = await self._require_user(actor_id)
		users = await self._call(self.directory.list_users())
		return policy.contactable(actor, users, search)

	async def start_conversation(self, initiator_id: str, target_id: str) -> str:
		initiator = await self._require_user(initiator_id)
		target = await self._require_user(target_id)
		self._check_initiate(initiator, target, "start")
		key = ConversationKey.from_participants(initiator.id, target.id)
		conversation_id = key.conversation_id
		now = self._clock()

		async def seed(owner: Identity, peer: Identity) -> InboxEntry:
			existing = await self.inbox.get(owner.id, peer.id)
			if existing is not None and existing.conversation_id == conversation_id:
				# already live; refresh the link without resetting unread or favorite
				return await self.inbox.upsert(owner.id, peer.id, conversation_id=conversation_id, peer_name=peer.name)
			return await self.inbox.upsert(
				owner.id,
				peer.id,
				peer_name=peer.name,
				last_message=START_PREVIEW,
				updated_at=now,
				conversation_id=conversation_id,
				unread_count=0,
				is_favorite=False,
			)

		await self._dual_write(
			"start",
			lambda: seed(initiator, target),
			lambda: seed(target, initiator),
			conversation_id=conversation_id,
		)
		obs_metrics.inc_chat_started()
		log.info(
			"chat.start",
			extra={"conversation_id": conversation_id, "initiator": initiator.id, "target": target.id},
		)
		await self._notify(live.inbox_topic(initiator.id), live.inbox_topic(target.id))
		return conversation_id

	async def send_message(
		self,
		sender_id: str,
		conversation_id: str,
		text: str,
		*,
		client_msg_id: Optional[str] = None,
	) -> ChatMessage:
		body = self._clean_body(text)
		key = ConversationKey.resolve(conversation_id, sender_id)
		sender = await self._require_user(sender_id)
		peer = await self._require_user(key.peer_of(sender_id))
		peer_id = peer.id
		if await self._call(self.inbox.get(sender_id, peer_id)) is None:
			if await self._call(self.store.latest(conversation_id)) is None:
				# this send opens the thread, so it needs the same clearance as starting one
				self._check_initiate(sender, peer, "send")
		result = await self._call(
			self.store.append(conversation_id, sender_id=sender_id, body=body, client_msg_id=client_msg_id)
		)
		message = result.message
		sender_name = sender.name
		peer_name = peer.name
		preview = {
			"last_message": message.body,
			"updated_at": message.created_at,
			"conversation_id": conversation_id,
		}
		if not result.created:
			latest = await self._call(self.store.latest(conversation_id))
			if latest is None or latest.message_id != message.message_id:
				# newer messages already own the previews
				preview = {"conversation_id": conversation_id}

		def sender_side() -> Awaitable[InboxEntry]:
			return self.inbox.upsert(sender_id, peer_id, peer_name=peer_name, unread_count=0, **preview)

		async def peer_side() -> InboxEntry:
			if not result.created:
				# a replay counts the message only if the earlier increment never landed
				existing = await self.inbox.get(peer_id, sender_id)
				if existing is not None and existing.updated_at is not None and existing.updated_at >= message.created_at:
					return await self.inbox.upsert(peer_id, sender_id, peer_name=sender_name)
			return await self.inbox.increment_unread(peer_id, sender_id, by=1, peer_name=sender_name, **preview)

		await self._dual_write("send", sender_side, peer_side, conversation_id=conversation_id)
		obs_metrics.inc_chat_send("created" if result.created else "replayed")
		log.info(
			"chat.send",
			extra={
				"conversation_id": conversation_id,
				"message_id": message.message_id,
				"sender": sender_id,
				"replayed": not result.created,
			},
		)
		await self._notify(
			live.messages_topic(conversation_id),
			live.inbox_topic(sender_id),
			live.inbox_topic(peer_id),
		)
		return message

	async def mark_read(self, owner_id: str, peer_id: str) -> bool:
		updated = await self._call(self.inbox.set_unread(owner_id, peer_id, 0))
		if updated:
			obs_metrics.inc_chat_read()
			await self._notify(live.inbox_topic(owner_id))
		return updated

	async def mark_conversation_read(self, owner_id: str, conversation_id: str) -> bool:
		key = ConversationKey.resolve(conversation_id, owner_id)
		return await self.mark_read(owner_id, key.peer_of(owner_id))

	async def _refresh_previews(self, key: ConversationKey, preview: str, operation: str) -> None:
		"""Re-derive both chat-list previews after the latest message changed.

		Uses update rather than upsert so a side that deleted the conversation
		is not recreated.
		"""
		user_a, user_b = key.participants()
		fields = {"last_message": preview, "updated_at": self._clock()}
		await self._dual_write(
			operation,
			lambda: self.inbox.update(user_a, user_b, **fields),
			lambda: self.inbox.update(user_b, user_a, **fields),
			conversation_id=key.conversation_id,
		)

	async def edit_message(self, actor_id: str, conversation_id: str, message_id: str, text: str) -> ChatMessage:
		body = self._clean_body(text)
		key = ConversationKey.resolve(conversation_id, actor_id)
		try:
			message = await self._call(self.store.edit(conversation_id, message_id, actor_id=actor_id, body=body))
		except ChatError as exc:
			obs_metrics.inc_chat_edit(exc.reason)
			raise
		obs_metrics.inc_chat_edit("ok")
		latest = await self._call(self.store.latest(conversation_id))
		if latest is not None and latest.message_id == message.message_id:
			await self._refresh_previews(key, message.body, "edit")
		log.info("chat.edit", extra={"conversation_id": conversation_id, "message_id": message_id})
		await self._notify(
			live.messages_topic(conversation_id),
			live.inbox_topic(key.user_a),
			live.inbox_topic(key.user_b),
		)
		return message

	async def delete_message(self, actor_id: str, conversation_id: str, message_id: str) -> ChatMessage:
		key = ConversationKey.resolve(conversation_id, actor_id)
		latest_before = await self._call(self.store.latest(conversation_id))
		message = await self._call(self.store.delete(conversation_id, message_id, actor_id=actor_id))
		obs_metrics.inc_chat_delete("message")
		if latest_before is not None and latest_before.message_id == message.message_id:
			latest = await self._call(self.store.latest(conversation_id))
			await self._refresh_previews(key, latest.body if latest else EMPTY_PREVIEW, "delete")
		log.info("chat.delete_message", extra={"conversation_id": conversation_id, "message_id": message_id})
		await self._notify(
			live.messages_topic(conversation_id),
			live.inbox_topic(key.user_a),
			live.inbox_topic(key.user_b),
		)
		return message

	async def delete_conversation(self, owner_id: str, conversation_id: str) -> int:
		"""Purge the log and drop only the owner's chat-list row.

		The peer keeps their row; their next send recreates the log under the
		same conversation id.
		"""
		key = ConversationKey.resolve(conversation_id, owner_id)
		peer_id = key.peer_of(owner_id)
		purged = await self._call(self.store.purge(conversation_id))
		await self._call(self.inbox.remove(owner_id, peer_id))
		obs_metrics.inc_chat_delete("conversation")
		obs_metrics.inc_chat_purged(purged)
		log.info(
			"chat.delete_conversation",
			extra={"conversation_id": conversation_id, "owner": owner_id, "purged": purged},
		)
		await self._notify(live.messages_topic(conversation_id), live.inbox_topic(owner_id))
		return purged

	async def toggle_favorite(self, owner_id: str, peer_id: str) -> bool:
		value = await self._call(self.inbox.toggle_favorite(owner_id, peer_id))
		if value is None:
			raise NotParticipant("conversation_not_in_inbox")
		obs_metrics.inc_chat_favorite()
		await self._notify(live.inbox_topic(owner_id))
		return value

	async def list_inbox(self, owner_id: str, search: Optional[str] = None) -> List[InboxEntry]:
		return await self._call(self.inbox.list_for_owner(owner_id, search))

	async def list_messages(self, user_id: str, conversation_id: str) -> List[ChatMessage]:
		ConversationKey.resolve(conversation_id, user_id)
		return await self._call(self.store.list_ordered(conversation_id))

	async def get_message(self, user_id: str, conversation_id: str, message_id: str) -> ChatMessage:
		ConversationKey.resolve(conversation_id, user_id)
		message = await self._call(self.store.get(conversation_id, message_id))
		if message is None:
			raise MessageNotFound()
		return message

	async def subscribe_inbox(
		self,
		owner_id: str,
		callback: Callable[[List[InboxEntry]], Any],
		*,
		search: Optional[str] = None,
	) -> live.Subscription:
		return await self.hub.subscribe(
			live.inbox_topic(owner_id),
			lambda: self.list_inbox(owner_id, search),
			callback,
		)

	async def subscribe_messages(
		self,
		user_id: str,
		conversation_id: str,
		callback: Callable[[List[ChatMessage]], Any],
	) -> live.Subscription:
		ConversationKey.resolve(conversation_id, user_id)
		return await self.hub.subscribe(
			live.messages_topic(conversation_id),
			lambda: self._call(self.store.list_ordered(conversation_id)),
			callback,
		)


def build_service() -> ChatService:
	"""Wire a service from settings."""
	from clubchat.infra.redis import redis_client

	from .directory import PostgresDirectory
	from .inbox import PostgresInboxIndex
	from .store import PostgresConversationStore

	if settings.chat_backend == "postgres":
		store: ConversationStore = PostgresConversationStore()
		inbox: InboxIndex = PostgresInboxIndex()
		directory: DirectoryService = PostgresDirectory()
	else:
		store = InMemoryConversationStore()
		inbox = InMemoryInboxIndex()
		directory = InMemoryDirectory()
	hub = live.RedisLiveQueryHub(redis_client) if settings.chat_live_backend == "redis" else live.LiveQueryHub()
	return ChatService(store=store, inbox=inbox, directory=directory, hub=hub)


_SERVICE: ChatService | None = None


def get_service() -> ChatService:
	global _SERVICE
	if _SERVICE is None:
		_SERVICE = build_service()
	return _SERVICE


def set_service(service: ChatService | None) -> None:
	global _SERVICE
	_SERVICE = service
