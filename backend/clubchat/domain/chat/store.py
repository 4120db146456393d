"""Ordered, append-only message log per conversation."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import ulid

from clubchat.infra.postgres import get_pool
from clubchat.settings import settings

from . import policy
from .exceptions import EditWindowExpired, MessageNotFound
from .models import AppendResult, ChatMessage

Clock = Callable[[], datetime]

_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def _monotonic(candidate: datetime, last: Optional[datetime]) -> datetime:
	if last is not None and candidate <= last:
		return last + _TICK
	return candidate


class ConversationStore:
	"""Authorship and edit-window guards shared by every storage backend.

	Subclasses implement the raw primitives; ``edit`` and ``delete`` re-check the
	acting user here so callers other than the coordinator get the same rules.
	"""

	def __init__(
		self,
		*,
		clock: Clock | None = None,
		edit_window_seconds: int | None = None,
		purge_batch_size: int | None = None,
	) -> None:
		self._clock = clock or utcnow
		self._edit_window_seconds = edit_window_seconds
		self._purge_batch_size = purge_batch_size

	@property
	def edit_window_seconds(self) -> int:
		return self._edit_window_seconds or settings.chat_edit_window_seconds

	@property
	def purge_batch_size(self) -> int:
		return self._purge_batch_size or settings.chat_purge_batch_size

	async def append(
		self,
		conversation_id: str,
		*,
		sender_id: str,
		body: str,
		client_msg_id: str | None = None,
	) -> AppendResult:
		raise NotImplementedError

	async def get(self, conversation_id: str, message_id: str) -> Optional[ChatMessage]:
		raise NotImplementedError

	async def list_ordered(self, conversation_id: str) -> List[ChatMessage]:
		raise NotImplementedError

	async def latest(self, conversation_id: str) -> Optional[ChatMessage]:
		raise NotImplementedError

	async def purge(self, conversation_id: str) -> int:
		raise NotImplementedError

	async def _apply_edit(
		self,
		conversation_id: str,
		message_id: str,
		*,
		actor_id: str,
		body: str,
		edited_at: datetime,
		cutoff: datetime,
	) -> Optional[ChatMessage]:
		raise NotImplementedError

	async def _delete_row(self, conversation_id: str, message_id: str, *, actor_id: str) -> bool:
		raise NotImplementedError

	async def edit(self, conversation_id: str, message_id: str, *, actor_id: str, body: str) -> ChatMessage:
		message = await self.get(conversation_id, message_id)
		if message is None:
			raise MessageNotFound()
		policy.ensure_author(message, actor_id)
		now = self._clock()
		policy.ensure_edit_window(message, now, self.edit_window_seconds)
		updated = await self._apply_edit(
			conversation_id,
			message_id,
			actor_id=actor_id,
			body=body,
			edited_at=now,
			cutoff=policy.edit_cutoff(now, self.edit_window_seconds),
		)
		if updated is None:
			if await self.get(conversation_id, message_id) is None:
				raise MessageNotFound()
			raise EditWindowExpired()
		return updated

	async def delete(self, conversation_id: str, message_id: str, *, actor_id: str) -> ChatMessage:
		message = await self.get(conversation_id, message_id)
		if message is None:
			raise MessageNotFound()
		policy.ensure_author(message, actor_id)
		if not await self._delete_row(conversation_id, message_id, actor_id=actor_id):
			raise MessageNotFound()
		return message


class InMemoryConversationStore(ConversationStore):
	def __init__(self, **kwargs) -> None:
		super().__init__(**kwargs)
		self._lock = asyncio.Lock()
		self._messages: dict[str, List[ChatMessage]] = {}
		self._last_seq: dict[str, int] = {}

	async def append(
		self,
		conversation_id: str,
		*,
		sender_id: str,
		body: str,
		client_msg_id: str | None = None,
	) -> AppendResult:
		async with self._lock:
			messages = self._messages.setdefault(conversation_id, [])
			if client_msg_id:
				for existing in messages:
					if existing.sender_id == sender_id and existing.client_msg_id == client_msg_id:
						return AppendResult(message=replace(existing), created=False)
			last_created = messages[-1].created_at if messages else None
			seq = self._last_seq.get(conversation_id, 0) + 1
			self._last_seq[conversation_id] = seq
			message_id = str(ulid.new())
			message = ChatMessage(
				message_id=message_id,
				conversation_id=conversation_id,
				seq=seq,
				sender_id=sender_id,
				body=body,
				client_msg_id=client_msg_id or message_id,
				created_at=_monotonic(self._clock(), last_created),
			)
			messages.append(message)
			return AppendResult(message=replace(message), created=True)

	async def get(self, conversation_id: str, message_id: str) -> Optional[ChatMessage]:
		async with self._lock:
			for message in self._messages.get(conversation_id, []):
				if message.message_id == message_id:
					return replace(message)
			return None

	async def list_ordered(self, conversation_id: str) -> List[ChatMessage]:
		async with self._lock:
			return [replace(message) for message in self._messages.get(conversation_id, [])]

	async def latest(self, conversation_id: str) -> Optional[ChatMessage]:
		async with self._lock:
			messages = self._messages.get(conversation_id)
			return replace(messages[-1]) if messages else None

	async def purge(self, conversation_id: str) -> int:
		async with self._lock:
			removed = self._messages.pop(conversation_id, [])
			return len(removed)

	async def _apply_edit(
		self,
		conversation_id: str,
		message_id: str,
		*,
		actor_id: str,
		body: str,
		edited_at: datetime,
		cutoff: datetime,
	) -> Optional[ChatMessage]:
		async with self._lock:
			for message in self._messages.get(conversation_id, []):
				if message.message_id != message_id:
					continue
				if message.sender_id != actor_id or message.created_at <= cutoff:
					return None
				message.body = body
				message.edited = True
				message.edited_at = edited_at
				return replace(message)
			return None

	async def _delete_row(self, conversation_id: str, message_id: str, *, actor_id: str) -> bool:
		async with self._lock:
			messages = self._messages.get(conversation_id, [])
			for idx, message in enumerate(messages):
				if message.message_id == message_id and message.sender_id == actor_id:
					del messages[idx]
					return True
			return False


_MESSAGE_COLUMNS = "conversation_id, seq, message_id, client_msg_id, sender_id, body, created_at, edited, edited_at"

_SELECT_RETRY = (
	f"SELECT {_MESSAGE_COLUMNS} FROM chat_messages "
	"WHERE conversation_id = $1 AND sender_id = $2 AND client_msg_id = $3"
)


def _row_to_message(row) -> ChatMessage:
	return ChatMessage(
		message_id=str(row["message_id"]),
		conversation_id=str(row["conversation_id"]),
		seq=int(row["seq"]),
		sender_id=str(row["sender_id"]),
		body=row["body"],
		client_msg_id=str(row["client_msg_id"] or row["message_id"]),
		created_at=row["created_at"],
		edited=bool(row["edited"]),
		edited_at=row["edited_at"],
	)


def _affected(status: str) -> int:
	# asyncpg returns the command tag, e.g. "DELETE 3"
	try:
		return int(status.rsplit(" ", 1)[-1])
	except (ValueError, AttributeError):
		return 0


class PostgresConversationStore(ConversationStore):
	"""Message log stored in ``chat_messages`` with a ``chat_seq`` counter row per conversation."""

	async def append(
		self,
		conversation_id: str,
		*,
		sender_id: str,
		body: str,
		client_msg_id: str | None = None,
	) -> AppendResult:
		message_id = str(ulid.new())
		client_msg_id = client_msg_id or message_id
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				existing = await conn.fetchrow(
					_SELECT_RETRY,
					conversation_id,
					sender_id,
					client_msg_id,
				)
				if existing:
					return AppendResult(message=_row_to_message(existing), created=False)
				seq = await self._next_sequence(conn, conversation_id)
				last_created = await conn.fetchval(
					"SELECT MAX(created_at) FROM chat_messages WHERE conversation_id = $1",
					conversation_id,
				)
				created_at = _monotonic(self._clock(), last_created)
				row = await conn.fetchrow(
					f"""
					INSERT INTO chat_messages (
						conversation_id, seq, message_id, client_msg_id, sender_id, body, created_at
					) VALUES ($1, $2, $3, $4, $5, $6, $7)
					ON CONFLICT (conversation_id, sender_id, client_msg_id) DO NOTHING
					RETURNING {_MESSAGE_COLUMNS}
					""",
					conversation_id,
					seq,
					message_id,
					client_msg_id,
					sender_id,
					body,
					created_at,
				)
				if row is None:
					row = await conn.fetchrow(
						_SELECT_RETRY,
						conversation_id,
						sender_id,
						client_msg_id,
					)
					return AppendResult(message=_row_to_message(row), created=False)
				return AppendResult(message=_row_to_message(row), created=True)

	async def get(self, conversation_id: str, message_id: str) -> Optional[ChatMessage]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"SELECT {_MESSAGE_COLUMNS} FROM chat_messages WHERE conversation_id = $1 AND message_id = $2",
				conversation_id,
				message_id,
			)
			return _row_to_message(row) if row else None

	async def list_ordered(self, conversation_id: str) -> List[ChatMessage]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_MESSAGE_COLUMNS}
				FROM chat_messages
				WHERE conversation_id = $1
				ORDER BY created_at ASC, seq ASC
				""",
				conversation_id,
			)
			return [_row_to_message(row) for row in rows]

	async def latest(self, conversation_id: str) -> Optional[ChatMessage]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				SELECT {_MESSAGE_COLUMNS}
				FROM chat_messages
				WHERE conversation_id = $1
				ORDER BY created_at DESC, seq DESC
				LIMIT 1
				""",
				conversation_id,
			)
			return _row_to_message(row) if row else None

	async def purge(self, conversation_id: str) -> int:
		removed = 0
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				while True:
					status = await conn.execute(
						"""
						DELETE FROM chat_messages
						WHERE message_id IN (
							SELECT message_id FROM chat_messages
							WHERE conversation_id = $1
							LIMIT $2
						)
						""",
						conversation_id,
						self.purge_batch_size,
					)
					batch = _affected(status)
					removed += batch
					if batch < self.purge_batch_size:
						break
		return removed

	async def _apply_edit(
		self,
		conversation_id: str,
		message_id: str,
		*,
		actor_id: str,
		body: str,
		edited_at: datetime,
		cutoff: datetime,
	) -> Optional[ChatMessage]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"""
				UPDATE chat_messages
				SET body = $4, edited = TRUE, edited_at = $5
				WHERE conversation_id = $1 AND message_id = $2 AND sender_id = $3 AND created_at > $6
				RETURNING {_MESSAGE_COLUMNS}
				""",
				conversation_id,
				message_id,
				actor_id,
				body,
				edited_at,
				cutoff,
			)
			return _row_to_message(row) if row else None

	async def _delete_row(self, conversation_id: str, message_id: str, *, actor_id: str) -> bool:
		pool = await get_pool()
		async with pool.acquire() as conn:
			status = await conn.execute(
				"DELETE FROM chat_messages WHERE conversation_id = $1 AND message_id = $2 AND sender_id = $3",
				conversation_id,
				message_id,
				actor_id,
			)
			return _affected(status) > 0

	async def _next_sequence(self, conn, conversation_id: str) -> int:
		row = await conn.fetchrow(
			"""
			INSERT INTO chat_seq (conversation_id, last_seq) VALUES ($1, 1)
			ON CONFLICT (conversation_id) DO UPDATE SET last_seq = chat_seq.last_seq + 1
			RETURNING last_seq
			""",
			conversation_id,
		)
		return int(row["last_seq"])
