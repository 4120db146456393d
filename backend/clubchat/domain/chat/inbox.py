"""Per-owner chat list: one summary row for every peer the owner talks to."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import List, Optional

from clubchat.infra.postgres import get_pool

from .models import InboxEntry, matches_search, sort_inbox, validate_inbox_fields


class InboxIndex:
	"""Storage contract for the chat list.

	Each (owner, peer) row is written independently; nothing here spans the two
	rows of a conversation. Every write is a merge so replays are harmless.
	"""

	async def get(self, owner_id: str, peer_id: str) -> Optional[InboxEntry]:
		raise NotImplementedError

	async def upsert(self, owner_id: str, peer_id: str, **fields) -> InboxEntry:
		raise NotImplementedError

	async def update(self, owner_id: str, peer_id: str, **fields) -> Optional[InboxEntry]:
		raise NotImplementedError

	async def increment_unread(self, owner_id: str, peer_id: str, by: int = 1, **fields) -> InboxEntry:
		raise NotImplementedError

	async def set_unread(self, owner_id: str, peer_id: str, count: int) -> bool:
		if count < 0:
			raise ValueError("unread_count must be non-negative")
		return await self.update(owner_id, peer_id, unread_count=count) is not None

	async def toggle_favorite(self, owner_id: str, peer_id: str) -> Optional[bool]:
		raise NotImplementedError

	async def remove(self, owner_id: str, peer_id: str) -> bool:
		raise NotImplementedError

	async def list_for_owner(self, owner_id: str, search: str | None = None) -> List[InboxEntry]:
		raise NotImplementedError


class InMemoryInboxIndex(InboxIndex):
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._entries: dict[tuple[str, str], InboxEntry] = {}

	def _merge_locked(self, owner_id: str, peer_id: str, fields: dict) -> InboxEntry:
		key = (owner_id, peer_id)
		entry = self._entries.get(key)
		if entry is None:
			entry = InboxEntry(owner_id=owner_id, peer_id=peer_id, conversation_id=str(fields.get("conversation_id") or ""))
			self._entries[key] = entry
		for name, value in fields.items():
			setattr(entry, name, value)
		return entry

	async def get(self, owner_id: str, peer_id: str) -> Optional[InboxEntry]:
		async with self._lock:
			entry = self._entries.get((owner_id, peer_id))
			return replace(entry) if entry else None

	async def upsert(self, owner_id: str, peer_id: str, **fields) -> InboxEntry:
		validate_inbox_fields(fields)
		async with self._lock:
			return replace(self._merge_locked(owner_id, peer_id, fields))

	async def update(self, owner_id: str, peer_id: str, **fields) -> Optional[InboxEntry]:
		validate_inbox_fields(fields)
		async with self._lock:
			if (owner_id, peer_id) not in self._entries:
				return None
			return replace(self._merge_locked(owner_id, peer_id, fields))

	async def increment_unread(self, owner_id: str, peer_id: str, by: int = 1, **fields) -> InboxEntry:
		validate_inbox_fields(fields)
		fields.pop("unread_count", None)
		async with self._lock:
			entry = self._merge_locked(owner_id, peer_id, fields)
			entry.unread_count = max(0, entry.unread_count + by)
			return replace(entry)

	async def toggle_favorite(self, owner_id: str, peer_id: str) -> Optional[bool]:
		async with self._lock:
			entry = self._entries.get((owner_id, peer_id))
			if entry is None:
				return None
			entry.is_favorite = not entry.is_favorite
			return entry.is_favorite

	async def remove(self, owner_id: str, peer_id: str) -> bool:
		async with self._lock:
			return self._entries.pop((owner_id, peer_id), None) is not None

	async def list_for_owner(self, owner_id: str, search: str | None = None) -> List[InboxEntry]:
		async with self._lock:
			entries = [
				replace(entry)
				for (owner, _), entry in self._entries.items()
				if owner == owner_id and matches_search(entry.peer_name, search)
			]
		return sort_inbox(entries)


_INBOX_COLUMNS = "owner_id, peer_id, conversation_id, peer_name, last_message, updated_at, unread_count, is_favorite"


def _row_to_entry(row) -> InboxEntry:
	return InboxEntry(
		owner_id=str(row["owner_id"]),
		peer_id=str(row["peer_id"]),
		conversation_id=str(row["conversation_id"]),
		peer_name=row["peer_name"],
		last_message=row["last_message"],
		updated_at=row["updated_at"],
		unread_count=int(row["unread_count"]),
		is_favorite=bool(row["is_favorite"]),
	)


def _merge_statement(fields: dict, *, increment_by: int | None = None) -> tuple[str, list]:
	"""Build an INSERT ... ON CONFLICT that only touches the given columns.

	Column names come from the validated field whitelist, never from callers.
	"""
	columns = sorted(fields)
	params: list = [None, None]
	insert_cols = ["owner_id", "peer_id"]
	insert_vals = ["$1", "$2"]
	updates = []
	for name in columns:
		params.append(fields[name])
		placeholder = f"${len(params)}"
		insert_cols.append(name)
		insert_vals.append(placeholder)
		updates.append(f"{name} = EXCLUDED.{name}")
	if increment_by is not None:
		params.append(increment_by)
		placeholder = f"${len(params)}"
		insert_cols.append("unread_count")
		insert_vals.append(f"GREATEST({placeholder}, 0)")
		updates.append(f"unread_count = GREATEST(chat_inbox.unread_count + {placeholder}, 0)")
	if "conversation_id" not in fields:
		insert_cols.append("conversation_id")
		insert_vals.append("''")
	conflict = f"DO UPDATE SET {', '.join(updates)}" if updates else "DO NOTHING"
	sql = (
		f"INSERT INTO chat_inbox ({', '.join(insert_cols)}) VALUES ({', '.join(insert_vals)}) "
		f"ON CONFLICT (owner_id, peer_id) {conflict} RETURNING {_INBOX_COLUMNS}"
	)
	return sql, params


class PostgresInboxIndex(InboxIndex):
	"""Chat list stored in ``chat_inbox`` keyed by (owner_id, peer_id)."""

	async def get(self, owner_id: str, peer_id: str) -> Optional[InboxEntry]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"SELECT {_INBOX_COLUMNS} FROM chat_inbox WHERE owner_id = $1 AND peer_id = $2",
				owner_id,
				peer_id,
			)
			return _row_to_entry(row) if row else None

	async def upsert(self, owner_id: str, peer_id: str, **fields) -> InboxEntry:
		validate_inbox_fields(fields)
		sql, params = _merge_statement(fields)
		params[0], params[1] = owner_id, peer_id
		pool = await get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(sql, *params)
			if row is None:
				row = await conn.fetchrow(
					f"SELECT {_INBOX_COLUMNS} FROM chat_inbox WHERE owner_id = $1 AND peer_id = $2",
					owner_id,
					peer_id,
				)
			return _row_to_entry(row)

	async def update(self, owner_id: str, peer_id: str, **fields) -> Optional[InboxEntry]:
		validate_inbox_fields(fields)
		if not fields:
			return await self.get(owner_id, peer_id)
		columns = sorted(fields)
		assignments = ", ".join(f"{name} = ${idx + 3}" for idx, name in enumerate(columns))
		pool = await get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				f"UPDATE chat_inbox SET {assignments} WHERE owner_id = $1 AND peer_id = $2 RETURNING {_INBOX_COLUMNS}",
				owner_id,
				peer_id,
				*[fields[name] for name in columns],
			)
			return _row_to_entry(row) if row else None

	async def increment_unread(self, owner_id: str, peer_id: str, by: int = 1, **fields) -> InboxEntry:
		validate_inbox_fields(fields)
		fields.pop("unread_count", None)
		sql, params = _merge_statement(fields, increment_by=by)
		params[0], params[1] = owner_id, peer_id
		pool = await get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(sql, *params)
			return _row_to_entry(row)

	async def toggle_favorite(self, owner_id: str, peer_id: str) -> Optional[bool]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			value = await conn.fetchval(
				"""
				UPDATE chat_inbox SET is_favorite = NOT is_favorite
				WHERE owner_id = $1 AND peer_id = $2
				RETURNING is_favorite
				""",
				owner_id,
				peer_id,
			)
			return bool(value) if value is not None else None

	async def remove(self, owner_id: str, peer_id: str) -> bool:
		pool = await get_pool()
		async with pool.acquire() as conn:
			status = await conn.execute(
				"DELETE FROM chat_inbox WHERE owner_id = $1 AND peer_id = $2",
				owner_id,
				peer_id,
			)
			return status.endswith(" 1")

	async def list_for_owner(self, owner_id: str, search: str | None = None) -> List[InboxEntry]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				f"""
				SELECT {_INBOX_COLUMNS}
				FROM chat_inbox
				WHERE owner_id = $1
				ORDER BY is_favorite DESC, updated_at DESC NULLS LAST
				""",
				owner_id,
			)
		entries = [_row_to_entry(row) for row in rows if matches_search(row["peer_name"], search)]
		return sort_inbox(entries)
