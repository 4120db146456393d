"""Directory lookups resolving user ids to display names and roles."""

from __future__ import annotations

import asyncio
from typing import Iterable, List, Optional, Protocol

from clubchat.infra.postgres import get_pool

from .models import Identity, Role, UNKNOWN_USER


class DirectoryService(Protocol):
	async def get_user(self, user_id: str) -> Optional[Identity]:
		...

	async def list_users(self) -> List[Identity]:
		...


class InMemoryDirectory:
	"""Directory used in tests and local development."""

	def __init__(self, users: Iterable[Identity] = ()) -> None:
		self._lock = asyncio.Lock()
		self._users: dict[str, Identity] = {user.id: user for user in users}

	async def add(self, user: Identity) -> None:
		async with self._lock:
			self._users[user.id] = user

	async def get_user(self, user_id: str) -> Optional[Identity]:
		async with self._lock:
			return self._users.get(str(user_id))

	async def list_users(self) -> List[Identity]:
		async with self._lock:
			return list(self._users.values())


def _row_to_identity(row) -> Identity:
	return Identity(
		id=str(row["id"]),
		display_name=str(row["name"] or UNKNOWN_USER),
		role=Role.parse(row["role"]),
	)


class PostgresDirectory:
	"""Directory backed by the shared ``users`` table."""

	async def get_user(self, user_id: str) -> Optional[Identity]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"SELECT id, name, role FROM users WHERE id::text = $1 AND deleted_at IS NULL",
				str(user_id),
			)
			return _row_to_identity(row) if row else None

	async def list_users(self) -> List[Identity]:
		pool = await get_pool()
		async with pool.acquire() as conn:
			rows = await conn.fetch("SELECT id, name, role FROM users WHERE deleted_at IS NULL ORDER BY name")
			return [_row_to_identity(row) for row in rows]
