"""Process-wide asyncpg pool used by the Postgres chat backends."""

from __future__ import annotations

import asyncio
from typing import Optional

import asyncpg

from clubchat.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None
_pool_lock = asyncio.Lock()


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	async with _pool_lock:
		if _pool is None:
			_pool = await asyncpg.create_pool(
				dsn=settings.postgres_url,
				min_size=settings.postgres_min_pool_size,
				max_size=settings.postgres_max_pool_size,
				command_timeout=settings.chat_operation_timeout_seconds,
			)
	return _pool


def set_pool(pool: Optional[asyncpg.pool.Pool]) -> None:
	global _pool
	_pool = pool


async def get_pool() -> asyncpg.pool.Pool:
	return _pool if _pool is not None else await init_pool()


async def ping(timeout: float = 0.3) -> None:
	"""Round-trip a trivial query; raises on any failure."""
	pool = await get_pool()
	async with pool.acquire() as conn:
		await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)


async def close_pool() -> None:
	global _pool
	pool, _pool = _pool, None
	if pool is not None:
		await pool.close()
