"""Shared Redis client for the pub/sub live hub and readiness probes.

Modules import ``redis_client`` once; tests and the lifespan hook swap the
connection behind it with ``set_redis_client``.
"""

from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as redis

from clubchat.settings import settings


class RedisProxy:
	"""Forwards every attribute to whichever client is currently installed."""

	def __init__(self, client: Optional[redis.Redis] = None) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		if self._client is None:
			self._client = redis.from_url(settings.redis_url, decode_responses=True)
		return self._client

	def swap(self, client: Optional[redis.Redis]) -> Optional[redis.Redis]:
		previous, self._client = self._client, client
		return previous

	def __getattr__(self, name: str) -> Any:
		return getattr(self.client, name)


redis_client = RedisProxy()


def set_redis_client(client: Optional[redis.Redis]) -> None:
	redis_client.swap(client)


async def close_redis() -> None:
	client = redis_client.swap(None)
	if client is not None:
		await client.aclose()
