"""Live queries: subscribers receive the complete result set after every change.

Deliveries are full replacements of whatever the subscriber held before, never
diffs. Writers call ``notify(topic)``; each subscription re-runs its loader and
hands the fresh result to its callback.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import redis.exceptions

from clubchat.obs import metrics as obs_metrics

log = logging.getLogger(__name__)

Loader = Callable[[], Awaitable[Any]]
Callback = Callable[[Any], Any]

CHANNEL_PREFIX = "chat:live:"


def inbox_topic(owner_id: str) -> str:
	return f"inbox:{owner_id}"


def messages_topic(conversation_id: str) -> str:
	return f"messages:{conversation_id}"


class Subscription:
	def __init__(self, hub: "LiveQueryHub", topic: str, loader: Loader, callback: Callback) -> None:
		self.topic = topic
		self._hub = hub
		self._loader = loader
		self._callback = callback
		self._closed = False
		# serialises deliveries so a slow load cannot overwrite a newer one
		self._lock = asyncio.Lock()

	@property
	def closed(self) -> bool:
		return self._closed

	async def refresh(self) -> None:
		async with self._lock:
			if self._closed:
				return
			result = await self._loader()
			if self._closed:
				return
			outcome = self._callback(result)
			if inspect.isawaitable(outcome):
				await outcome

	def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		self._hub._discard(self)


class LiveQueryHub:
	"""In-process subscription registry."""

	def __init__(self) -> None:
		self._subscriptions: Dict[str, Set[Subscription]] = {}

	async def subscribe(self, topic: str, loader: Loader, callback: Callback) -> Subscription:
		subscription = Subscription(self, topic, loader, callback)
		self._subscriptions.setdefault(topic, set()).add(subscription)
		try:
			await subscription.refresh()
		except Exception:
			subscription.close()
			raise
		return subscription

	def subscriber_count(self, topic: str) -> int:
		return len(self._subscriptions.get(topic, ()))

	async def notify(self, *topics: str) -> None:
		await self._dispatch(*topics)

	async def _dispatch(self, *topics: str) -> None:
		for topic in dict.fromkeys(topics):
			for subscription in list(self._subscriptions.get(topic, ())):
				try:
					await subscription.refresh()
					obs_metrics.live_delivery("ok")
				except Exception:
					obs_metrics.live_delivery("error")
					log.exception("chat.live.delivery_failed", extra={"topic": topic})

	def _discard(self, subscription: Subscription) -> None:
		subscribers = self._subscriptions.get(subscription.topic)
		if not subscribers:
			return
		subscribers.discard(subscription)
		if not subscribers:
			self._subscriptions.pop(subscription.topic, None)

	async def start(self) -> None:
		return None

	async def stop(self) -> None:
		return None


class RedisLiveQueryHub(LiveQueryHub):
	"""Hub that relays change notifications between processes over Redis pub/sub.

	A dropped pub/sub connection is retried with exponential backoff. Until it is
	back, ``notify`` delivers to local subscribers directly, and every local
	subscription is refreshed once the listener resubscribes.
	"""

	def __init__(self, redis, *, reconnect_delay: float = 0.5, max_reconnect_delay: float = 10.0) -> None:
		super().__init__()
		self._redis = redis
		self._pubsub = None
		self._listener: Optional[asyncio.Task] = None
		self._connected = False
		self._reconnect_delay = reconnect_delay
		self._max_reconnect_delay = max_reconnect_delay

	@property
	def listening(self) -> bool:
		return self._connected and self._listener is not None and not self._listener.done()

	async def start(self) -> None:
		if self._listener is not None:
			return
		await self._connect()
		self._listener = asyncio.create_task(self._listen(), name="chat-live-listener")

	async def stop(self) -> None:
		if self._listener is not None:
			self._listener.cancel()
			await asyncio.gather(self._listener, return_exceptions=True)
			self._listener = None
		self._connected = False
		await self._drop_pubsub()

	async def notify(self, *topics: str) -> None:
		if not self.listening:
			await self._dispatch(*topics)
			return
		for topic in dict.fromkeys(topics):
			try:
				await self._redis.publish(f"{CHANNEL_PREFIX}{topic}", topic)
			except redis.exceptions.RedisError:
				# other processes miss this change; local subscribers still get it
				log.warning("chat.live.publish_failed", extra={"topic": topic})
				await self._dispatch(topic)

	async def _connect(self) -> None:
		pubsub = self._redis.pubsub()
		await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
		self._pubsub = pubsub
		self._connected = True

	async def _drop_pubsub(self) -> None:
		pubsub, self._pubsub = self._pubsub, None
		if pubsub is None:
			return
		try:
			await pubsub.aclose()
		except redis.exceptions.RedisError:
			log.debug("chat.live.pubsub_close_failed", exc_info=True)

	async def _listen(self) -> None:
		delay = self._reconnect_delay
		while True:
			try:
				if self._pubsub is None:
					await self._connect()
					log.info("chat.live.listener_resumed")
					# changes published while disconnected were never seen here
					await self._dispatch(*list(self._subscriptions))
				delay = self._reconnect_delay
				await self._consume()
			except redis.exceptions.RedisError:
				log.warning("chat.live.listener_lost", extra={"retry_in": delay}, exc_info=True)
			self._connected = False
			await self._drop_pubsub()
			await asyncio.sleep(delay)
			delay = min(delay * 2, self._max_reconnect_delay)

	async def _consume(self) -> None:
		assert self._pubsub is not None
		async for message in self._pubsub.listen():
			if message.get("type") != "pmessage":
				continue
			data = message.get("data")
			topic = data.decode() if isinstance(data, bytes) else str(data)
			await self._dispatch(topic)
