"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"clubchat_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"clubchat_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"clubchat_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"clubchat_socketio_events_total",
	"Socket.IO events emitted per namespace",
	["namespace", "event"],
)

CHAT_CONVERSATIONS_STARTED = Counter(
	"clubchat_chat_conversations_started_total",
	"Conversations started from the contact picker",
)

CHAT_SEND = Counter(
	"clubchat_chat_send_total",
	"Chat messages sent",
	["result"],
)

CHAT_READ_UPDATES = Counter(
	"clubchat_chat_read_updates_total",
	"Unread counters reset by mark-as-read",
)

CHAT_EDITS = Counter(
	"clubchat_chat_edits_total",
	"Chat message edits",
	["result"],
)

CHAT_DELETES = Counter(
	"clubchat_chat_deletes_total",
	"Chat deletions by scope",
	["scope"],
)

CHAT_PURGED_MESSAGES = Counter(
	"clubchat_chat_purged_messages_total",
	"Messages removed by conversation purge",
)

CHAT_FAVORITE_TOGGLES = Counter(
	"clubchat_chat_favorite_toggles_total",
	"Inbox favorite toggles",
)

CHAT_POLICY_DENIALS = Counter(
	"clubchat_chat_policy_denials_total",
	"Chat operations rejected by policy",
	["reason"],
)

CHAT_FANOUT_FAILURES = Counter(
	"clubchat_chat_fanout_failures_total",
	"Inbox dual-write failures",
	["operation"],
)

CHAT_LIVE_DELIVERIES = Counter(
	"clubchat_chat_live_deliveries_total",
	"Live subscription deliveries",
	["result"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def inc_chat_started() -> None:
	CHAT_CONVERSATIONS_STARTED.inc()


def inc_chat_send(result: str = "created") -> None:
	CHAT_SEND.labels(result=result).inc()


def inc_chat_read() -> None:
	CHAT_READ_UPDATES.inc()


def inc_chat_edit(result: str) -> None:
	CHAT_EDITS.labels(result=result).inc()


def inc_chat_delete(scope: str) -> None:
	CHAT_DELETES.labels(scope=scope).inc()


def inc_chat_purged(count: int) -> None:
	if count > 0:
		CHAT_PURGED_MESSAGES.inc(count)


def inc_chat_favorite() -> None:
	CHAT_FAVORITE_TOGGLES.inc()


def inc_chat_denied(reason: str) -> None:
	CHAT_POLICY_DENIALS.labels(reason=reason).inc()


def inc_chat_fanout_failure(operation: str) -> None:
	CHAT_FANOUT_FAILURES.labels(operation=operation).inc()


def live_delivery(result: str) -> None:
	CHAT_LIVE_DELIVERIES.labels(result=result).inc()
