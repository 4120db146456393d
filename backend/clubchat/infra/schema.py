"""Chat tables for the Postgres backend, applied idempotently at startup."""

from __future__ import annotations

import logging

log = logging.getLogger(__name__)

CHAT_SCHEMA = """
CREATE TABLE IF NOT EXISTS chat_seq (
	conversation_id TEXT PRIMARY KEY,
	last_seq BIGINT NOT NULL
);

CREATE TABLE IF NOT EXISTS chat_messages (
	message_id TEXT PRIMARY KEY,
	conversation_id TEXT NOT NULL,
	seq BIGINT NOT NULL,
	client_msg_id TEXT NOT NULL,
	sender_id TEXT NOT NULL,
	body TEXT NOT NULL,
	created_at TIMESTAMPTZ NOT NULL,
	edited BOOLEAN NOT NULL DEFAULT FALSE,
	edited_at TIMESTAMPTZ
);

-- retry keys are per sender; older tables carried a per-conversation key
ALTER TABLE chat_messages DROP CONSTRAINT IF EXISTS chat_messages_conversation_id_client_msg_id_key;
CREATE UNIQUE INDEX IF NOT EXISTS chat_messages_sender_client_msg_idx
	ON chat_messages (conversation_id, sender_id, client_msg_id);

CREATE INDEX IF NOT EXISTS chat_messages_conversation_created_idx
	ON chat_messages (conversation_id, created_at, seq);

CREATE TABLE IF NOT EXISTS chat_inbox (
	owner_id TEXT NOT NULL,
	peer_id TEXT NOT NULL,
	conversation_id TEXT NOT NULL,
	peer_name TEXT NOT NULL DEFAULT 'Unknown User',
	last_message TEXT NOT NULL DEFAULT 'Tap to start conversation',
	updated_at TIMESTAMPTZ,
	unread_count INTEGER NOT NULL DEFAULT 0 CHECK (unread_count >= 0),
	is_favorite BOOLEAN NOT NULL DEFAULT FALSE,
	PRIMARY KEY (owner_id, peer_id)
);
"""


async def ensure_chat_schema(pool) -> None:
	if not pool:
		return
	async with pool.acquire() as conn:
		await conn.execute(CHAT_SCHEMA)
	log.info("chat.schema.ready")
