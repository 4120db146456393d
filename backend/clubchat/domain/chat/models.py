"""Domain models for direct messaging and the per-user chat list."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from .exceptions import NotParticipant, SelfConversation

CONVERSATION_SEPARATOR = "_"
START_PREVIEW = "Tap to start conversation"
EMPTY_PREVIEW = "No messages yet"
UNKNOWN_USER = "Unknown User"


class Role(str, enum.Enum):
	MEMBER = "Member"
	STAFF = "Staff"
	ADMIN = "Admin"

	@classmethod
	def parse(cls, value: object) -> "Role":
		"""Resolve a stored role string; anything unrecognised is a Member."""
		text = str(value or "").strip().lower()
		for role in cls:
			if role.value.lower() == text:
				return role
		return cls.MEMBER


@dataclass(slots=True, frozen=True)
class Identity:
	id: str
	display_name: str = UNKNOWN_USER
	role: Role = Role.MEMBER

	@property
	def name(self) -> str:
		return self.display_name or UNKNOWN_USER

	def to_dict(self) -> dict:
		return {"id": self.id, "display_name": self.name, "role": self.role.value}


@dataclass(slots=True, frozen=True)
class ConversationKey:
	"""Canonical representation of a 1:1 conversation."""

	user_a: str
	user_b: str

	@classmethod
	def from_participants(cls, user_one: str, user_two: str) -> "ConversationKey":
		first, second = str(user_one), str(user_two)
		if not first or not second:
			raise ValueError("participant ids must be non-empty")
		if first == second:
			raise SelfConversation()
		ordered = tuple(sorted((first, second)))
		return cls(user_a=ordered[0], user_b=ordered[1])

	@classmethod
	def resolve(cls, conversation_id: str, user_id: str) -> "ConversationKey":
		"""Recover the participant pair of ``conversation_id`` as seen by ``user_id``.

		Knowing one participant disambiguates ids that themselves contain the
		separator.
		"""
		user_id = str(user_id)
		candidates = []
		prefix = f"{user_id}{CONVERSATION_SEPARATOR}"
		suffix = f"{CONVERSATION_SEPARATOR}{user_id}"
		if conversation_id.startswith(prefix):
			candidates.append(conversation_id[len(prefix):])
		if conversation_id.endswith(suffix):
			candidates.append(conversation_id[: -len(suffix)])
		for peer_id in candidates:
			if not peer_id or peer_id == user_id:
				continue
			key = cls.from_participants(user_id, peer_id)
			if key.conversation_id == conversation_id:
				return key
		raise NotParticipant()

	@property
	def conversation_id(self) -> str:
		return f"{self.user_a}{CONVERSATION_SEPARATOR}{self.user_b}"

	def participants(self) -> Tuple[str, str]:
		return (self.user_a, self.user_b)

	def peer_of(self, user_id: str) -> str:
		if user_id == self.user_a:
			return self.user_b
		if user_id == self.user_b:
			return self.user_a
		raise NotParticipant()


@dataclass(slots=True)
class ChatMessage:
	message_id: str
	conversation_id: str
	seq: int
	sender_id: str
	body: str
	client_msg_id: str
	created_at: datetime
	edited: bool = False
	edited_at: Optional[datetime] = None

	def to_dict(self) -> dict:
		return {
			"message_id": self.message_id,
			"conversation_id": self.conversation_id,
			"seq": self.seq,
			"sender_id": self.sender_id,
			"body": self.body,
			"client_msg_id": self.client_msg_id,
			"created_at": self.created_at.isoformat(),
			"edited": self.edited,
			"edited_at": self.edited_at.isoformat() if self.edited_at else None,
		}


@dataclass(slots=True)
class InboxEntry:
	"""One user's summary of one conversation, rendered as a chat list row."""

	owner_id: str
	peer_id: str
	conversation_id: str
	peer_name: str = UNKNOWN_USER
	last_message: str = START_PREVIEW
	updated_at: Optional[datetime] = None
	unread_count: int = 0
	is_favorite: bool = False

	@property
	def has_unread(self) -> bool:
		return self.unread_count > 0

	def to_dict(self) -> dict:
		return {
			"owner_id": self.owner_id,
			"peer_id": self.peer_id,
			"conversation_id": self.conversation_id,
			"peer_name": self.peer_name,
			"last_message": self.last_message,
			"updated_at": self.updated_at.isoformat() if self.updated_at else None,
			"unread_count": self.unread_count,
			"is_favorite": self.is_favorite,
		}


@dataclass(slots=True)
class AppendResult:
	message: ChatMessage
	created: bool = True


INBOX_FIELDS = frozenset(
	{"peer_name", "last_message", "updated_at", "conversation_id", "unread_count", "is_favorite"}
)


def validate_inbox_fields(fields: dict) -> dict:
	unknown = set(fields) - INBOX_FIELDS
	if unknown:
		raise ValueError(f"unknown inbox fields: {sorted(unknown)}")
	unread = fields.get("unread_count")
	if unread is not None and int(unread) < 0:
		raise ValueError("unread_count must be non-negative")
	return fields


def _sort_key(entry: InboxEntry) -> tuple:
	timestamp = entry.updated_at.timestamp() if entry.updated_at else 0.0
	return (0 if entry.is_favorite else 1, -timestamp)


def sort_inbox(entries: Iterable[InboxEntry]) -> List[InboxEntry]:
	"""Favorites first, then most recently updated."""
	return sorted(entries, key=_sort_key)


def matches_search(name: Optional[str], term: Optional[str]) -> bool:
	if not term or not term.strip():
		return True
	return term.strip().lower() in (name or "").lower()
