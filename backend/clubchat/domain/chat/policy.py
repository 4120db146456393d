"""Role policy and authorship guards for direct messaging."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from .exceptions import AccessDenied, EditWindowExpired, NotAuthor, SelfConversation
from .models import ChatMessage, Identity, Role, matches_search

# actor role -> roles it may open a new conversation with
_INITIATE_RULES: dict[Role, frozenset[Role]] = {
	Role.ADMIN: frozenset({Role.STAFF}),
	Role.STAFF: frozenset({Role.MEMBER, Role.STAFF, Role.ADMIN}),
	Role.MEMBER: frozenset({Role.STAFF, Role.ADMIN}),
}


def can_initiate(actor_role: Role, target_role: Role) -> bool:
	return target_role in _INITIATE_RULES.get(actor_role, frozenset())


def ensure_can_initiate(actor: Identity, target: Identity) -> None:
	if actor.id == target.id:
		raise SelfConversation()
	if not can_initiate(actor.role, target.role):
		raise AccessDenied(f"{actor.role.value.lower()}_cannot_contact_{target.role.value.lower()}")


def contactable(actor: Identity, users: Iterable[Identity], search: Optional[str] = None) -> List[Identity]:
	"""Users ``actor`` may start a conversation with, sorted by name."""
	allowed = [
		user
		for user in users
		if user.id != actor.id and can_initiate(actor.role, user.role) and matches_search(user.name, search)
	]
	return sorted(allowed, key=lambda user: (user.name.lower(), user.id))


def ensure_author(message: ChatMessage, actor_id: str) -> None:
	if message.sender_id != actor_id:
		raise NotAuthor()


def edit_cutoff(now: datetime, window_seconds: int) -> datetime:
	"""Messages created at or before this instant can no longer be edited."""
	return now - timedelta(seconds=window_seconds)


def ensure_edit_window(message: ChatMessage, now: datetime, window_seconds: int) -> None:
	if message.created_at <= edit_cutoff(now, window_seconds):
		raise EditWindowExpired()


def can_edit(message: ChatMessage, actor_id: str, now: datetime, window_seconds: int) -> bool:
	return message.sender_id == actor_id and message.created_at > edit_cutoff(now, window_seconds)
