"""Pydantic schemas for the chat API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import ChatMessage, Identity, InboxEntry


class StartConversationRequest(BaseModel):
	target_user_id: str = Field(..., min_length=1, description="User to open a conversation with")


class StartConversationResponse(BaseModel):
	conversation_id: str


class SendMessageRequest(BaseModel):
	body: str = Field(..., min_length=1, max_length=4000)
	client_msg_id: Optional[str] = Field(default=None, max_length=64, description="Client-generated ULID")


class EditMessageRequest(BaseModel):
	body: str = Field(..., min_length=1, max_length=4000)


class MessageResponse(BaseModel):
	message_id: str
	conversation_id: str
	seq: int
	sender_id: str
	body: str
	client_msg_id: str
	created_at: datetime
	edited: bool = False
	edited_at: Optional[datetime] = None

	@classmethod
	def from_model(cls, message: ChatMessage) -> "MessageResponse":
		return cls(
			message_id=message.message_id,
			conversation_id=message.conversation_id,
			seq=message.seq,
			sender_id=message.sender_id,
			body=message.body,
			client_msg_id=message.client_msg_id,
			created_at=message.created_at,
			edited=message.edited,
			edited_at=message.edited_at,
		)


class MessageListResponse(BaseModel):
	items: List[MessageResponse]


class InboxEntryResponse(BaseModel):
	peer_id: str
	peer_name: str
	conversation_id: str
	last_message: str
	updated_at: Optional[datetime] = None
	unread_count: int = Field(..., ge=0)
	is_favorite: bool = False

	@classmethod
	def from_model(cls, entry: InboxEntry) -> "InboxEntryResponse":
		return cls(
			peer_id=entry.peer_id,
			peer_name=entry.peer_name,
			conversation_id=entry.conversation_id,
			last_message=entry.last_message,
			updated_at=entry.updated_at,
			unread_count=entry.unread_count,
			is_favorite=entry.is_favorite,
		)


class InboxResponse(BaseModel):
	items: List[InboxEntryResponse]
	unread_total: int = 0


class ContactResponse(BaseModel):
	id: str
	display_name: str
	role: str

	@classmethod
	def from_model(cls, identity: Identity) -> "ContactResponse":
		return cls(id=identity.id, display_name=identity.name, role=identity.role.value)


class FavoriteResponse(BaseModel):
	peer_id: str
	is_favorite: bool


class ReadResponse(BaseModel):
	conversation_id: str
	unread_count: int = 0


class DeleteConversationResponse(BaseModel):
	conversation_id: str
	purged: int
