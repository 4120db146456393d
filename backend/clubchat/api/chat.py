"""FastAPI endpoints for direct messages and the chat list."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status

from clubchat.api.request_id import get_request_id
from clubchat.domain.chat.models import Identity
from clubchat.domain.chat.schemas import (
	ContactResponse,
	DeleteConversationResponse,
	EditMessageRequest,
	FavoriteResponse,
	InboxEntryResponse,
	InboxResponse,
	MessageListResponse,
	MessageResponse,
	ReadResponse,
	SendMessageRequest,
	StartConversationRequest,
	StartConversationResponse,
)
from clubchat.domain.chat.service import ChatService
from clubchat.infra.auth import chat_service, get_current_identity

router = APIRouter(prefix="/chat", tags=["chat"])


@router.get("/contacts", response_model=list[ContactResponse])
async def list_contacts_endpoint(
	search: Optional[str] = Query(default=None, max_length=100),
	me: Identity = Depends(get_current_identity),
	service: ChatService = Depends(chat_service),
) -> list[ContactResponse]:
	contacts = await service.list_contacts(me.id, search)
	return [ContactResponse.from_model(contact) for contact in contacts]


@router.get("/inbox", response_model=InboxResponse)
async def list_inbox_endpoint(
	search: Optional[str] = Query(default=None, max_length=100),
	me: Identity = Depends(get_current_identity),
	service: ChatService = Depends(chat_service),
) -> InboxResponse:
	entries = await service.list_inbox(me.id, search)
	return InboxResponse(
		items=[InboxEntryResponse.from_model(entry) for entry in entries],
		unread_total=sum(entry.unread_count for entry in entries),
	)


@router.post("/conversations", response_model=StartConversationResponse, status_code=status.HTTP_201_CREATED)
async def start_conversation_endpoint(
	payload: StartConversationRequest,
	me: Identity = Depends(get_current_identity),
	service: ChatService = Depends(chat_service),
) -> StartConversationResponse:
	conversation_id = await service.start_conversation(me.id, payload.target_user_id)
	return StartConversationResponse(conversation_id=conversation_id)


@router.delete("/conversations/{conversation_id}", response_model=DeleteConversationResponse)
async def delete_conversation_endpoint(
	conversation_id: str,
	me: Identity = Depends(get_current_identity),
	service: ChatService = Depends(chat_service),
) -> DeleteConversationResponse:
	purged = await service.delete_conversation(me.id, conversation_id)
	return DeleteConversationResponse(conversation_id=conversation_id, purged=purged)


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
async def list_messages_endpoint(
	conversation_id: str,
	me: Identity = Depends(get_current_identity),
	service: ChatService = Depends(chat_service),
) -> MessageListResponse:
	messages = await service.list_messages(me.id, conversation_id)
	return MessageListResponse(items=[MessageResponse.from_model(message) for message in messages])


@router.post(
	"/conversations/{conversation_id}/messages",
	response_model=MessageResponse,
	status_code=status.HTTP_201_CREATED,
)
async def send_message_endpoint(
	conversation_id: str,
	payload: SendMessageRequest,
	request: Request,
	response: Response,
	me: Identity = Depends(get_current_identity),
	service: ChatService = Depends(chat_service),
) -> MessageResponse:
	message = await service.send_message(
		me.id,
		conversation_id,
		payload.body,
		client_msg_id=payload.client_msg_id,
	)
	response.headers["X-Request-Id"] = get_request_id(request)
	return MessageResponse.from_model(message)


@router.patch("/conversations/{conversation_id}/messages/{message_id}", response_model=MessageResponse)
async def edit_message_endpoint(
	conversation_id: str,
	message_id: str,
	payload: EditMessageRequest,
	me: Identity = Depends(get_current_identity),
	service: ChatService = Depends(chat_service),
) -> MessageResponse:
	message = await service.edit_message(me.id, conversation_id, message_id, payload.body)
	return MessageResponse.from_model(message)


@router.delete("/conversations/{conversation_id}/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message_endpoint(
	conversation_id: str,
	message_id: str,
	me: Identity = Depends(get_current_identity),
	service: ChatService = Depends(chat_service),
) -> Response:
	await service.delete_message(me.id, conversation_id, message_id)
	return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/conversations/{conversation_id}/read", response_model=ReadResponse)
async def mark_read_endpoint(
	conversation_id: str,
	me: Identity = Depends(get_current_identity),
	service: ChatService = Depends(chat_service),
) -> ReadResponse:
	await service.mark_conversation_read(me.id, conversation_id)
	return ReadResponse(conversation_id=conversation_id, unread_count=0)


@router.post("/inbox/{peer_id}/favorite", response_model=FavoriteResponse)
async def toggle_favorite_endpoint(
	peer_id: str,
	me: Identity = Depends(get_current_identity),
	service: ChatService = Depends(chat_service),
) -> FavoriteResponse:
	is_favorite = await service.toggle_favorite(me.id, peer_id)
	return FavoriteResponse(peer_id=peer_id, is_favorite=is_favorite)
