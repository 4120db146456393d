"""Chat domain exports."""

from .models import ChatMessage, ConversationKey, Identity, InboxEntry, Role
from .service import ChatService, build_service, get_service, set_service

__all__ = [
	"ChatMessage",
	"ChatService",
	"ConversationKey",
	"Identity",
	"InboxEntry",
	"Role",
	"build_service",
	"get_service",
	"set_service",
]
