from spg_chat.models.conversation import Conversation
from spg_chat.models.message import ChatMessage

__all__ = [
    "ChatMessage",
    "Conversation",
]
