# app/chat/repository/chat_repository.py
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional

from app.chat.entity.chat import Conversation, StoredMessage
from app.chat.service.service import IChatRepository
from app.core.logger import get_logger

logger = get_logger("ChatRepository")


class InMemoryChatRepository(IChatRepository):
    """Process-local store for conversations and their messages."""

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[StoredMessage]] = defaultdict(list)
        self.logger = logger

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        self._conversations[conversation.conversation_id] = conversation
        self.logger.info(f"Conversation saved: {conversation.conversation_id}")
        return conversation

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return self._conversations.get(conversation_id)

    async def save_message(self, message: StoredMessage) -> StoredMessage:
        conversation = self._conversations.get(message.conversation_id)
        if conversation is None:
            raise KeyError(f"Conversation {message.conversation_id} not found")

        self._messages[message.conversation_id].append(message)
        self._conversations[message.conversation_id] = conversation.model_copy(
            update={
                "message_count": conversation.message_count + 1,
                "last_activity": datetime.now(timezone.utc).isoformat(),
            }
        )
        self.logger.debug(f"Message saved: {message.id} in {message.conversation_id}")
        return message

    async def list_messages(self, conversation_id: str) -> List[StoredMessage]:
        return list(self._messages.get(conversation_id, []))
