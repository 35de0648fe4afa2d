from abc import ABC, abstractmethod
from typing import List, Optional

from app.chat.entity.chat import Conversation, StoredMessage
from app.llm.entity.message import Message


class IChatRepository(ABC):
    """Append-only message store. Saved messages are never rewritten."""

    @abstractmethod
    async def save_conversation(self, conversation: Conversation) -> Conversation:
        pass

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def save_message(self, message: StoredMessage) -> StoredMessage:
        pass

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> List[StoredMessage]:
        pass

    async def load_history(self, conversation_id: str) -> List[Message]:
        return [stored.to_message() for stored in await self.list_messages(conversation_id)]
