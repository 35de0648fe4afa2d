# app/chat/service/chat_service.py
import time
from typing import Any, AsyncGenerator, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel

from app.chat.entity.chat import Conversation, MessageRole, StoredMessage
from app.chat.service.service import IChatRepository
from app.core.logger import get_logger
from app.files.entity.attachment import Attachment
from app.llm.entity.message import Message
from app.llm.service.orchestrator import Orchestrator

logger = get_logger("ChatService")

TITLE_MAX_LENGTH = 50


class ConversationNotFoundError(LookupError):
    def __init__(self, conversation_id: str):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class ChatResult(BaseModel):
    message: StoredMessage
    conversation: Conversation


class ChatEvent(BaseModel):
    type: Literal["message", "chunk", "complete"]
    data: Dict[str, Any]


def conversation_title(message: str) -> str:
    title = " ".join(message.split())
    if not title:
        return "New Chat"
    if len(title) <= TITLE_MAX_LENGTH:
        return title
    return title[: TITLE_MAX_LENGTH - 3] + "..."


class ChatService:
    """
    Runs one chat turn against the orchestrator and records it in the store.
    History is replayed from the store so earlier attachments stay in context.
    """

    def __init__(self, orchestrator: Orchestrator, repository: IChatRepository):
        self.orchestrator = orchestrator
        self.repository = repository

    async def _open_conversation(
        self,
        user_id: str,
        message: str,
        conversation_id: Optional[str],
        preferred: Optional[str],
    ) -> Tuple[Conversation, List[Message]]:
        if conversation_id:
            conversation = await self.repository.get_conversation(conversation_id)
            if conversation is None:
                raise ConversationNotFoundError(conversation_id)
            return conversation, await self.repository.load_history(conversation_id)

        conversation = await self.repository.save_conversation(
            Conversation(user_id=user_id, title=conversation_title(message), model=preferred)
        )
        logger.info(f"Created conversation {conversation.conversation_id} for user {user_id}")
        return conversation, []

    async def _save_user_turn(
        self, conversation: Conversation, message: str, files: Optional[List[Attachment]]
    ) -> StoredMessage:
        return await self.repository.save_message(
            StoredMessage(
                conversation_id=conversation.conversation_id,
                role=MessageRole.USER,
                content=message,
                files=files or None,
            )
        )

    async def process_chat(
        self,
        user_id: str,
        message: str,
        conversation_id: Optional[str] = None,
        preferred: Optional[str] = None,
        files: Optional[List[Attachment]] = None,
    ) -> ChatResult:
        conversation, history = await self._open_conversation(user_id, message, conversation_id, preferred)
        user_message = await self._save_user_turn(conversation, message, files)

        response = await self.orchestrator.chat(history + [user_message.to_message()], user_id, preferred)

        assistant_message = await self.repository.save_message(
            StoredMessage(
                conversation_id=conversation.conversation_id,
                role=MessageRole.ASSISTANT,
                content=response.content,
                model_used=response.model_used,
                token_count=response.token_count,
                processing_time_ms=response.processing_time_ms,
            )
        )
        logger.info(
            f"Chat processed | conversation={conversation.conversation_id} model={response.model_used} "
            f"time={response.processing_time_ms}ms files={len(files or [])}"
        )
        conversation = await self.repository.get_conversation(conversation.conversation_id) or conversation
        return ChatResult(message=assistant_message, conversation=conversation)

    async def process_chat_stream(
        self,
        user_id: str,
        message: str,
        conversation_id: Optional[str] = None,
        preferred: Optional[str] = None,
        files: Optional[List[Attachment]] = None,
    ) -> AsyncGenerator[ChatEvent, None]:
        conversation, history = await self._open_conversation(user_id, message, conversation_id, preferred)
        user_message = await self._save_user_turn(conversation, message, files)
        yield ChatEvent(
            type="message",
            data={"user_message": user_message, "conversation": conversation, "files_uploaded": len(files or [])},
        )

        started = time.perf_counter()
        content: List[str] = []
        model_used = ""
        async with self.orchestrator.chat_stream(history + [user_message.to_message()], user_id, preferred) as channel:
            async for chunk in channel:
                model_used = chunk.model_used or model_used
                if chunk.is_complete:
                    break
                content.append(chunk.content_delta)
                yield ChatEvent(type="chunk", data={"content": chunk.content_delta, "model": chunk.model_used})

        processing_time_ms = int((time.perf_counter() - started) * 1000)
        assistant_message = await self.repository.save_message(
            StoredMessage(
                conversation_id=conversation.conversation_id,
                role=MessageRole.ASSISTANT,
                content="".join(content),
                model_used=model_used,
                processing_time_ms=processing_time_ms,
            )
        )
        logger.info(
            f"Streaming chat completed | conversation={conversation.conversation_id} "
            f"model={model_used} time={processing_time_ms}ms"
        )
        yield ChatEvent(
            type="complete",
            data={"message": assistant_message, "conversation": conversation, "processing_time_ms": processing_time_ms},
        )
