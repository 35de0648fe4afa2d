import json
from typing import AsyncGenerator, AsyncIterator

from fastapi import HTTPException

from app.chat.api.dto import ChatRequest, ChatResponse, ConversationResponse
from app.chat.service.chat_service import ChatEvent, ChatService, ConversationNotFoundError
from app.chat.service.service import IChatRepository
from app.core.logger import get_logger
from app.files.service.errors import AttachmentValidationError
from app.llm.service.errors import (
    AllProvidersExhaustedError,
    NoProvidersConfiguredError,
    OrchestratorError,
    ProviderError,
    RateLimitedError,
)

logger = get_logger("ChatHandler")


def error_status(error: Exception) -> int:
    """HTTP status for an error raised while serving a chat turn."""
    if isinstance(error, HTTPException):
        return error.status_code
    if isinstance(error, RateLimitedError):
        return 429
    if isinstance(error, ConversationNotFoundError):
        return 404
    if isinstance(error, NoProvidersConfiguredError):
        return 503
    if isinstance(error, (AllProvidersExhaustedError, OrchestratorError, ProviderError, AttachmentValidationError)):
        return 502
    return 500


def _sse(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _event_to_sse(event: ChatEvent) -> str:
    if event.type == "message":
        user_message = event.data["user_message"]
        conversation = event.data["conversation"]
        return _sse(
            "start",
            {
                "conversation_id": conversation.conversation_id,
                "message_id": user_message.id,
                "title": conversation.title,
                "files_uploaded": event.data["files_uploaded"],
            },
        )
    if event.type == "chunk":
        return _sse("content_block_delta", {"type": "text_delta", "text": event.data["content"], "model": event.data["model"]})

    message = event.data["message"]
    return _sse(
        "complete",
        {
            "conversation_id": message.conversation_id,
            "message_id": message.id,
            "model_used": message.model_used,
            "processing_time_ms": event.data["processing_time_ms"],
        },
    )


async def handle_chat(body: ChatRequest, chat_service: ChatService, caller_id: str) -> ChatResponse:
    """Handles a non-streaming chat request. Domain errors reach the app's exception handlers."""
    logger.debug(f"handle_chat start | caller={caller_id} preferred={body.preferred_provider}")
    result = await chat_service.process_chat(
        user_id=caller_id,
        message=body.message,
        conversation_id=body.conversation_id,
        preferred=body.preferred_provider,
        files=body.attachments(),
    )
    return ChatResponse(
        conversation_id=result.conversation.conversation_id,
        message_id=result.message.id,
        content=result.message.content,
        model_used=result.message.model_used,
        token_count=result.message.token_count,
        processing_time_ms=result.message.processing_time_ms,
        title=result.conversation.title,
    )


async def open_chat_stream(body: ChatRequest, chat_service: ChatService, caller_id: str) -> AsyncGenerator[str, None]:
    """
    Start a streaming turn and return its SSE event generator.

    The first event is produced before returning so that failures while
    opening the conversation surface as a regular HTTP error.
    """
    events = chat_service.process_chat_stream(
        user_id=caller_id,
        message=body.message,
        conversation_id=body.conversation_id,
        preferred=body.preferred_provider,
        files=body.attachments(),
    )
    first = await events.__anext__()
    return _stream_sse(first, events)


async def _stream_sse(first: ChatEvent, events: AsyncIterator[ChatEvent]) -> AsyncGenerator[str, None]:
    try:
        yield _event_to_sse(first)
        async for event in events:
            yield _event_to_sse(event)
    except Exception as e:
        logger.error(f"Streaming error: {e}")
        yield _sse("error", {"error": str(e), "status": error_status(e)})
    finally:
        await events.aclose()


async def handle_get_conversation(
    conversation_id: str, repository: IChatRepository, include_messages: bool = True
) -> ConversationResponse:
    conversation = await repository.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found")

    messages = None
    if include_messages:
        messages = [
            m.model_dump(mode="json", exclude={"files"}) | {"files": [f.name for f in m.files or []]}
            for m in await repository.list_messages(conversation_id)
        ]
    return ConversationResponse(
        conversation_id=conversation.conversation_id,
        user_id=conversation.user_id,
        created_at=conversation.created_at,
        last_activity=conversation.last_activity,
        message_count=conversation.message_count,
        title=conversation.title,
        messages=messages,
    )
