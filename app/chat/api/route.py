from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from app.chat.api.dto import ChatRequest
from app.chat.api.handler import handle_chat, handle_get_conversation, open_chat_stream
from app.chat.service.chat_service import ChatService
from app.chat.service.service import IChatRepository
from app.core.dto import BaseResponse
from app.core.logger import get_logger

chat_router = APIRouter(prefix="/chat", tags=["Chat"])
logger = get_logger("ChatRouter")


def get_chat_service(request: Request) -> ChatService:
    """Dependency to get the chat service from app.state."""
    service: Optional[ChatService] = getattr(request.app.state, "chat_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Chat service not available")
    return service


def get_chat_repository(request: Request) -> IChatRepository:
    repository: Optional[IChatRepository] = getattr(request.app.state, "chat_repo", None)
    if repository is None:
        raise HTTPException(status_code=503, detail="Chat store not available")
    return repository


def caller_id(body: ChatRequest, request: Request) -> str:
    """Rate-limit key: the declared user, else the client address."""
    if body.user_id:
        return body.user_id
    return request.client.host if request.client else "anonymous"


@chat_router.post("", response_model=BaseResponse)
async def chat_api(body: ChatRequest, request: Request, chat_service: ChatService = Depends(get_chat_service)):
    """Non-streaming chat endpoint."""
    response = await handle_chat(body, chat_service, caller_id(body, request))
    return BaseResponse(status=True, message="Chat processed successfully", data=response.model_dump())


@chat_router.post("/stream")
async def chat_stream_api(body: ChatRequest, request: Request, chat_service: ChatService = Depends(get_chat_service)):
    """Streaming chat endpoint (Server-Sent Events)."""
    events = await open_chat_stream(body, chat_service, caller_id(body, request))
    return StreamingResponse(
        events,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # for Nginx
        },
    )


@chat_router.get("/conversation/{conversation_id}", response_model=BaseResponse)
async def get_conversation(
    conversation_id: str,
    repository: IChatRepository = Depends(get_chat_repository),
    include_messages: bool = Query(default=True, description="Include messages in response"),
):
    """Get a conversation and, optionally, its messages in order."""
    conversation = await handle_get_conversation(conversation_id, repository, include_messages)
    return BaseResponse(status=True, message="Conversation fetched successfully", data=conversation.model_dump())
