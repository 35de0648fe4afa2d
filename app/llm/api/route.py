# app/llm/api/route.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.core.dto import BaseResponse
from app.llm.api.handler import LLMHandler


def get_llm_handler(request: Request) -> LLMHandler:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="No AI providers configured")
    return LLMHandler(orchestrator)


# Main LLM router
llm_router = APIRouter(prefix="/llm", tags=["LLM"])


@llm_router.get("/health", response_model=BaseResponse)
async def health(handler: LLMHandler = Depends(get_llm_handler)):
    """Health check for active providers."""
    health_data = await handler.health()
    return BaseResponse(
        status=True,
        message="Health check successful",
        data=health_data
    )


@llm_router.get("/providers", response_model=BaseResponse)
async def get_providers(
    handler: LLMHandler = Depends(get_llm_handler),
    user_id: Optional[str] = Query(default=None, description="Include this caller's rate-limit status"),
):
    """Return list of active and available providers."""
    providers_data = await handler.providers(user_id)
    return BaseResponse(
        status=True,
        message="Providers fetched successfully",
        data=providers_data.model_dump()
    )
