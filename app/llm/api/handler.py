from typing import Optional

from app.core.logger import get_logger
from app.files.service.capabilities import get_capabilities
from app.llm.api.dto import ProviderInfo, ProviderListResponse, RateLimitInfo
from app.llm.service.model_router import VENDORS
from app.llm.service.orchestrator import Orchestrator

logger = get_logger("LLMHandler")


class LLMHandler:
    """Handler for LLM API endpoints."""

    def __init__(self, orchestrator: Orchestrator):
        self.orchestrator = orchestrator

    async def health(self) -> dict:
        """Health check for active providers."""
        active = self.orchestrator.available_providers()
        return {
            "status": "ok",
            "active_providers": len(active),
            "total_providers": len(VENDORS),
        }

    async def providers(self, caller_id: Optional[str] = None) -> ProviderListResponse:
        """Return every known vendor with its status and attachment limits."""
        provider_list = []
        for vendor in VENDORS:
            caps = get_capabilities(vendor)
            adapter = self.orchestrator.adapters.get(vendor)
            provider_list.append(
                ProviderInfo(
                    name=vendor,
                    default_model=adapter.default_model if adapter else None,
                    status="active" if adapter else "disabled",
                    max_files=caps.max_files,
                    max_file_size_bytes=caps.max_file_size,
                    native_types=sorted(caps.native_types),
                )
            )

        rate_limit = None
        if caller_id:
            status = self.orchestrator.rate_limiter.get_status(caller_id)
            rate_limit = RateLimitInfo(
                remaining=status.remaining,
                reset_in_s=round(status.reset_in_s, 1),
                is_limited=status.is_limited,
            )
        return ProviderListResponse(providers=provider_list, rate_limit=rate_limit)
