# app/llm/service/provider/anthropic.py
from typing import Any, AsyncGenerator, Dict, List, Optional

import anthropic
from anthropic import AsyncAnthropic

from app.core.config import settings
from app.llm.entity.message import NormalizedResponse
from app.llm.service.errors import ProviderError
from app.llm.service.provider.base_provider import BaseProvider, PreparedMessage


class AnthropicProvider(BaseProvider):
    """Handles Claude (Anthropic) models."""

    name = "anthropic"

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        client: Optional[Any] = None,
        **kwargs,
    ):
        api_key = settings.ANTHROPIC_API_KEY if api_key is None else api_key
        super().__init__(api_key, default_model or settings.ANTHROPIC_DEFAULT_MODEL, **kwargs)
        if client is None and self.api_key:
            client = AsyncAnthropic(api_key=self.api_key, timeout=settings.REQUEST_TIMEOUT_MS / 1000)
        self.client = client

    def _request(self, messages: List[PreparedMessage], model: str) -> Dict[str, Any]:
        # Claude takes the system prompt outside the turn list
        system = "\n\n".join(m.text for m in messages if m.role == "system")
        turns = []
        for message in messages:
            if message.role == "system":
                continue
            if message.is_plain:
                turns.append({"role": message.role, "content": message.text})
                continue

            blocks: List[Dict[str, Any]] = []
            for part in message.inline_parts:
                source = {"type": "base64", "media_type": part.mime_type, "data": part.base64}
                blocks.append({"type": "image" if part.is_image else "document", "source": source})
            blocks.extend({"type": "text", "text": segment} for segment in message.segments if segment)
            turns.append({"role": message.role, "content": blocks})

        request = {
            "model": model,
            "max_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "messages": turns,
        }
        if system:
            request["system"] = system
        return request

    def _error(self, e: anthropic.APIError) -> ProviderError:
        return ProviderError(self.name, f"Anthropic API error: {e}", getattr(e, "status_code", None))

    async def _complete(self, messages: List[PreparedMessage], model: str) -> NormalizedResponse:
        try:
            msg = await self.client.messages.create(**self._request(messages, model))
        except anthropic.APIError as e:
            raise self._error(e) from e

        text = "".join(block.text for block in msg.content if getattr(block, "type", None) == "text")
        usage = getattr(msg, "usage", None)
        tokens = (usage.input_tokens or 0) + (usage.output_tokens or 0) if usage else None
        return NormalizedResponse(content=text, model_used=getattr(msg, "model", None) or model, token_count=tokens)

    async def _stream(self, messages: List[PreparedMessage], model: str) -> AsyncGenerator[str, None]:
        try:
            async with self.client.messages.stream(**self._request(messages, model)) as s:
                async for text in s.text_stream:
                    if text:
                        yield text
        except anthropic.APIError as e:
            raise self._error(e) from e
