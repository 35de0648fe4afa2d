# app/llm/service/provider/openai_provider.py
from typing import Any, AsyncGenerator, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from app.core.config import settings
from app.llm.entity.message import NormalizedResponse
from app.llm.service.errors import ProviderError
from app.llm.service.provider.base_provider import BaseProvider, PreparedMessage


class OpenAIProvider(BaseProvider):
    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        client: Optional[Any] = None,
        **kwargs,
    ):
        api_key = settings.OPENAI_API_KEY if api_key is None else api_key
        super().__init__(api_key, default_model or settings.OPENAI_DEFAULT_MODEL, **kwargs)
        if client is None and self.api_key:
            client = AsyncOpenAI(api_key=self.api_key, timeout=settings.REQUEST_TIMEOUT_MS / 1000)
        self.client = client

    def _to_vendor_messages(self, messages: List[PreparedMessage]) -> List[Dict[str, Any]]:
        vendor_messages = []
        for message in messages:
            if message.is_plain:
                vendor_messages.append({"role": message.role, "content": message.text})
                continue

            content: List[Dict[str, Any]] = [
                {"type": "text", "text": segment} for segment in message.segments if segment
            ]
            for part in message.inline_parts:
                if part.is_image:
                    content.append({"type": "image_url", "image_url": {"url": part.data_url}})
                else:
                    content.append({"type": "file", "file": {"filename": part.name, "file_data": part.data_url}})
            vendor_messages.append({"role": message.role, "content": content})
        return vendor_messages

    def _error(self, e: openai.APIError) -> ProviderError:
        return ProviderError(self.name, f"OpenAI API error: {e}", getattr(e, "status_code", None))

    async def _complete(self, messages: List[PreparedMessage], model: str) -> NormalizedResponse:
        try:
            resp = await self.client.chat.completions.create(
                model=model,
                messages=self._to_vendor_messages(messages),
                temperature=self.temperature,
                max_tokens=self.max_output_tokens,
                stream=False,
            )
        except openai.APIError as e:
            raise self._error(e) from e

        usage = getattr(resp, "usage", None)
        return NormalizedResponse(
            content=resp.choices[0].message.content or "",
            model_used=getattr(resp, "model", None) or model,
            token_count=getattr(usage, "total_tokens", None) if usage else None,
        )

    async def _stream(self, messages: List[PreparedMessage], model: str) -> AsyncGenerator[str, None]:
        try:
            response_stream = await self.client.chat.completions.create(
                model=model,
                messages=self._to_vendor_messages(messages),
                temperature=self.temperature,
                max_tokens=self.max_output_tokens,
                stream=True,
            )
            async for event in response_stream:
                delta = getattr(event.choices[0].delta, "content", None) if getattr(event, "choices", None) else None
                if delta:
                    yield delta
        except openai.APIError as e:
            raise self._error(e) from e
