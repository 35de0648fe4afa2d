import json
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx

from app.core.config import settings
from app.core.logger import get_logger
from app.llm.entity.message import NormalizedResponse
from app.llm.service.errors import ProviderError
from app.llm.service.provider.base_provider import BaseProvider, PreparedMessage


class GeminiProvider(BaseProvider):
    """Handles Google Gemini models over the generativelanguage REST API."""

    name = "google"

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        endpoint: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        **kwargs,
    ):
        api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        super().__init__(api_key, default_model or settings.GEMINI_DEFAULT_MODEL, **kwargs)
        self.endpoint = (endpoint or settings.GEMINI_ENDPOINT or "https://generativelanguage.googleapis.com").rstrip("/")
        self.http_client = http_client
        self.timeout = settings.REQUEST_TIMEOUT_MS / 1000
        self._logger = get_logger("GeminiProvider")

    def _payload(self, messages: List[PreparedMessage]) -> Dict[str, Any]:
        contents = []
        system_texts = []
        for message in messages:
            if message.role == "system":
                system_texts.append(message.text)
                continue
            parts: List[Dict[str, Any]] = [{"text": segment} for segment in message.segments if segment]
            parts.extend(
                {"inline_data": {"mime_type": part.mime_type, "data": part.base64}}
                for part in message.inline_parts
            )
            contents.append({"role": "model" if message.role == "assistant" else "user", "parts": parts})

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": float(self.temperature),
                "maxOutputTokens": int(self.max_output_tokens),
            },
        }
        if system_texts:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system_texts)}]}
        return payload

    def _url(self, model: str, method: str) -> str:
        effective_model = model if model.startswith("gemini") else self.default_model
        return f"{self.endpoint}/v1beta/models/{effective_model}:{method}"

    def _error(self, status_code: int, body: str) -> ProviderError:
        message = body
        try:
            message = json.loads(body).get("error", {}).get("message") or body
        except (ValueError, AttributeError):
            pass
        self._logger.error(f"Gemini API error: status={status_code}")
        return ProviderError(self.name, f"Gemini API error {status_code}: {message}", status_code)

    def _client(self) -> httpx.AsyncClient:
        return self.http_client or httpx.AsyncClient(timeout=self.timeout)

    async def _complete(self, messages: List[PreparedMessage], model: str) -> NormalizedResponse:
        client = self._client()
        try:
            res = await client.post(
                self._url(model, "generateContent"),
                params={"key": self.api_key},
                json=self._payload(messages),
            )
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"Gemini request failed: {e}") from e
        finally:
            if client is not self.http_client:
                await client.aclose()

        if res.status_code != 200:
            raise self._error(res.status_code, res.text)

        data = res.json()
        candidates = data.get("candidates", [])
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        usage = data.get("usageMetadata") or {}
        return NormalizedResponse(
            content="".join(p.get("text", "") for p in parts if "text" in p),
            model_used=data.get("modelVersion") or model,
            token_count=usage.get("totalTokenCount"),
        )

    async def _stream(self, messages: List[PreparedMessage], model: str) -> AsyncGenerator[str, None]:
        client = self._client()
        try:
            async with client.stream(
                "POST",
                self._url(model, "streamGenerateContent"),
                params={"alt": "sse", "key": self.api_key},
                json=self._payload(messages),
            ) as resp:
                if resp.status_code != 200:
                    body = await resp.aread()
                    raise self._error(resp.status_code, body.decode("utf-8", errors="replace"))
                async for raw_line in resp.aiter_lines():
                    line = raw_line.strip()
                    if not line:
                        continue
                    # Accept both SSE (data: ...) and JSONL
                    if line.startswith("data:"):
                        line = line[len("data:"):].strip()
                        if line == "[DONE]":
                            break
                    try:
                        chunk = json.loads(line)
                    except ValueError:
                        continue
                    candidates = chunk.get("candidates", [])
                    if not candidates:
                        continue
                    for p in candidates[0].get("content", {}).get("parts", []):
                        text = p.get("text")
                        if text:
                            yield text
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"Gemini stream failed: {e}") from e
        finally:
            if client is not self.http_client:
                await client.aclose()
