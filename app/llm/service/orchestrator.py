# app/llm/service/orchestrator.py
import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Union

from app.core.config import Settings, settings as default_settings
from app.core.logger import get_logger
from app.files.service.capabilities import get_capabilities
from app.llm.entity.message import Message, NormalizedResponse, StreamChunk
from app.llm.service.errors import AllProvidersExhaustedError, NoProvidersConfiguredError, RateLimitedError, is_token_limit_error
from app.llm.service.model_router import ModelRouter
from app.llm.service.provider.base_provider import BaseProvider
from pkg.rate_limit.limiter import RateLimiter

logger = get_logger("Orchestrator")

Emit = Callable[[StreamChunk], Awaitable[None]]


class OrchestratorState(str, Enum):
    IDLE = "idle"
    ADMITTED = "admitted"
    TRYING_VENDOR = "trying_vendor"
    SUCCEEDED = "succeeded"
    EXHAUSTED_FAILED = "exhausted_failed"


@dataclass
class FallbackAttempt:
    """Per-call progress through the fallback chain."""

    caller_id: str
    order: List[str] = field(default_factory=list)
    state: OrchestratorState = OrchestratorState.IDLE
    index: int = -1
    last_error: Optional[BaseException] = None

    @property
    def vendor(self) -> Optional[str]:
        return self.order[self.index] if 0 <= self.index < len(self.order) else None

    @property
    def is_last(self) -> bool:
        return self.index == len(self.order) - 1

    def move(self, state: OrchestratorState, index: Optional[int] = None) -> None:
        if index is not None:
            self.index = index
        self.state = state
        suffix = f"({self.index}:{self.vendor})" if state == OrchestratorState.TRYING_VENDOR else ""
        logger.debug(f"caller={self.caller_id} -> {state.value}{suffix}")


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


_END = object()


class StreamChannel:
    """
    Producer/consumer channel for one streamed reply.

    The producer coroutine runs as a single task that starts on the first
    read and feeds a bounded queue, so it is never more than one chunk ahead
    of the consumer. An error raised by the producer before it emits anything
    is re-raised from the first read. Closing the channel cancels the
    producer; no vendor call is started after that.
    """

    def __init__(self, producer: Callable[[Emit], Awaitable[None]], maxsize: int = 1):
        self._producer = producer
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    def __aiter__(self) -> "StreamChannel":
        return self

    async def __anext__(self) -> StreamChunk:
        if self._closed:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._run())

        item = await self._queue.get()
        if item is _END:
            self._closed = True
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._closed = True
            raise item.error
        if item.is_complete:
            self._closed = True
        return item

    async def _run(self) -> None:
        try:
            await self._producer(self._queue.put)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._queue.put(_Failure(e))
            return
        await self._queue.put(_END)

    async def aclose(self) -> None:
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self) -> "StreamChannel":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class Orchestrator:
    """
    Fallback chain over the configured vendor adapters.

    A call is admitted by the rate limiter, then tried on each vendor in the
    order given by the model router until one succeeds. On exhaustion a
    token-limit-class failure becomes AllProvidersExhaustedError; any other
    failure is re-raised as the last vendor reported it.
    """

    def __init__(
        self,
        adapters: Union[Dict[str, BaseProvider], Iterable[BaseProvider]],
        rate_limiter: RateLimiter,
        router: Optional[ModelRouter] = None,
    ):
        if not isinstance(adapters, dict):
            adapters = {adapter.name: adapter for adapter in adapters}
        self.adapters: Dict[str, BaseProvider] = {
            name: adapter for name, adapter in adapters.items() if adapter.is_enabled()
        }
        if not self.adapters:
            raise NoProvidersConfiguredError()
        self.rate_limiter = rate_limiter
        self.router = router or ModelRouter()
        logger.info(f"Orchestrator ready with providers: {', '.join(self.adapters)}")

    def available_providers(self) -> List[str]:
        return list(self.adapters)

    def is_provider_available(self, vendor: str) -> bool:
        resolved = self.router.resolve_provider(vendor) or vendor
        return resolved in self.adapters

    def _admit(self, caller_id: str, preferred: Optional[str]) -> FallbackAttempt:
        attempt = FallbackAttempt(caller_id=caller_id)
        if not self.rate_limiter.is_allowed(caller_id):
            attempt.move(OrchestratorState.EXHAUSTED_FAILED)
            raise RateLimitedError(caller_id)
        attempt.order = self.router.build_order(preferred, self.adapters)
        attempt.move(OrchestratorState.ADMITTED)
        return attempt

    @staticmethod
    def _handoff_types(attempt: FallbackAttempt, messages: List[Message]) -> FrozenSet[str]:
        """Attachment MIME types accepted by a vendor still ahead in the order."""
        mime_types = {item.mime_type.lower() for message in messages for item in (message.files or [])}
        if not mime_types:
            return frozenset()
        accepted = set()
        for vendor in attempt.order[attempt.index + 1 :]:
            caps = get_capabilities(vendor)
            if caps is not None:
                accepted.update(mime for mime in mime_types if caps.supports(mime))
        return frozenset(accepted)

    def _failed(self, attempt: FallbackAttempt, error: Exception) -> None:
        attempt.last_error = error
        kind = "token-limit" if is_token_limit_error(error) else "other"
        logger.error(f"Provider {attempt.vendor} failed ({kind}): {error}")

    def _exhausted(self, attempt: FallbackAttempt) -> BaseException:
        attempt.move(OrchestratorState.EXHAUSTED_FAILED)
        error = attempt.last_error
        if is_token_limit_error(error):
            exhausted = AllProvidersExhaustedError(f"tried {', '.join(attempt.order)}")
            exhausted.__cause__ = error
            return exhausted
        return error

    async def chat(
        self,
        messages: List[Message],
        caller_id: str,
        preferred: Optional[str] = None,
    ) -> NormalizedResponse:
        attempt = self._admit(caller_id, preferred)
        started = time.perf_counter()

        for index, vendor in enumerate(attempt.order):
            attempt.move(OrchestratorState.TRYING_VENDOR, index)
            adapter = self.adapters[vendor]
            try:
                response = await adapter.complete(
                    messages, self.router.equivalent_model(vendor, preferred), self._handoff_types(attempt, messages)
                )
            except Exception as e:
                self._failed(attempt, e)
                continue

            attempt.move(OrchestratorState.SUCCEEDED)
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            logger.info(f"Provider {vendor} answered with {response.model_used} in {elapsed_ms}ms")
            return response.model_copy(update={"processing_time_ms": elapsed_ms})

        raise self._exhausted(attempt)

    def chat_stream(
        self,
        messages: List[Message],
        caller_id: str,
        preferred: Optional[str] = None,
    ) -> StreamChannel:
        async def produce(emit: Emit) -> None:
            attempt = self._admit(caller_id, preferred)
            await self._produce(attempt, messages, preferred, emit)

        return StreamChannel(produce)

    async def _produce(
        self,
        attempt: FallbackAttempt,
        messages: List[Message],
        preferred: Optional[str],
        emit: Emit,
    ) -> None:
        for index, vendor in enumerate(attempt.order):
            attempt.move(OrchestratorState.TRYING_VENDOR, index)
            adapter = self.adapters[vendor]
            model = self.router.equivalent_model(vendor, preferred)
            model_used = model or adapter.default_model
            committed = False

            try:
                async for chunk in adapter.stream(messages, model, self._handoff_types(attempt, messages)):
                    model_used = chunk.model_used or model_used
                    if chunk.is_complete or not chunk.content_delta:
                        continue
                    if not committed:
                        committed = True
                        attempt.move(OrchestratorState.SUCCEEDED)
                        logger.info(f"Streaming committed to {vendor} ({model_used})")
                    await emit(StreamChunk(content_delta=chunk.content_delta, model_used=model_used))
            except Exception as e:
                if not committed:
                    self._failed(attempt, e)
                    continue
                # Committed vendors are never swapped; the consumer sees the break inline.
                logger.error(f"Provider {vendor} failed mid-stream: {e}")
                await emit(StreamChunk(content_delta=f"\n\n[Response interrupted: {e}]", model_used=model_used))

            if not committed:
                attempt.move(OrchestratorState.SUCCEEDED)
            await emit(StreamChunk(content_delta="", is_complete=True, model_used=model_used))
            return

        raise self._exhausted(attempt)


def build_adapters(config: Settings = default_settings) -> List[BaseProvider]:
    from app.llm.service.provider.anthropic import AnthropicProvider
    from app.llm.service.provider.gemini import GeminiProvider
    from app.llm.service.provider.openai_provider import OpenAIProvider

    return [
        OpenAIProvider(api_key=config.OPENAI_API_KEY, default_model=config.OPENAI_DEFAULT_MODEL),
        AnthropicProvider(api_key=config.ANTHROPIC_API_KEY, default_model=config.ANTHROPIC_DEFAULT_MODEL),
        GeminiProvider(api_key=config.GEMINI_API_KEY, default_model=config.GEMINI_DEFAULT_MODEL),
    ]


def build_orchestrator(
    config: Settings = default_settings,
    rate_limiter: Optional[RateLimiter] = None,
) -> Orchestrator:
    rate_limiter = rate_limiter or RateLimiter(
        window_ms=config.RATE_LIMIT_WINDOW_MS,
        max_requests=config.RATE_LIMIT_MAX_REQUESTS,
        logger=get_logger("RateLimiter"),
    )
    return Orchestrator(build_adapters(config), rate_limiter)
