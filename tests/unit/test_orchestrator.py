"""
Unit tests for the orchestrator fallback chain.

WHAT: Admission, provider ordering, failover, exhaustion and the stream channel
WHY: The orchestrator is the only path from a chat request to a vendor
HOW: Three scripted vendor adapters behind a real rate limiter
"""

import asyncio

import pytest

from app.files.service.capabilities import MB
from app.files.service.errors import AttachmentValidationError
from app.llm.entity.message import StreamChunk
from app.llm.service.errors import (
    AllProvidersExhaustedError,
    NoProvidersConfiguredError,
    ProviderError,
    RateLimitedError,
)
from app.llm.service.model_router import ModelRouter
from app.llm.service.orchestrator import Orchestrator, StreamChannel
from fake_providers import FakeProvider, StubConverter, remote_attachment, user
from pkg.rate_limit.limiter import RateLimiter


def server_error(vendor):
    return ProviderError(vendor, f"{vendor} is having a bad day", 500)


def too_large(vendor):
    return ProviderError(vendor, "Request too large: max 30000 tokens per min", 429)


async def drain(channel):
    return [chunk async for chunk in channel]


@pytest.mark.unit
class TestConstruction:
    """Test adapter filtering."""

    def test_disabled_adapters_are_dropped(self, rate_limiter):
        orchestrator = Orchestrator(
            [FakeProvider("openai", api_key=None), FakeProvider("google")], rate_limiter
        )

        assert orchestrator.available_providers() == ["google"]
        assert orchestrator.is_provider_available("gemini") is True
        assert orchestrator.is_provider_available("openai") is False

    def test_no_enabled_adapters(self, rate_limiter):
        with pytest.raises(NoProvidersConfiguredError):
            Orchestrator([FakeProvider("openai", api_key="")], rate_limiter)


@pytest.mark.unit
class TestChat:
    """Test blocking calls."""

    @pytest.mark.asyncio
    async def test_first_configured_vendor_answers(self, orchestrator, openai_fake, anthropic_fake):
        response = await orchestrator.chat([user("hi")], "caller")

        assert response.content == "reply from openai"
        assert response.processing_time_ms >= 0
        assert anthropic_fake.calls == []

    @pytest.mark.asyncio
    async def test_preferred_model_moves_its_vendor_first(self, orchestrator, openai_fake, anthropic_fake):
        response = await orchestrator.chat([user("hi")], "caller", "claude-3-5-sonnet-20241022")

        assert response.content == "reply from anthropic"
        assert anthropic_fake.models_called == ["claude-3-5-sonnet-20241022"]
        assert openai_fake.calls == []

    @pytest.mark.asyncio
    async def test_failover_uses_equivalent_model(self, rate_limiter):
        anthropic = FakeProvider("anthropic", errors={"*": server_error("anthropic")})
        openai = FakeProvider("openai", reply="from openai")
        orchestrator = Orchestrator([openai, anthropic], rate_limiter)

        response = await orchestrator.chat([user("hi")], "caller", "claude-3-5-sonnet-20241022")

        assert response.content == "from openai"
        assert openai.models_called == ["gpt-4o"]

    @pytest.mark.asyncio
    async def test_vendor_alias_uses_default_models(self, orchestrator, google_fake):
        await orchestrator.chat([user("hi")], "caller", "gemini")

        assert google_fake.models_called == ["gemini-1.5-flash"]

    @pytest.mark.asyncio
    async def test_rate_limited_caller_never_reaches_a_vendor(self, clock, openai_fake):
        limiter = RateLimiter(window_ms=60_000, max_requests=1, clock=clock)
        orchestrator = Orchestrator([openai_fake], limiter)
        await orchestrator.chat([user("hi")], "caller")

        with pytest.raises(RateLimitedError):
            await orchestrator.chat([user("hi")], "caller")

        assert len(openai_fake.calls) == 1
        await orchestrator.chat([user("hi")], "someone-else")

    @pytest.mark.asyncio
    async def test_exhaustion_with_token_limit_last(self, rate_limiter):
        adapters = [
            FakeProvider("openai", errors={"*": server_error("openai")}),
            FakeProvider("anthropic", errors={"*": server_error("anthropic")}),
            FakeProvider("google", errors={"*": too_large("google")}),
        ]

        with pytest.raises(AllProvidersExhaustedError) as exc_info:
            await Orchestrator(adapters, rate_limiter).chat([user("hi")], "caller")

        assert "openai, anthropic, google" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, ProviderError)

    @pytest.mark.asyncio
    async def test_exhaustion_with_other_error_last_reraises_it(self, rate_limiter):
        last = server_error("google")
        adapters = [
            FakeProvider("openai", errors={"*": too_large("openai")}),
            FakeProvider("google", errors={"*": last}),
        ]

        with pytest.raises(ProviderError) as exc_info:
            await Orchestrator(adapters, rate_limiter).chat([user("hi")], "caller")

        assert exc_info.value is last

    @pytest.mark.asyncio
    async def test_every_vendor_is_tried_once(self, rate_limiter):
        adapters = [FakeProvider(name, errors={"*": server_error(name)}) for name in ("openai", "anthropic", "google")]

        with pytest.raises(ProviderError):
            await Orchestrator(adapters, rate_limiter).chat([user("hi")], "caller")

        assert [len(adapter.calls) for adapter in adapters] == [1, 1, 1]


@pytest.mark.unit
class TestAttachmentRouting:
    """Test failover driven by attachment validation."""

    @pytest.mark.asyncio
    async def test_heic_photo_lands_on_google(self, rate_limiter):
        adapters = [FakeProvider(name, converter=StubConverter(b"heic")) for name in ("openai", "anthropic", "google")]
        photo = remote_attachment("IMG_0001.heic", "image/heic", 2 * MB)

        response = await Orchestrator(adapters, rate_limiter).chat([user("what is this?", [photo])], "caller")

        assert ModelRouter().resolve_provider(response.model_used) == "google"
        prepared = adapters[2].calls[0][2]
        assert [part.mime_type for part in prepared[0].inline_parts] == ["image/heic"]

    @pytest.mark.asyncio
    async def test_small_binary_photo_is_not_dropped_by_earlier_vendors(self, rate_limiter):
        converter = StubConverter(b"\x00\x01\xff" * 100)
        adapters = [FakeProvider(name, converter=converter) for name in ("openai", "anthropic", "google")]
        photo = remote_attachment("IMG_0002.heic", "image/heic", 300 * 1024)

        response = await Orchestrator(adapters, rate_limiter).chat([user("what is this?", [photo])], "caller")

        assert ModelRouter().resolve_provider(response.model_used) == "google"
        assert adapters[0].calls == [] and adapters[1].calls == []
        prepared = adapters[2].calls[0][2]
        assert [part.mime_type for part in prepared[0].inline_parts] == ["image/heic"]
        assert prepared[0].segments == ["what is this?"]

    @pytest.mark.asyncio
    async def test_small_binary_photo_streams_from_google(self, rate_limiter):
        converter = StubConverter(b"\x00\x01\xff" * 100)
        adapters = [FakeProvider(name, converter=converter) for name in ("openai", "anthropic", "google")]
        photo = remote_attachment("IMG_0002.heic", "image/heic", 300 * 1024)

        chunks = await drain(Orchestrator(adapters, rate_limiter).chat_stream([user("what is this?", [photo])], "caller"))

        assert chunks[-1].model_used == "gemini-1.5-flash"
        assert adapters[0].calls == [] and adapters[1].calls == []

    @pytest.mark.asyncio
    async def test_type_no_vendor_accepts_is_noted_on_first_vendor(self, rate_limiter):
        converter = StubConverter(b"\x00\x01\xff" * 100)
        adapters = [FakeProvider(name, converter=converter) for name in ("openai", "anthropic", "google")]
        blob = remote_attachment("firmware.bin", "application/octet-stream", 300)

        response = await Orchestrator(adapters, rate_limiter).chat([user("look", [blob])], "caller")

        assert response.model_used == "gpt-4o-mini"
        note = adapters[0].calls[0][2][0].segments[-1]
        assert note.startswith("[Note: 1 attachment(s) could not be processed")
        assert "firmware.bin" in note

    @pytest.mark.asyncio
    async def test_large_pdf_lands_on_google_inline(self, rate_limiter):
        converter = StubConverter()
        adapters = [FakeProvider(name, converter=converter) for name in ("openai", "anthropic", "google")]
        pdf = remote_attachment("annual-report.pdf", "application/pdf", 40 * MB)

        response = await Orchestrator(adapters, rate_limiter).chat([user("summarise", [pdf])], "caller")

        assert response.model_used == "gemini-1.5-flash"
        assert converter.resolved == ["annual-report.pdf"]
        assert adapters[0].calls == [] and adapters[1].calls == []

    @pytest.mark.asyncio
    async def test_pdf_too_large_everywhere_is_exhausted(self, rate_limiter):
        adapters = [FakeProvider(name, converter=StubConverter()) for name in ("openai", "anthropic", "google")]
        pdf = remote_attachment("scan.pdf", "application/pdf", 60 * MB)

        with pytest.raises(AllProvidersExhaustedError) as exc_info:
            await Orchestrator(adapters, rate_limiter).chat([user("summarise", [pdf])], "caller")

        assert isinstance(exc_info.value.__cause__, AttachmentValidationError)


@pytest.mark.unit
class TestChatStream:
    """Test the streamed fallback chain."""

    @pytest.mark.asyncio
    async def test_deltas_then_exactly_one_terminal_chunk(self, orchestrator):
        chunks = await drain(orchestrator.chat_stream([user("hi")], "caller"))

        assert [c.content_delta for c in chunks] == ["Hello", ", ", "world", ""]
        assert [c.is_complete for c in chunks].count(True) == 1
        assert chunks[-1].is_complete is True
        assert chunks[-1].model_used == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_nothing_runs_until_first_read(self, orchestrator, openai_fake, rate_limiter):
        channel = orchestrator.chat_stream([user("hi")], "caller")
        await asyncio.sleep(0)

        assert openai_fake.calls == []
        assert rate_limiter.get_status("caller").remaining == 100
        await channel.aclose()

    @pytest.mark.asyncio
    async def test_failure_before_first_delta_moves_on(self, rate_limiter):
        openai = FakeProvider("openai", stream_errors={"*": server_error("openai")})
        anthropic = FakeProvider("anthropic", deltas=["from ", "claude"])

        chunks = await drain(Orchestrator([openai, anthropic], rate_limiter).chat_stream([user("hi")], "caller"))

        assert "".join(c.content_delta for c in chunks) == "from claude"
        assert chunks[-1].model_used == "claude-3-haiku-20240307"

    @pytest.mark.asyncio
    async def test_failure_after_commit_is_reported_inline(self, rate_limiter):
        openai = FakeProvider("openai", deltas=["Hello", " there", "!"], fail_after=1)
        anthropic = FakeProvider("anthropic")

        chunks = await drain(Orchestrator([openai, anthropic], rate_limiter).chat_stream([user("hi")], "caller"))

        assert [c.content_delta for c in chunks] == [
            "Hello",
            "\n\n[Response interrupted: connection reset by peer]",
            "",
        ]
        assert chunks[-1].is_complete is True
        assert anthropic.calls == []

    @pytest.mark.asyncio
    async def test_exhaustion_surfaces_on_first_read(self, rate_limiter):
        adapters = [FakeProvider(name, stream_errors={"*": too_large(name)}) for name in ("openai", "google")]
        channel = Orchestrator(adapters, rate_limiter).chat_stream([user("hi")], "caller")

        with pytest.raises(AllProvidersExhaustedError):
            await channel.__anext__()

        with pytest.raises(StopAsyncIteration):
            await channel.__anext__()

    @pytest.mark.asyncio
    async def test_rate_limit_surfaces_on_first_read(self, clock, openai_fake):
        limiter = RateLimiter(window_ms=60_000, max_requests=1, clock=clock)
        orchestrator = Orchestrator([openai_fake], limiter)
        await drain(orchestrator.chat_stream([user("hi")], "caller"))

        with pytest.raises(RateLimitedError):
            await drain(orchestrator.chat_stream([user("hi")], "caller"))

    @pytest.mark.asyncio
    async def test_close_cancels_the_producer(self, rate_limiter):
        openai = FakeProvider("openai", deltas=["a"] * 50, delta_delay_s=0.01)
        anthropic = FakeProvider("anthropic")
        channel = Orchestrator([openai, anthropic], rate_limiter).chat_stream([user("hi")], "caller")

        first = await channel.__anext__()
        await channel.aclose()

        assert first.content_delta == "a"
        assert channel._task.done()
        assert anthropic.calls == []
        with pytest.raises(StopAsyncIteration):
            await channel.__anext__()

    @pytest.mark.asyncio
    async def test_producer_stays_at_most_one_chunk_ahead(self):
        produced = []

        async def producer(emit):
            for i in range(10):
                produced.append(i)
                await emit(StreamChunk(content_delta=str(i)))

        async with StreamChannel(producer) as channel:
            first = await channel.__anext__()
            for _ in range(5):
                await asyncio.sleep(0)

        assert first.content_delta == "0"
        assert len(produced) <= 3
        assert channel._task.done()
