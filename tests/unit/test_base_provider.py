"""
Unit tests for the shared provider behaviour.

WHAT: Attachment preparation, same-vendor model fallback and pseudo-streaming
WHY: Every vendor adapter inherits this logic unchanged
HOW: Scripted FakeProvider subclasses with in-memory attachments
"""

import pytest

from app.files.service.capabilities import MB
from app.files.service.errors import AttachmentValidationError
from app.files.service.extractors import pdf as pdf_module
from app.files.service.token_estimator import PdfAdmission
from app.llm.service.errors import ProviderDisabledError, ProviderError
from app.llm.service.provider import base_provider
from fake_providers import FakeProvider, attachment, remote_attachment, user


def not_found(model):
    return ProviderError("openai", f"The model `{model}` does not exist or you do not have access to it.", 404)


async def collect(stream):
    return [chunk async for chunk in stream]


@pytest.mark.unit
class TestPrepare:
    """Test how attachments become segments and inline parts."""

    @pytest.mark.asyncio
    async def test_plain_message(self):
        prepared = await FakeProvider("openai").prepare([user("hi")])

        assert prepared[0].segments == ["hi"]
        assert prepared[0].is_plain is True

    @pytest.mark.asyncio
    async def test_image_becomes_inline_part(self):
        image = attachment("cat.PNG", "IMAGE/PNG", b"\x89PNG fake")

        prepared = await FakeProvider("openai").prepare([user("what is this?", [image])])

        part = prepared[0].inline_parts[0]
        assert part.mime_type == "image/png"
        assert part.data == b"\x89PNG fake"
        assert part.data_url.startswith("data:image/png;base64,")
        assert prepared[0].is_plain is False

    @pytest.mark.asyncio
    async def test_pdf_is_extracted_for_vendor_without_native_pdf(self, monkeypatch):
        monkeypatch.setattr(pdf_module, "read_pdf_pages", lambda data: ["Invoice total: 42"])
        pdf = attachment("report.pdf", "application/pdf", b"%PDF-1.4 fake")

        prepared = await FakeProvider("openai").prepare([user("summarise", [pdf])])

        assert prepared[0].inline_parts == []
        assert prepared[0].segments[0] == "summarise"
        assert "Invoice total: 42" in prepared[0].segments[1]

    @pytest.mark.asyncio
    async def test_pdf_goes_inline_for_native_vendor(self):
        pdf = attachment("report.pdf", "application/pdf", b"%PDF-1.4 fake")

        prepared = await FakeProvider("anthropic").prepare([user("summarise", [pdf])])

        assert [p.mime_type for p in prepared[0].inline_parts] == ["application/pdf"]
        assert prepared[0].segments == ["summarise"]

    @pytest.mark.asyncio
    async def test_pdf_refused_by_admission_is_extracted(self, monkeypatch):
        monkeypatch.setattr(pdf_module, "read_pdf_pages", lambda data: ["page text"])
        monkeypatch.setattr(
            base_provider,
            "can_admit_pdf",
            lambda item: PdfAdmission(can_process=False, estimated_tokens=10**6, reason="too many tokens"),
        )
        pdf = attachment("report.pdf", "application/pdf", b"%PDF-1.4 fake")

        prepared = await FakeProvider("google").prepare([user("summarise", [pdf])])

        assert prepared[0].inline_parts == []
        assert "page text" in prepared[0].segments[1]

    @pytest.mark.asyncio
    async def test_unsupported_small_text_uses_fallback(self):
        config = attachment("settings.yaml", "application/x-yaml", b"retries: 3\n")

        prepared = await FakeProvider("anthropic").prepare([user("check", [config])])

        assert prepared[0].segments[1] == '=== File "settings.yaml (fallback)" ===\nretries: 3\n'

    @pytest.mark.asyncio
    async def test_unreadable_attachments_are_reported_in_a_note(self):
        blob = attachment("firmware.bin", "application/octet-stream", bytes(range(256)))
        broken = attachment("notes.txt", "text/plain", b"hello", size=10)

        prepared = await FakeProvider("openai").prepare([user("look", [blob, broken])])

        note = prepared[0].segments[-1]
        assert note.startswith("[Note: 2 attachment(s) could not be processed and were not included:")
        assert "firmware.bin" in note
        assert "notes.txt" in note

    @pytest.mark.asyncio
    async def test_unreadable_type_accepted_elsewhere_is_refused(self):
        photo = attachment("IMG_0002.heic", "image/heic", b"\x00\x01\xff" * 100)

        with pytest.raises(AttachmentValidationError) as exc_info:
            await FakeProvider("openai").prepare([user("what is this?", [photo])], frozenset({"image/heic"}))

        assert exc_info.value.size_related is False
        assert "IMG_0002.heic: type image/heic is not supported by openai" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_readable_fallback_is_kept_even_when_accepted_elsewhere(self):
        page = attachment("page.html", "text/html", b"<p>hello</p>")

        prepared = await FakeProvider("openai").prepare([user("check", [page])], frozenset({"text/html"}))

        assert prepared[0].segments[1] == '=== File "page.html (fallback)" ===\n<p>hello</p>'

    @pytest.mark.asyncio
    async def test_invalid_attachment_raises_validation_error(self):
        image = remote_attachment("huge.jpg", "image/jpeg", 6 * MB)

        with pytest.raises(AttachmentValidationError) as exc_info:
            await FakeProvider("anthropic").prepare([user("look", [image])])

        assert exc_info.value.size_related is True
        assert "6.00MB attempted, 5.00MB allowed" in str(exc_info.value)


@pytest.mark.unit
class TestCompleteFallback:
    """Test same-vendor fallback to the default model."""

    @pytest.mark.asyncio
    async def test_unavailable_model_retries_default_with_note(self):
        provider = FakeProvider("openai", reply="answer", errors={"gpt-4o": not_found("gpt-4o")})

        response = await provider.complete([user("hi")], "gpt-4o")

        assert provider.models_called == ["gpt-4o", "gpt-4o-mini"]
        assert response.model_used == "gpt-4o-mini"
        assert response.content.startswith(
            "⚠️ Model gpt-4o is unavailable (model not found); answered with gpt-4o-mini instead.\n\n"
        )
        assert response.content.endswith("answer")

    @pytest.mark.asyncio
    async def test_organization_verification_is_labelled(self):
        error = ProviderError("openai", "Your organization must be verified to use the model `o3`.", 400)
        provider = FakeProvider("openai", errors={"o3": error})

        response = await provider.complete([user("hi")], "o3")

        assert "(organization verification required)" in response.content

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        provider = FakeProvider("openai", errors={"*": ProviderError("openai", "server exploded", 500)})

        with pytest.raises(ProviderError, match="server exploded"):
            await provider.complete([user("hi")], "gpt-4o")

        assert provider.models_called == ["gpt-4o"]

    @pytest.mark.asyncio
    async def test_default_model_unavailable_is_raised(self):
        provider = FakeProvider("openai", errors={"gpt-4o-mini": not_found("gpt-4o-mini")})

        with pytest.raises(ProviderError):
            await provider.complete([user("hi")])

        assert provider.models_called == ["gpt-4o-mini"]

    @pytest.mark.asyncio
    async def test_disabled_provider(self):
        provider = FakeProvider("openai", api_key=None)

        assert provider.is_enabled() is False
        with pytest.raises(ProviderDisabledError):
            await provider.complete([user("hi")])


@pytest.mark.unit
class TestStream:
    """Test streaming, pseudo-streaming and stream fallback."""

    @pytest.mark.asyncio
    async def test_deltas_then_single_terminal_chunk(self):
        chunks = await collect(FakeProvider("google", deltas=["a", "", "b"]).stream([user("hi")]))

        assert [c.content_delta for c in chunks] == ["a", "b", ""]
        assert [c.is_complete for c in chunks] == [False, False, True]
        assert chunks[-1].model_used == "gemini-1.5-flash"

    @pytest.mark.asyncio
    async def test_stream_rejection_replays_blocking_reply(self):
        error = ProviderError("openai", "Streaming is not supported for this model.", 400)
        provider = FakeProvider("openai", reply="alpha beta  gamma", stream_errors={"o1": error})

        chunks = await collect(provider.stream([user("hi")], "o1"))

        assert [c.content_delta for c in chunks[:-1]] == ["alpha ", "beta  ", "gamma"]
        assert chunks[-1].is_complete is True
        assert chunks[-1].model_used == "o1"
        assert [kind for kind, _, _ in provider.calls] == ["stream", "complete"]

    @pytest.mark.asyncio
    async def test_unavailable_model_streams_default_after_note(self):
        provider = FakeProvider("openai", deltas=["x"], stream_errors={"gpt-4o": not_found("gpt-4o")})

        chunks = await collect(provider.stream([user("hi")], "gpt-4o"))

        assert chunks[0].content_delta.startswith("⚠️ Model gpt-4o is unavailable")
        assert chunks[1].content_delta == "x"
        assert chunks[-1].model_used == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_error_after_first_delta_propagates(self):
        provider = FakeProvider("openai", deltas=["a", "b", "c"], fail_after=1)
        received = []

        with pytest.raises(ProviderError, match="connection reset"):
            async for chunk in provider.stream([user("hi")], "gpt-4o"):
                received.append(chunk.content_delta)

        assert received == ["a"]
        assert provider.models_called == ["gpt-4o"]
