# app/llm/service/provider/base_provider.py
import asyncio
import base64
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncGenerator, AsyncIterator, FrozenSet, List, Optional, Tuple

from app.core.config import settings
from app.core.logger import get_logger
from app.files.entity.attachment import MIME_PDF, Attachment, Image, Pdf, classify
from app.files.service.capabilities import ProviderCapabilities, get_capabilities
from app.files.service.converter import AttachmentConverter
from app.files.service.errors import AttachmentConversionError, AttachmentValidationError
from app.files.service.extractors.base import ExtractorRegistry, chunk_text, sanitize_file_name, with_header
from app.files.service.extractors.sniff import sniff_text
from app.files.service.token_estimator import can_admit_pdf
from app.files.service.validation import FileValidationStage
from app.llm.entity.message import Message, NormalizedResponse, StreamChunk
from app.llm.service.errors import (
    ProviderDisabledError,
    ProviderError,
    classify_model_unavailability,
    is_stream_specific,
)

logger = get_logger("BaseProvider")

_UNAVAILABILITY_LABELS = {
    "organization_verification": "organization verification required",
    "model_not_found": "model not found",
    "stream_unsupported": "streaming not supported for this model",
}


@dataclass
class InlinePart:
    """Binary attachment sent to the vendor in its native multimodal form."""

    name: str
    mime_type: str
    data: bytes

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


@dataclass
class PreparedMessage:
    """A message after attachment processing: text segments plus native parts."""

    role: str
    segments: List[str]
    inline_parts: List[InlinePart] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n\n".join(s for s in self.segments if s)

    @property
    def is_plain(self) -> bool:
        return len(self.segments) <= 1 and not self.inline_parts


class BaseProvider(ABC):
    """
    Abstract base provider for all vendor integrations.

    Subclasses only translate prepared messages into a vendor request and
    back (`_complete`, `_stream`). Attachment validation, conversion and
    extraction, same-vendor model fallback and pseudo-streaming live here.
    """

    name: str = "base"

    def __init__(
        self,
        api_key: Optional[str],
        default_model: str,
        converter: Optional[AttachmentConverter] = None,
        validator: Optional[FileValidationStage] = None,
        extractors: Optional[ExtractorRegistry] = None,
        max_tokens_per_chunk: int = settings.MAX_TOKENS_PER_CHUNK,
        pseudo_stream_delay_ms: int = settings.PSEUDO_STREAM_DELAY_MS,
        temperature: float = settings.TEMPERATURE,
        max_output_tokens: int = settings.MAX_OUTPUT_TOKENS,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.converter = converter or AttachmentConverter()
        self.validator = validator or FileValidationStage()
        self.extractors = extractors or ExtractorRegistry()
        self.max_tokens_per_chunk = max_tokens_per_chunk
        self.pseudo_stream_delay_ms = pseudo_stream_delay_ms
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._enabled = bool(api_key)

    def is_enabled(self) -> bool:
        """Whether this provider is enabled/usable (e.g., API key present)."""
        return self._enabled

    @property
    def capabilities(self) -> ProviderCapabilities:
        return get_capabilities(self.name)

    # ----------------------------
    # Vendor hooks
    # ----------------------------
    @abstractmethod
    async def _complete(self, messages: List[PreparedMessage], model: str) -> NormalizedResponse:
        """Issue a blocking vendor call. Vendor failures are raised as ProviderError."""

    @abstractmethod
    def _stream(self, messages: List[PreparedMessage], model: str) -> AsyncIterator[str]:
        """Yield text deltas from a streaming vendor call."""

    # ----------------------------
    # Public contract
    # ----------------------------
    async def complete(
        self,
        messages: List[Message],
        model: Optional[str] = None,
        handoff_types: FrozenSet[str] = frozenset(),
    ) -> NormalizedResponse:
        self._check_enabled()
        prepared = await self.prepare(messages, handoff_types)
        target = model or self.default_model

        try:
            return await self._complete(prepared, target)
        except ProviderError as e:
            reason = classify_model_unavailability(e)
            if reason is None or target == self.default_model:
                raise
            logger.warning(f"{self.name}: {target} unavailable ({reason}), retrying with {self.default_model}")

        response = await self._complete(prepared, self.default_model)
        note = self._degradation_note(target, reason)
        return response.model_copy(update={"content": note + response.content})

    async def stream(
        self,
        messages: List[Message],
        model: Optional[str] = None,
        handoff_types: FrozenSet[str] = frozenset(),
    ) -> AsyncGenerator[StreamChunk, None]:
        self._check_enabled()
        prepared = await self.prepare(messages, handoff_types)
        target = model or self.default_model

        model_used = target
        async for delta, model_used in self._stream_with_fallback(prepared, target):
            if delta:
                yield StreamChunk(content_delta=delta, is_complete=False, model_used=model_used)
        yield StreamChunk(content_delta="", is_complete=True, model_used=model_used)

    async def _stream_with_fallback(
        self, prepared: List[PreparedMessage], target: str
    ) -> AsyncGenerator[Tuple[str, str], None]:
        started = False
        error: Optional[ProviderError] = None
        try:
            async for delta in self._stream(prepared, target):
                started = True
                yield delta, target
            return
        except ProviderError as e:
            if started or classify_model_unavailability(e) is None:
                raise
            error = e

        reason = classify_model_unavailability(error)

        if is_stream_specific(error):
            logger.warning(f"{self.name}: streaming rejected for {target}, trying a blocking call")
            try:
                response = await self._complete(prepared, target)
            except ProviderError as blocking_error:
                if classify_model_unavailability(blocking_error) is None:
                    raise
                reason = classify_model_unavailability(blocking_error)
            else:
                async for piece in self._pseudo_stream(response.content):
                    yield piece, response.model_used
                return

        if target == self.default_model:
            raise error

        logger.warning(f"{self.name}: {target} unavailable ({reason}), streaming with {self.default_model}")
        yield self._degradation_note(target, reason), self.default_model
        async for delta in self._stream(prepared, self.default_model):
            yield delta, self.default_model

    async def _pseudo_stream(self, content: str) -> AsyncGenerator[str, None]:
        """Replay a finished reply word by word with a fixed delay."""
        for piece in re.findall(r"\S+\s*|\s+", content):
            yield piece
            await asyncio.sleep(self.pseudo_stream_delay_ms / 1000)

    def _degradation_note(self, requested: str, reason: Optional[str]) -> str:
        label = _UNAVAILABILITY_LABELS.get(reason, reason or "unavailable")
        return f"⚠️ Model {requested} is unavailable ({label}); answered with {self.default_model} instead.\n\n"

    def _check_enabled(self) -> None:
        if not self._enabled:
            raise ProviderDisabledError(self.name)

    # ----------------------------
    # Attachment pipeline
    # ----------------------------
    async def prepare(
        self, messages: List[Message], handoff_types: FrozenSet[str] = frozenset()
    ) -> List[PreparedMessage]:
        """
        Turn messages into vendor-ready segments and inline parts.

        `handoff_types` holds MIME types that a later vendor in the fallback
        order accepts. An unsupported attachment of such a type that is not
        readable as text fails this vendor with AttachmentValidationError
        instead of being discarded, so the caller can move on.
        """
        prepared = []
        for message in messages:
            if message.files:
                prepared.append(await self._prepare_with_files(message, handoff_types))
            else:
                prepared.append(PreparedMessage(role=message.role, segments=[message.content]))
        return prepared

    async def _prepare_with_files(self, message: Message, handoff_types: FrozenSet[str]) -> PreparedMessage:
        caps = self.capabilities
        outcome = self.validator.validate_with(list(message.files), caps)
        if outcome.invalid:
            raise AttachmentValidationError(self.name, outcome.errors, outcome.size_related)

        segments: List[str] = [message.content]
        inline_parts: List[InlinePart] = []
        discarded: List[str] = []

        for attachment in outcome.valid:
            data = await self._resolve(attachment, discarded)
            if data is None:
                continue

            kind = classify(attachment)
            if isinstance(kind, Image):
                if caps.ingests_natively(attachment.mime_type):
                    inline_parts.append(InlinePart(attachment.name, attachment.mime_type.lower(), data))
                else:
                    discarded.append(f"{attachment.name} (images are not accepted by {self.name})")
                continue

            if isinstance(kind, Pdf) and caps.ingests_natively(MIME_PDF):
                admission = can_admit_pdf(attachment)
                if admission.can_process:
                    inline_parts.append(InlinePart(attachment.name, MIME_PDF, data))
                    continue
                logger.info(f"{self.name}: {admission.reason}; using text extraction instead")

            extractor = self.extractors.for_kind(kind)
            if extractor is None:
                discarded.append(f"{attachment.name} (no extractor for {attachment.mime_type})")
                continue
            segments.extend(extractor.extract(data, attachment.name, self.max_tokens_per_chunk))

        for attachment in outcome.fallback_processable:
            data = await self._resolve(attachment, discarded)
            if data is None:
                continue
            text = sniff_text(data)
            if text is None and attachment.mime_type.lower() in handoff_types:
                raise AttachmentValidationError(
                    self.name,
                    [f"{attachment.name}: type {attachment.mime_type} is not supported by {self.name}"],
                    size_related=False,
                )
            if text is None:
                discarded.append(f"{attachment.name} (type {attachment.mime_type} is not supported and is not readable as text)")
                continue
            label = f"{sanitize_file_name(attachment.name)} (fallback)"
            chunks = chunk_text(text, self.max_tokens_per_chunk)
            segments.extend(with_header(label, chunk, i, len(chunks)) for i, chunk in enumerate(chunks, start=1))

        if discarded:
            logger.warning(f"{self.name}: discarded {len(discarded)} attachments: {discarded}")
            segments.append(
                f"[Note: {len(discarded)} attachment(s) could not be processed and were not included: "
                + "; ".join(discarded)
                + "]"
            )

        return PreparedMessage(role=message.role, segments=segments, inline_parts=inline_parts)

    async def _resolve(self, attachment: Attachment, discarded: List[str]) -> Optional[bytes]:
        try:
            return await self.converter.resolve(attachment)
        except AttachmentConversionError as e:
            logger.warning(f"{self.name}: dropping {attachment.name}: {e}")
            discarded.append(f"{attachment.name} ({'; '.join(e.reasons)})")
            return None
