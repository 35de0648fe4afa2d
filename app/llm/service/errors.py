# app/llm/service/errors.py
import re
from typing import Optional

from app.files.service.errors import AttachmentValidationError


class OrchestratorError(Exception):
    """Base class for errors surfaced by the chat orchestrator."""


class RateLimitedError(OrchestratorError):
    def __init__(self, caller_id: str):
        self.caller_id = caller_id
        super().__init__("Rate limit exceeded")


class NoProvidersConfiguredError(OrchestratorError):
    def __init__(self):
        super().__init__("No AI providers available: configure at least one vendor API key")


class AllProvidersExhaustedError(OrchestratorError):
    """Every configured vendor rejected the request for size/token reasons."""

    def __init__(self, detail: Optional[str] = None):
        message = "File too large for every configured vendor"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class ProviderError(Exception):
    """A vendor call failed."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class ProviderDisabledError(ProviderError):
    def __init__(self, provider: str):
        super().__init__(provider, f"{provider} provider disabled: missing API key")


_TOKEN_LIMIT_PATTERNS = re.compile(
    r"request too large|too many tokens|token limit|maximum context length|context_length_exceeded"
    r"|context window|prompt is too long|tokens per min|input is too long"
    r"|exceeds the maximum|payload too large|request entity too large|file too large",
    re.IGNORECASE,
)

_ORG_VERIFICATION = re.compile(r"organization (must be|is not|needs to be) verified|verify (your )?organization", re.IGNORECASE)
_MODEL_NOT_FOUND = re.compile(
    r"model_not_found|model[^.]{0,80}(does not exist|not found|is not supported|not available)"
    r"|is not found for api version|unknown model",
    re.IGNORECASE,
)
_STREAM_UNSUPPORTED = re.compile(
    r"stream(ing)?[^.]{0,60}(not supported|unsupported|not available|not allowed)"
    r"|unsupported_value[^.]{0,40}stream",
    re.IGNORECASE,
)


def is_token_limit_error(error: BaseException) -> bool:
    """Token/size-limit class: request too large, token ceiling, or oversized file."""
    if isinstance(error, AllProvidersExhaustedError):
        return True
    if isinstance(error, AttachmentValidationError):
        return error.size_related
    status = getattr(error, "status_code", None)
    if status == 413:
        return True
    return bool(_TOKEN_LIMIT_PATTERNS.search(str(error)))


def classify_model_unavailability(error: BaseException) -> Optional[str]:
    """Return 'organization_verification', 'model_not_found', 'stream_unsupported' or None."""
    text = str(error)
    if _ORG_VERIFICATION.search(text):
        return "organization_verification"
    if _STREAM_UNSUPPORTED.search(text):
        return "stream_unsupported"
    if _MODEL_NOT_FOUND.search(text):
        return "model_not_found"
    return None


def is_stream_specific(error: BaseException) -> bool:
    """The vendor refused streaming for this call rather than the model itself."""
    return classify_model_unavailability(error) == "stream_unsupported"
