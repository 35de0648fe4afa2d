# app/llm/service/model_router.py
from typing import Dict, Iterable, List, Optional

from app.core.logger import get_logger

logger = get_logger("ModelRouter")

VENDORS = ("openai", "anthropic", "google")

VENDOR_ALIASES: Dict[str, str] = {
    "openai": "openai",
    "gpt": "openai",
    "anthropic": "anthropic",
    "claude": "anthropic",
    "google": "google",
    "gemini": "google",
}

MODEL_TO_VENDOR: Dict[str, str] = {
    "gpt-4o": "openai",
    "gpt-4o-mini": "openai",
    "gpt-4-turbo": "openai",
    "gpt-4.1": "openai",
    "gpt-4.1-mini": "openai",
    "gpt-3.5-turbo": "openai",
    "o1": "openai",
    "o1-mini": "openai",
    "o3": "openai",
    "o3-mini": "openai",
    "o4-mini": "openai",
    "claude-3-haiku-20240307": "anthropic",
    "claude-3-5-haiku-20241022": "anthropic",
    "claude-3-5-sonnet-20241022": "anthropic",
    "claude-3-7-sonnet-20250219": "anthropic",
    "claude-sonnet-4-20250514": "anthropic",
    "claude-opus-4-20250514": "anthropic",
    "gemini-1.5-flash": "google",
    "gemini-1.5-pro": "google",
    "gemini-2.0-flash": "google",
    "gemini-2.5-flash": "google",
    "gemini-2.5-pro": "google",
}

_FAMILY_PREFIXES = (
    ("gpt-", "openai"),
    ("o1", "openai"),
    ("o3", "openai"),
    ("o4", "openai"),
    ("claude", "anthropic"),
    ("gemini", "google"),
)

# Requested model -> nearest model on each other vendor
MODEL_EQUIVALENTS: Dict[str, Dict[str, str]] = {
    "gpt-4o": {"anthropic": "claude-3-5-sonnet-20241022", "google": "gemini-1.5-pro"},
    "gpt-4.1": {"anthropic": "claude-sonnet-4-20250514", "google": "gemini-2.5-pro"},
    "gpt-4-turbo": {"anthropic": "claude-3-5-sonnet-20241022", "google": "gemini-1.5-pro"},
    "gpt-4o-mini": {"anthropic": "claude-3-5-haiku-20241022", "google": "gemini-1.5-flash"},
    "gpt-4.1-mini": {"anthropic": "claude-3-5-haiku-20241022", "google": "gemini-2.0-flash"},
    "gpt-3.5-turbo": {"anthropic": "claude-3-haiku-20240307", "google": "gemini-1.5-flash"},
    "o1": {"anthropic": "claude-opus-4-20250514", "google": "gemini-2.5-pro"},
    "o3": {"anthropic": "claude-opus-4-20250514", "google": "gemini-2.5-pro"},
    "o3-mini": {"anthropic": "claude-3-7-sonnet-20250219", "google": "gemini-2.5-flash"},
    "o4-mini": {"anthropic": "claude-3-7-sonnet-20250219", "google": "gemini-2.5-flash"},
    "claude-3-haiku-20240307": {"openai": "gpt-4o-mini", "google": "gemini-1.5-flash"},
    "claude-3-5-haiku-20241022": {"openai": "gpt-4o-mini", "google": "gemini-1.5-flash"},
    "claude-3-5-sonnet-20241022": {"openai": "gpt-4o", "google": "gemini-1.5-pro"},
    "claude-3-7-sonnet-20250219": {"openai": "gpt-4o", "google": "gemini-2.5-flash"},
    "claude-sonnet-4-20250514": {"openai": "gpt-4.1", "google": "gemini-2.5-pro"},
    "claude-opus-4-20250514": {"openai": "o3", "google": "gemini-2.5-pro"},
    "gemini-1.5-flash": {"openai": "gpt-4o-mini", "anthropic": "claude-3-5-haiku-20241022"},
    "gemini-2.0-flash": {"openai": "gpt-4o-mini", "anthropic": "claude-3-5-haiku-20241022"},
    "gemini-2.5-flash": {"openai": "gpt-4.1-mini", "anthropic": "claude-3-7-sonnet-20250219"},
    "gemini-1.5-pro": {"openai": "gpt-4o", "anthropic": "claude-3-5-sonnet-20241022"},
    "gemini-2.5-pro": {"openai": "gpt-4.1", "anthropic": "claude-sonnet-4-20250514"},
}


class ModelRouter:
    """Maps model names to vendors and picks cross-vendor equivalents on failover."""

    def resolve_provider(self, model_or_provider: Optional[str]) -> Optional[str]:
        if not model_or_provider:
            return None
        name = model_or_provider.strip().lower()
        if name in VENDOR_ALIASES:
            return VENDOR_ALIASES[name]
        if name in MODEL_TO_VENDOR:
            return MODEL_TO_VENDOR[name]
        for prefix, vendor in _FAMILY_PREFIXES:
            if name.startswith(prefix):
                return vendor
        return None

    def is_model_name(self, model_or_provider: Optional[str]) -> bool:
        """True when the input names a model rather than a vendor."""
        if not model_or_provider:
            return False
        name = model_or_provider.strip().lower()
        return name not in VENDOR_ALIASES and self.resolve_provider(name) is not None

    def equivalent_model(self, vendor: str, requested_model: Optional[str]) -> Optional[str]:
        """The model to ask `vendor` for. None means the vendor's default."""
        if not self.is_model_name(requested_model):
            return None
        model = requested_model.strip()
        if self.resolve_provider(model) == vendor:
            return model
        return MODEL_EQUIVALENTS.get(model.lower(), {}).get(vendor)

    def build_order(self, requested: Optional[str], configured: Iterable[str]) -> List[str]:
        order: List[str] = []
        for vendor in configured:
            if vendor not in order:
                order.append(vendor)

        preferred = self.resolve_provider(requested)
        if preferred in order:
            order.remove(preferred)
            order.insert(0, preferred)
        elif requested:
            logger.debug(f"Requested '{requested}' does not map to a configured vendor; using configured order")
        return order
