from typing import Optional

from app.core.config import settings

_PRINTABLE = set(range(32, 127)) | {9, 10, 13}


def printable_ratio(data: bytes) -> float:
    if not data:
        return 0.0
    return sum(1 for b in data if b in _PRINTABLE) / len(data)


def sniff_text(data: bytes, min_ratio: float = settings.FALLBACK_PRINTABLE_RATIO) -> Optional[str]:
    """Treat unknown bytes as text only when nearly all of them are printable ASCII or whitespace."""
    if printable_ratio(data) < min_ratio:
        return None
    text = data.decode("utf-8", errors="replace")
    return text if text.strip() else None
