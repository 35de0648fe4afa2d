import logging

from app.core.config import settings

# httpx logs every request URL at INFO; Gemini URLs carry the API key as a query param
_QUIET_LIBRARIES = ("httpx", "httpcore", "openai", "anthropic")


def get_logger(name: str) -> logging.Logger:
    """Simple logger factory."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "[%(asctime)s] [%(levelname)s] [%(name)s]: %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(_level(settings.LOG_LEVEL))
        logger.propagate = False
    return logger


def quiet_vendor_loggers(level: int = logging.WARNING) -> None:
    for name in _QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(level)


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)
