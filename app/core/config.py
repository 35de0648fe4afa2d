import os
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global configuration for environment variables."""

    APP_NAME: str = "Multimodal Chat Orchestrator"
    ENV: str = os.getenv("ENV", "development")

    # Server config
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", 8080))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # API Keys (a vendor is active only when its key is present)
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY")
    GEMINI_ENDPOINT: str = os.getenv("GEMINI_ENDPOINT", "https://generativelanguage.googleapis.com")

    # Known-stable default model per vendor
    OPENAI_DEFAULT_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_DEFAULT_MODEL: str = "claude-3-haiku-20240307"
    GEMINI_DEFAULT_MODEL: str = "gemini-1.5-flash"

    # Generation
    TEMPERATURE: float = 0.7
    MAX_OUTPUT_TOKENS: int = 4000
    REQUEST_TIMEOUT_MS: int = int(os.getenv("REQUEST_TIMEOUT_MS", "120000"))
    PSEUDO_STREAM_DELAY_MS: int = 20

    # Rate limiting (fixed window per caller)
    RATE_LIMIT_WINDOW_MS: int = int(os.getenv("RATE_LIMIT_WINDOW_MS", "900000"))
    RATE_LIMIT_MAX_REQUESTS: int = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "100"))
    RATE_LIMIT_SWEEP_INTERVAL_S: int = 300

    # Attachment processing
    MAX_TOKENS_PER_CHUNK: int = 8000
    FALLBACK_SNIFF_MAX_BYTES: int = 1024 * 1024
    FALLBACK_PRINTABLE_RATIO: float = 0.85
    FILE_READ_TIMEOUT_S: float = 30.0
    MAX_IN_MEMORY_FILE_BYTES: int = 100 * 1024 * 1024
    REMOTE_FETCH_TIMEOUT_S: float = 30.0

    # PDF token estimation policy
    PDF_TOKEN_FLOOR: int = 100
    PDF_LINEAR_THRESHOLD_BYTES: int = 1024 * 1024
    PDF_BYTES_PER_TOKEN: int = 10 * 1024
    PDF_MAX_BYTES: int = 50 * 1024 * 1024
    PDF_MAX_TOKENS: int = 100000

    # Debug
    DEBUG: bool = os.getenv("DEBUG", "False").lower() in ("1", "true")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    def configured_vendors(self) -> list[str]:
        """Vendors with credentials, in fixed insertion order."""
        vendors = []
        if self.OPENAI_API_KEY:
            vendors.append("openai")
        if self.ANTHROPIC_API_KEY:
            vendors.append("anthropic")
        if self.GEMINI_API_KEY:
            vendors.append("google")
        return vendors


settings = Settings()
