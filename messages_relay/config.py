"""
Configuration Management Module

Configures proxy parameters via environment variables or .env file.
A single Settings value is built at process start and handed to every
component that needs it.
"""

from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Proxy Configuration Class

    All configuration items can be overridden by environment variables, with names matching fields (uppercase).
    """

    # Application Config
    APP_NAME: str = "Messages Relay"
    DEBUG: bool = False
    HOST: str = "127.0.0.1"
    PORT: int = 8787
    # Comma-separated list of allowed origins for CORS
    ALLOWED_ORIGINS: str = "*"

    # Routing Config
    # Monitor mode forwards every request to the native Messages API untouched
    MONITOR_MODE: bool = False
    # Global target model, applied before tier overrides
    DEFAULT_MODEL: Optional[str] = None
    # Tier overrides, matched against the lower-cased requested model id
    MODEL_OPUS: Optional[str] = None
    MODEL_SONNET: Optional[str] = None
    MODEL_HAIKU: Optional[str] = None
    # Only pre-warmed; requests never carry a subagent marker
    MODEL_SUBAGENT: Optional[str] = None
    # Force the native chat backend whenever it is configured
    USE_GEMINI_NATIVE: bool = False
    # Substrings of a target model id that select the native chat backend
    NATIVE_CHAT_MARKERS: list[str] = ["gemini", "google/"]
    # Target ids without this separator go to the native Messages API
    NAMESPACE_SEPARATOR: str = "/"

    # Aggregator Config
    OPENROUTER_API_KEY: Optional[str] = None
    OPENROUTER_BASE_URL: str = "https://openrouter.ai/api/v1"
    OPENROUTER_REFERER: str = "https://github.com/messages-relay/messages-relay"
    OPENROUTER_TITLE: str = "Messages Relay"

    # Native Messages API Config
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_BASE_URL: str = "https://api.anthropic.com"
    ANTHROPIC_VERSION: str = "2023-06-01"

    # Native Chat Config
    GEMINI_API_KEY: Optional[str] = None

    # Adapter Config
    ADAPTER: Optional[Literal["openrouter", "ollama"]] = None
    OLLAMA_HOST: str = "http://localhost:11434"
    # Routing prefix removed from model ids before they reach the local server
    OLLAMA_MODEL_PREFIX: str = "ollama/"
    GROK_MARKERS: list[str] = ["grok"]

    # HTTP Client Config
    # Request timeout (seconds)
    HTTP_TIMEOUT: int = 600

    # Bookkeeping Config
    DEFAULT_CONTEXT_WINDOW: int = 200000
    # Directory of the token status file, defaults to the system temp dir
    STATUS_DIR: Optional[str] = None
    STATUS_FILE_PREFIX: str = "relay-tokens"
    # USD per 1M tokens, used when the backend reports no cost
    INPUT_PRICE_PER_MTOK: Optional[float] = None
    OUTPUT_PRICE_PER_MTOK: Optional[float] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def tier_overrides(self) -> list[tuple[str, Optional[str]]]:
        """Tier substrings in match order with their configured targets"""
        return [
            ("opus", self.MODEL_OPUS),
            ("sonnet", self.MODEL_SONNET),
            ("haiku", self.MODEL_HAIKU),
        ]

    @property
    def mappings(self) -> dict[str, Optional[str]]:
        return {
            "opus": self.MODEL_OPUS,
            "sonnet": self.MODEL_SONNET,
            "haiku": self.MODEL_HAIKU,
            "subagent": self.MODEL_SUBAGENT,
        }
