"""Client configuration with environment variable loading.

Pydantic-based configuration for the chat client. Every backend path is
configurable so the client can talk to a proxy or directly to the service.
"""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# Load environment variables from .env file
load_dotenv()

DEFAULT_FALLBACK_TEXT = "I couldn't fetch the details. Please try again later."
DEFAULT_APOLOGY_TEXT = (
    "Sorry, I encountered an error while processing your request. Please try again."
)


class ClientConfig(BaseModel):
    """Configuration for the backend client and streaming engine.

    Attributes:
        api_base_url: Base URL of the generation service.
        auth_token: Bearer credential sent with every request, if any.
        chat_stream_path: Path of the streaming chat endpoint.
        chat_path: Path of the non-streaming chat endpoint.
        charts_path: Path of the chart-preparation endpoint.
        conversations_path: Path of the conversation collection.
        request_timeout: Timeout in seconds for a single HTTP request.
        history_refresh_seconds: Interval for refreshing the conversation list.
        fallback_text: Content used when a turn completes without any text.
        apology_text: Content of the synthetic message for a failed turn.
    """

    api_base_url: str = Field(
        default_factory=lambda: os.getenv("API_BASE_URL", "http://localhost:8000"),
        description="Base URL of the generation service",
    )
    auth_token: str | None = Field(
        default_factory=lambda: os.getenv("CHAT_AUTH_TOKEN") or None,
        description="Bearer token (None when unauthenticated)",
    )
    chat_stream_path: str = Field(
        default_factory=lambda: os.getenv("CHAT_STREAM_PATH", "/api/gemini/chat/stream"),
    )
    chat_path: str = Field(
        default_factory=lambda: os.getenv("CHAT_PATH", "/api/gemini/chat"),
    )
    charts_path: str = Field(
        default_factory=lambda: os.getenv("CHARTS_PATH", "/api/gemini/charts"),
    )
    conversations_path: str = Field(
        default_factory=lambda: os.getenv("CONVERSATIONS_PATH", "/api/gemini/conversations"),
    )
    request_timeout: float = Field(
        default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT", "120")),
        gt=0.0,
        description="Timeout in seconds for a single HTTP request",
    )
    history_refresh_seconds: float = Field(
        default_factory=lambda: float(os.getenv("HISTORY_REFRESH_SECONDS", "30")),
        gt=0.0,
    )
    fallback_text: str = Field(default=DEFAULT_FALLBACK_TEXT, min_length=1)
    apology_text: str = Field(default=DEFAULT_APOLOGY_TEXT, min_length=1)

    @field_validator("api_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop the trailing slash."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("API_BASE_URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("auth_token")
    @classmethod
    def blank_token_is_none(cls, v: str | None) -> str | None:
        """Treat a whitespace-only token as no token."""
        if v is None or not v.strip():
            return None
        return v.strip()

    def url(self, path: str) -> str:
        """Join a backend path onto the base URL."""
        return f"{self.api_base_url}/{path.lstrip('/')}"


def get_client_config() -> ClientConfig:
    """Create client configuration from environment.

    Returns:
        Configured ClientConfig instance.

    Raises:
        ValueError: If the base URL is not an http(s) URL.
    """
    return ClientConfig()
