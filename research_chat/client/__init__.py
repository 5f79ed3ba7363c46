"""HTTP access to the generation service."""

from research_chat.client.backend import BackendClient, BackendError, ChatRequestError

__all__ = ["BackendClient", "BackendError", "ChatRequestError"]
