"""Conversation history synchronization with the backend."""

from research_chat.history.sync import HistorySync, HistorySyncError, format_activity

__all__ = ["HistorySync", "HistorySyncError", "format_activity"]
