"""NiceGUI interface - thin visualization layer for chat interactions.

Responsibilities:
    - Message display with live streaming of the assistant reply
    - Progress indicator for searching / responding / charting
    - Conversation history navigation and deletion

Contains no business logic. Subscribes to the session and stage tracker
and delegates every operation to the orchestrator and history sync.
"""
