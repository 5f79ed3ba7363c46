"""Unit tests for individual components in isolation.

Coverage:
    - streaming/: Event-stream decoding, stage tracking, session and turn orchestration
    - history/: Conversation list and history normalization
    - models/ and config: Validation and coercion of loosely shaped payloads

No network: the backend is a scripted handler behind httpx.MockTransport.
"""
