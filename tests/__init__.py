"""Test package for the research chat client.

Structure:
    - unit/: Components driven through a scripted httpx.MockTransport backend
    - integration/: Full turns against an in-process FastAPI service

Leverages pytest with pytest-check for soft assertions.
"""
