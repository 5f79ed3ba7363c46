"""Integration tests for the client working against a running service.

The service is a FastAPI app (fake_service.py) mounted through
httpx.ASGITransport, so requests go through real HTTP framing and
event-stream bodies without opening sockets.
"""
