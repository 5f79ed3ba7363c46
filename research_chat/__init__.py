"""Research Chat - streaming client for a web-research chat service.

Sends prompts to the generation backend, renders the reply as it streams in,
tracks search / answer / chart progress, and keeps conversation history in
step with the server.

Components:
    - streaming: event-stream decoding, progress tracking, turn orchestration
    - history: conversation list and history synchronization
    - client: HTTP access to the backend
    - models: message and event schemas
    - ui: NiceGUI chat interface
"""

__version__ = "0.1.0"
