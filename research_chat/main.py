"""Main application entry point.

Runs the NiceGUI chat interface against the configured backend.
Environment variables are loaded from .env file.
"""

import logging
import os
import sys

from dotenv import load_dotenv

# Load environment variables before any other imports that might need them
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Application entry point."""
    from nicegui import ui

    from research_chat.config import get_client_config
    from research_chat.ui.chat_page import chat_page  # noqa: F401 - Registers the page

    config = get_client_config()
    port = int(os.getenv("PORT", "8080"))

    logger.info(f"Using backend at {config.api_base_url}")
    logger.info(f"Chat UI available at http://localhost:{port}/")

    ui.run(
        title="Research Assistant",
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        reload=False,
        storage_secret=os.getenv("NICEGUI_STORAGE_SECRET", "research-chat-secret"),
    )


if __name__ in {"__main__", "__mp_main__"}:
    main()
