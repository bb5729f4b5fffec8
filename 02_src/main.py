"""Main entry point for the conversation sync demo server."""

import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from chat_core.api import create_fastapi_app
from chat_core.app import Application
from chat_core.config import SyncSettings
from chat_core.logging_config import setup_logging
from chat_core.models import Profile
from sim import VIRTUAL_USERS, Sim, SimBackend

LOCAL_USER = Profile(user_id="user_000", display_name="You")


def main():
    """Run the application."""
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    setup_logging()

    # Get configuration from environment
    api_host = os.getenv("API_HOST", "localhost")
    api_port = int(os.getenv("API_PORT", "8000"))

    # Simulated server with one group conversation
    backend = SimBackend()
    for profile in [LOCAL_USER, *VIRTUAL_USERS]:
        backend.add_profile(profile)
    conversation = backend.create_conversation(
        "Team chat", [LOCAL_USER.user_id, *(u.user_id for u in VIRTUAL_USERS)]
    )

    application = Application(
        services=backend.services_for(LOCAL_USER.user_id),
        self_id=LOCAL_USER.user_id,
        settings=SyncSettings.from_env(),
    )
    sim = Sim(backend, conversation)

    app = create_fastapi_app(application, sim=sim)

    # Run with uvicorn
    uvicorn.run(
        app,
        host=api_host,
        port=api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
