"""Entry point: serve the chat gateway with the traffic SIM attached."""

import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from tourney_chat.api import create_fastapi_app
from tourney_chat.api.routes import control
from tourney_chat.app import Application
from tourney_chat.config import ChatSettings
from tourney_chat.logging_config import get_logger, setup_logging
from sim import Sim

logger = get_logger(__name__)


def main():
    """Load .env, configure logging and run uvicorn."""
    load_dotenv(Path(__file__).resolve().parent / ".env")
    setup_logging()

    settings = ChatSettings.from_env()
    api_host = os.getenv("API_HOST", "localhost")
    api_port = int(os.getenv("API_PORT", "8000"))

    # Seeding the SIM tournament needs the local backend
    if settings.backend == "local":
        control.set_sim_instance(
            Sim(
                api_url=f"http://{api_host}:{api_port}",
                pace=float(os.getenv("SIM_PACE", "1.0")),
            )
        )

    logger.info("Serving chat gateway on %s:%d (backend=%s)", api_host, api_port, settings.backend)
    uvicorn.run(
        create_fastapi_app(Application(settings=settings)),
        host=api_host,
        port=api_port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
