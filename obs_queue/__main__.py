"""Run the obs-queue server: ``python -m obs_queue``."""

import logging

import uvicorn

from obs_queue.api import create_app
from obs_queue.core import get_settings, setup_logging

LOGGER = logging.getLogger("obs_queue")


def main() -> None:
    settings = get_settings()
    setup_logging(settings)
    LOGGER.info(f"Starting on {settings.host}:{settings.port}")

    # log_config=None keeps the Rich handlers installed above
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
