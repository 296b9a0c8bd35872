"""Rich console logging for the server process."""

import logging

from rich.console import Console
from rich.logging import RichHandler

from obs_queue.core.config import Settings

# Libraries that log every request or frame at INFO
_CHATTY = ("httpx", "aiohttp", "asyncpg", "uvicorn.access")


def setup_logging(settings: Settings) -> None:
    level = logging.getLevelName(settings.log_level)

    handler: logging.Handler
    rich_error: Exception | None = None
    try:
        handler = RichHandler(
            console=Console(width=120),
            show_path=False,
            markup=False,
            rich_tracebacks=True,
            tracebacks_width=120,
        )
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%Y-%m-%d %H:%M:%S]"))
    except Exception as e:
        rich_error = e
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    # uvicorn may have configured the root logger already
    logging.basicConfig(level=level, handlers=[handler], force=True)

    quiet = logging.INFO if level == logging.DEBUG else logging.WARNING
    for name in _CHATTY:
        logging.getLogger(name).setLevel(quiet)
    logging.getLogger("asyncio").setLevel(logging.ERROR)

    logger = logging.getLogger(__name__)
    if rich_error is not None:
        logger.warning(f"Rich console unavailable ({rich_error}), using plain log lines")
    logger.info(f"Log level {settings.log_level}")
