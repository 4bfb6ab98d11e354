import logging
import sys
from typing import Iterable

# one line per request/response is too chatty for a local tracker
QUIET_LOGGERS = ("uvicorn.access", "httpx")


def setup_logging(level: str = "INFO", quiet: Iterable[str] = QUIET_LOGGERS) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    logging.getLogger("backend").setLevel(numeric_level)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
