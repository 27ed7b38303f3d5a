"""Entry point: ``kickauth`` console script or ``python -m kickauth.server.main``."""

from __future__ import annotations

import logging
import sys

import uvicorn
from dotenv import load_dotenv
from pydantic import ValidationError

from kickauth.config import Settings
from kickauth.server.app import create_app

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, stream=sys.stderr)
    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def run() -> None:
    load_dotenv()
    try:
        settings = Settings()
    except ValidationError as e:
        configure_logging()
        missing = ", ".join(
            "KICK_" + str(err["loc"][0]).upper() for err in e.errors() if err["loc"]
        )
        logger.error(f"Invalid or missing configuration: {missing}")
        raise SystemExit(1) from None

    configure_logging(settings.log_level)
    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
