from __future__ import annotations

import logging


def configure_app_logging(level: str = "INFO") -> None:
    """
    Minimal logging configuration for this repo.

    Notes:
    - We use stdlib logging (no extra deps).
    - Uvicorn already configures handlers; this function mainly sets levels for our package.
    - Set `APP_LOG_LEVEL=DEBUG` to see every permission decision and cache hit/miss.
    """

    normalized = level.upper()
    logging.getLogger("pensiondesk").setLevel(normalized)
    # Ensure child loggers under pensiondesk.* inherit this level.
    logging.getLogger("pensiondesk").propagate = True
