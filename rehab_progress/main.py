"""Entry points: the ``rehab-progress`` CLI and the ASGI factory."""

import logging
import sys

from rehab_progress.config import get_settings

# Loggers that are noisy at INFO during collaborator calls and SQL sessions.
QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "sqlalchemy.engine")


def setup_logging():
    settings = get_settings()
    level = getattr(logging, settings.log_level)

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def main():
    setup_logging()

    from rehab_progress.cli.commands import app

    app()


def create_asgi_app():
    """ASGI factory for ``uvicorn rehab_progress.main:create_asgi_app --factory``."""
    setup_logging()

    from rehab_progress.api.app import create_app

    return create_app()


if __name__ == "__main__":
    main()
