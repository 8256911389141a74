import logging

from snippet_data.core.config import settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    resolved = str(level or settings.LOG_LEVEL or "INFO").strip().upper()
    logging.basicConfig(level=getattr(logging, resolved, logging.INFO), format=_FORMAT)
    # statement text is only echoed when DB_ECHO is on
    if not settings.DB_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
