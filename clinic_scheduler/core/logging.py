import logging

from clinic_scheduler.core import config

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'

_configured = False


def configure_logging(level: str | None = None) -> None:
    global _configured

    if _configured:
        return

    root_logger = logging.getLogger()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel((level or config.LOG_LEVEL).upper())

    _configured = True
