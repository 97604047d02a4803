"""Logging configuration: one stream handler shared by the app and uvicorn loggers."""
import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> bool:
    """
    Install the relay's handler on the root logger. Leaves logging alone (and returns False)
    when the host process has already configured root handlers.
    """
    root = logging.getLogger()
    if root.handlers:
        return False

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=level, handlers=[handler])

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False
        uvicorn_logger.setLevel(level)
    return True
