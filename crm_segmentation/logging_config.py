"""Structured logger setup shared by the API, pipeline and services."""
import logging
from pythonjsonlogger import jsonlogger
from crm_segmentation.config import settings


def get_logger(name: str) -> logging.Logger:
    """
    Configure a JSON logger once and reuse it.

    Extra fields passed via ``extra=`` end up as top-level JSON keys, so
    customer and organization ids stay searchable.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    formatter = jsonlogger.JsonFormatter(
        "%(levelname)s %(name)s %(message)s %(asctime)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(settings.LOG_LEVEL)
    logger.propagate = False
    return logger
