import logging

from intake.core.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d - %(message)s"

logger = logging.getLogger("intake")


def configure_logging(level: str = LOG_LEVEL) -> logging.Logger:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger.setLevel(level)
    return logger
