import logging
import sys

DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DEBUG_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s [%(filename)s:%(lineno)d]'


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the ``taskledger`` logger tree and return its root."""
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    log_format = DEBUG_LOG_FORMAT if numeric_level <= logging.DEBUG else DEFAULT_LOG_FORMAT

    logger = logging.getLogger("taskledger")
    logger.setLevel(numeric_level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(log_format))
        logger.addHandler(handler)
    else:
        for handler in logger.handlers:
            handler.setFormatter(logging.Formatter(log_format))

    # httpx logs every Telegram long-poll request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logger
