import logging

LOG_FORMAT = "[%(asctime)s] [%(name)s] %(levelname)s %(message)s"
DATE_FORMAT = "%H:%M:%S"


def configure_logging(level="INFO"):
    """Install one timestamped stream handler on the mixproxy logger."""
    logger = logging.getLogger("mixproxy")
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    if not any(getattr(h, "_mixproxy", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        handler._mixproxy = True
        logger.addHandler(handler)
    return logger
