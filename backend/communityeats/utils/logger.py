# communityeats/utils/logger.py

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logger(level: str = "INFO") -> logging.Logger:
    """Configure root logging once; later calls only adjust the level."""
    global _configured

    root = logging.getLogger()
    if not _configured:
        logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
        _configured = True
    root.setLevel(level.upper())
    return logging.getLogger("communityeats")
