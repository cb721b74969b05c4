"""
Configuration du logging applicatif (stdout, format horodaté).
"""

import logging
import sys
from typing import Optional

from pollwatch.config import settings


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Installe un handler stdout sur le logger racine du package. Idempotent."""
    logger = logging.getLogger("pollwatch")
    if logger.handlers:
        return logger  # déjà configuré
    logger.setLevel((level or settings.LOG_LEVEL).upper())
    handler = logging.StreamHandler(sys.stdout)
    fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    # APScheduler est bavard en INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    return logger
