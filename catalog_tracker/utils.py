# catalog_tracker/utils.py
"""Shared utilities: logging setup, retry decorator and list chunking."""
import logging
import time
from functools import wraps

from .config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"


def get_logger(name=__name__):
    level = getattr(logging, LOG_LEVEL, logging.INFO)
    logging.basicConfig(format=LOG_FORMAT, level=level)
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger("catalog_tracker").setLevel(level)
    return logging.getLogger(name)


logger = get_logger("catalog_tracker")


def retry(exceptions, tries=3, delay=1, backoff=2, logger=logger):
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    logger.warning("Retryable error: %s, retrying in %s sec", e, mdelay)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)
        return f_retry
    return deco_retry


def chunk(items, size):
    """Split ``items`` into consecutive lists of at most ``size`` elements."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]
