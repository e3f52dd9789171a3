import sys
assert sys.version_info >= (3, 9), "Requires Python 3.9+"
import logging

logger = logging.getLogger('legismcp')
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter('[%(levelname)s] %(name)s: %(message)s'))
logger.addHandler(handler)

import pydantic


def _major(version):
    return int(version.split('.')[0])


if _major(pydantic.VERSION) < 2:
    raise ImportError("legismcp requires pydantic 2 or later")


def set_log_level(level):
    """Set the package log level, e.g. set_log_level(logging.DEBUG) to trace frames."""
    logger.setLevel(level)
