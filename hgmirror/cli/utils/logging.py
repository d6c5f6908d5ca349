import logging
import sys


logger = logging.getLogger("hgmirror")


def configure_logging(debug: bool):
    """
    Log hgmirror messages to stdout; DEBUG adds the hg command lines.
    """
    log_level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(log_level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
