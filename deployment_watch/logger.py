import logging
import sys

ROOT_LOGGER = "deployment_watch"


def setup_logging(level="INFO"):
    # stdout carries user-facing output, diagnostics go to stderr
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        stream=sys.stderr,
                        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')


def get_logger(name=None):
    if not name:
        return logging.getLogger(ROOT_LOGGER)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
