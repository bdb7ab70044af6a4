import logging
import sys

LOGGER_NAME = "patchdeps"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: int = logging.INFO, stream=None) -> logging.Logger:
    """
    Attach a single stream handler to the `patchdeps` logger.

    Propagation is disabled so host applications that configure the root
    logger (build tools, test runners) do not print every record twice.
    Calling this again replaces the handler installed by a previous call.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        if getattr(handler, "_patchdeps_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler._patchdeps_handler = True
    logger.addHandler(handler)

    return logger
