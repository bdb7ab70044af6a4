import io
import logging

import pytest

from patchdeps.logging import LOGGER_NAME, setup_logging


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def test_setup_logging_writes_to_stream():
    stream = io.StringIO()
    setup_logging(logging.INFO, stream=stream)

    logging.getLogger("patchdeps.pipeline.driver").info("Patched %s", "foo")
    logging.getLogger("patchdeps.cache.store").debug("hidden")

    output = stream.getvalue()
    assert "INFO" in output
    assert "patchdeps.pipeline.driver: Patched foo" in output
    assert "hidden" not in output


def test_setup_logging_replaces_previous_handler():
    first = io.StringIO()
    second = io.StringIO()

    setup_logging(stream=first)
    logger = setup_logging(stream=second)
    logger.warning("once")

    assert len(logger.handlers) == 1
    assert first.getvalue() == ""
    assert "once" in second.getvalue()
