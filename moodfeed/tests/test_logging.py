"""Tests for structured logging."""

import io
import logging

from moodfeed.logging import bind_run_id, current_run_id, get_logger, setup_logging


def test_run_id_is_appended_inside_bound_block():
    stream = io.StringIO()
    setup_logging("INFO", stream=stream)
    logger = get_logger("moodfeed.test")

    logger.info("outside")
    with bind_run_id("filter-20261017T120000-abcd1234"):
        logger.info("inside")
    logger.info("after")

    lines = stream.getvalue().splitlines()
    assert lines[0].endswith("| moodfeed.test | outside")
    assert lines[1].endswith("| inside | run=filter-20261017T120000-abcd1234")
    assert "run=" not in lines[2]
    assert current_run_id.get() is None


def test_setup_logging_quiets_http_clients():
    setup_logging("DEBUG", stream=io.StringIO())

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger().level == logging.DEBUG
    assert len(logging.getLogger().handlers) == 1
