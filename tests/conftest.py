import logging

import pytest


@pytest.fixture(autouse=True)
def _reset_backr_logger():
    yield
    logger = logging.getLogger("backr")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
