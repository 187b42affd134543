import logging

import pytest

from buddhabrot.params import ColorScheme, RenderParameters
from buddhabrot.util.logging_setup import get_logger


@pytest.fixture(autouse=True)
def _reset_package_logger():
    yield
    logger = get_logger()
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def small_params():
    return RenderParameters(iterations=200, samples=5000, zoom=1.0, center_x=-0.7, center_y=0.0,
                            color_scheme=ColorScheme.CLASSIC)


@pytest.fixture
def endless_params():
    # Far more samples than any test waits for; these jobs end by cancellation.
    return RenderParameters(iterations=500, samples=10**12, zoom=1.0, center_x=-0.7, center_y=0.0)
