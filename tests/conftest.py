"""Shared pytest fixtures."""

import pytest
from loguru import logger

from helpers import Upstream


@pytest.fixture(autouse=True)
def quiet_logs():
    """Keep loguru's default stderr sink out of test output."""
    logger.remove()
    yield
    logger.remove()


@pytest.fixture
def upstream():
    server = Upstream()
    try:
        yield server
    finally:
        server.close()
