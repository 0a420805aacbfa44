from __future__ import annotations

import logging

import pytest
import structlog

from tests.factories import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def quiet_logging():
    # Uncached loggers so capsys swapping the streams never leaves a stale file behind.
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(logging.WARNING),
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()
