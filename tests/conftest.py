"""
Pytest configuration and fixtures.
"""

import logging
from typing import Callable

import pytest

from config.settings import Settings
from core.domain.entities import EvaluationRequest
from tests.factories import make_request


@pytest.fixture
def settings() -> Settings:
    """Defaults only; ignores any .env in the working directory."""
    return Settings(_env_file=None)


@pytest.fixture
def request_factory() -> Callable[..., EvaluationRequest]:
    return make_request


@pytest.fixture
def evaluation_request() -> EvaluationRequest:
    return make_request()


@pytest.fixture
def restore_logging():
    """Undo handler and level changes made by setup_logging."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
