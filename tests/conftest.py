"""
Shared fixtures for member_sync tests.
"""

import logging

import pytest

from member_sync.storage.db import ProfileDatabase
from member_sync.utils.logging import AUDIT_LOGGER_NAME, ROOT_LOGGER_NAME


@pytest.fixture
def database():
    """Initialized in-memory profile database."""
    db = ProfileDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture(autouse=True)
def reset_loggers():
    """Undo handler and propagation changes made by setup_logging()."""
    yield
    for name in (ROOT_LOGGER_NAME, AUDIT_LOGGER_NAME):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()
        logger.propagate = True
        logger.disabled = False
        logger.setLevel(logging.NOTSET)
