import logging
import os
import tempfile

# Settings create their directories at import time; keep them out of $HOME.
os.environ.setdefault("LEARNRELAX_DATA_DIR", tempfile.mkdtemp(prefix="learnrelax-tests-"))

import pytest

from storage.db import create_queue_engine, init_db, session_factory_for
from services.pending_actions_queue import PendingActionsQueue


@pytest.fixture()
def engine():
    engine = init_db(create_queue_engine(None))
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return session_factory_for(engine)


@pytest.fixture()
def queue(session_factory):
    return PendingActionsQueue(session_factory)


@pytest.fixture()
def sync_logger():
    return logging.getLogger("tests.sync")
