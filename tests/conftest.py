import os
import sys
import tempfile

import pytest

# Ensure the package and the test helpers are importable
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

# Point every path setting at a scratch directory before recordgate.config loads
_TMP = tempfile.mkdtemp(prefix="recordgate-tests-")
os.environ["RECORDGATE_DB_PATH"] = os.path.join(_TMP, "recordgate.db")
os.environ["RECORDGATE_CHAINS_PATH"] = os.path.join(_TMP, "chains.json")
os.environ["RECORDGATE_STATIC_METADATA_PATH"] = os.path.join(_TMP, "static_metadata.json")
os.environ["RECORDGATE_LOG_BACKEND"] = "sqlite_hash_chain"

from recordgate.db import init_db, reset_db

init_db()


# Reset database before each test for isolation
@pytest.fixture(autouse=True)
def _reset_db():
    reset_db()
    yield
