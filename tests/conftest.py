"""
Shared test fixtures and configuration for pytest.
"""

import logging
import os
import sys
from pathlib import Path

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


logger = logging.getLogger(__name__)


# ============================================================================
# Environment detection
# ============================================================================

def mongo_test_uri():
    return os.environ.get("DOCTRANSFER_TEST_MONGO_URI")


def is_mongo_available() -> bool:
    """Check if a MongoDB server is available for testing."""
    uri = mongo_test_uri()
    if not uri:
        return False

    try:
        from pymongo import MongoClient

        client = MongoClient(uri, serverSelectionTimeoutMS=2000)
        try:
            client.admin.command("ping")
        finally:
            client.close()
        return True

    except Exception as e:
        logger.debug(f"MongoDB not available: {e}")
        return False


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (requires MongoDB)")


def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests if MongoDB is not available."""
    if not any("integration" in item.keywords for item in items):
        return
    if is_mongo_available():
        return

    skip_mongo = pytest.mark.skip(
        reason="MongoDB not available (set DOCTRANSFER_TEST_MONGO_URI to a running server)"
    )

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_mongo)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def server():
    """In-memory store server shared by every connection a test opens."""
    from doctransfer.store.memory_store import MemoryServer

    return MemoryServer()


@pytest.fixture
def store_factory(server):
    """Store factory that hands out connections to the in-memory server."""
    from doctransfer.store.memory_store import MemoryDocumentStore

    opened = []

    def factory(connection_target):
        store = MemoryDocumentStore(server)
        opened.append(store)
        return store

    factory.opened = opened
    return factory


@pytest.fixture
def config(tmp_path):
    """Transfer configuration rooted in a temporary directory."""
    from doctransfer.config.config_loader import TransferConfig

    config = TransferConfig(load_env_file=False)
    config.set("paths.exports_dir", str(tmp_path / "exports"))
    config.set("paths.temp_dir", str(tmp_path / "temp"))
    config.set("paths.uploads_dir", str(tmp_path / "uploads"))
    for key in ("exports_dir", "temp_dir", "uploads_dir"):
        (tmp_path / key.replace("_dir", "")).mkdir()
    return config


@pytest.fixture
def orchestrator(config, store_factory):
    from doctransfer.engine.orchestrator import TransferOrchestrator

    return TransferOrchestrator(config=config, store_factory=store_factory)
