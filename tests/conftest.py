"""
conftest.py - Pytest Configuration and Fixtures

Provides shared fixtures and configuration for all test modules.
"""

import os
import shutil
import sys
import tempfile

import pytest

# Add src and tests to path for all tests
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))


# ============================================================================
# PYTEST MARKERS
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: tests that use sockets and threads")
    config.addinivalue_line("markers", "live: tests requiring a live directory server")


def pytest_addoption(parser):
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests against a live directory server"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless explicitly requested."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="Live tests disabled. Use --run-live to enable.")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ============================================================================
# SHARED FIXTURES
# ============================================================================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp = tempfile.mkdtemp()
    yield temp
    shutil.rmtree(temp, ignore_errors=True)


@pytest.fixture
def logger_handle(temp_dir):
    """Debug-level logger writing into the temp directory."""
    from logger import LogLevel, close_logger, init_logger
    handle = init_logger(os.path.join(temp_dir, "test.log"), min_level=LogLevel.DEBUG)
    yield handle
    close_logger(handle)


@pytest.fixture
def fake_server():
    """
    Factory for a FakeDirectoryServer plus an LDAPConnection on its client end.

    Usage:
        server, conn = fake_server(handler)
    """
    from connection import close, open_connection
    from test_utils import FakeDirectoryServer

    started = []

    def _start(handler, config=None, logger=None, debug_packets=False):
        server = FakeDirectoryServer(handler).start()
        conn = open_connection(server.client_sock, config=config, logger_handle=logger,
                               debug_packets=debug_packets)
        started.append((server, conn))
        return server, conn

    yield _start

    for server, conn in started:
        close(conn)
        server.stop()
