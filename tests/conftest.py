"""
pytest configuration for mrf_pipeline tests.

Adds src directory to Python path for imports and sets up test environment.
"""

import logging
import os
import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """Keep host MRF_* settings and JSON_LOGS out of tests."""
    for key in list(os.environ):
        if key.startswith("MRF_") or key == "JSON_LOGS":
            monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture(autouse=True)
def reset_log_context():
    """Clear contextvars and root handlers installed by setup_logging."""
    from mrf_pipeline.common.logging.context import clear_log_context

    clear_log_context()
    yield
    clear_log_context()
    logging.getLogger().handlers.clear()
