"""
Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest and provides common fixtures
and configuration for all test modules.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from adlingo.core.exceptions import LLMRateLimitError
from adlingo.core.retry_manager import RetryConfig, RetryManager
from adlingo.persistence.database import Database
from tests.fakes import CharTokenCounter


@pytest.fixture
def token_counter():
    return CharTokenCounter()


@pytest.fixture
def retry_manager():
    """Retry manager with no backoff delays."""
    instant = RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0, jitter=0.0)
    return RetryManager(instant, custom_configs={LLMRateLimitError: instant})


@pytest.fixture
def store(tmp_path):
    """File-backed database (connections are per thread, so no :memory:)."""
    database = Database(str(tmp_path / "adlingo.db"))
    yield database
    database.close()


@pytest.fixture
def sample_html():
    """Small landing page with metadata, inline markup and a script."""
    return """<!DOCTYPE html>
<html>
<head>
<title>Sleep better tonight</title>
<meta name="description" content="The pillow that changes everything">
<style>.hero { color: red; }</style>
</head>
<body>
<div class="hero">
  Welcome back
  <h1>Sleep <strong>better</strong> tonight</h1>
  <p>Anna Svensson tried it for <em>30 nights</em>.</p>
  <img src="/img/pillow.jpg" alt="A soft pillow">
</div>
<script>window.track = function() { return "<p>not text</p>"; };</script>
</body>
</html>"""
