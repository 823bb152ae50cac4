"""
Pytest configuration for the ticketing tests.

This file adds the parent directory to the Python path so that tests
can import from the domain, repositories, services and api modules.
"""

import sys
from pathlib import Path

import pytest

# Add the project root to the Python path
# so tests can import domain, services, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fakes import Ticketing, build_ticketing  # noqa: E402


@pytest.fixture
def ticketing() -> Ticketing:
    """Services wired to in-memory repositories and scriptable gateways, clock frozen at NOW."""

    return build_ticketing()
