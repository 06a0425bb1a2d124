"""Pytest configuration shared by the backstream test suite."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in sys.path so tests.* helpers import cleanly
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
