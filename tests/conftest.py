import asyncio
import os
import sys
from pathlib import Path

import pytest

# Ensure project root is importable during pytest collection
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

# Settings are read at import time, so defaults must exist before app modules load
os.environ.setdefault('STORAGE_BACKEND', 'memory')
os.environ.setdefault('DATABASE_URL', 'sqlite://:memory:')
os.environ.setdefault('API_URL', 'http://localhost:8080')

from apps.fragments.storage import InMemoryFragmentStore  # noqa: E402


class FixedClock:
    """Clock returning increasing ISO timestamps so ordering and refreshes are observable."""

    def __init__(self):
        self.ticks = 0

    def __call__(self) -> str:
        self.ticks += 1
        return f'2024-01-01T00:00:{self.ticks:02d}+00:00'


@pytest.fixture
def store():
    return InMemoryFragmentStore()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def run():
    return asyncio.run
