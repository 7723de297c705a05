"""Pytest fixtures shared across the test suite."""

import pytest

from mirror.store import MirrorStore
from tests.app_helpers import FakeCatalog


@pytest.fixture
def store(tmp_path):
    """A mirror store backed by a throwaway SQLite database."""

    mirror = MirrorStore.from_dsn(f"sqlite:///{(tmp_path / 'mirror.db').as_posix()}")
    mirror.ensure_schema()
    yield mirror
    mirror.dispose()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def sleeps():
    return []
