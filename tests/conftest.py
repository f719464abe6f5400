"""Shared fixtures for quill-orm tests."""

from __future__ import annotations

import pytest
from shapes import Country, Note, User

from quill_orm import DB, HookRegistry, MetadataCache, open_db
from quill_orm.dialects import Dialect, get_dialect
from quill_orm.hooks import build_default_hooks


@pytest.fixture
def cache() -> MetadataCache:
    """Fresh metadata cache for each test."""
    return MetadataCache()


@pytest.fixture
def hooks() -> HookRegistry:
    """Isolated registry holding the default stages."""
    return build_default_hooks()


@pytest.fixture
def sqlite() -> Dialect:
    return get_dialect("sqlite")


@pytest.fixture
def postgres() -> Dialect:
    return get_dialect("postgres")


@pytest.fixture
def mysql() -> Dialect:
    return get_dialect("mysql")


@pytest.fixture
def db(hooks: HookRegistry):
    """In-memory SQLite database with the user, note and country tables."""
    Note.events.clear()
    database: DB = open_db("sqlite-mem", hooks=hooks)
    database.create_table(User, Note, Country)
    yield database
    database.close()
