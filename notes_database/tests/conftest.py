import pytest
from sqlalchemy import text

from notes_database.db import create_db_engine
from notes_database.pool import ConnectionPool
from notes_database.repository import NoteStore


@pytest.fixture
def db_url(tmp_path):
    """URL of a fresh SQLite file; every pooled connection sees the same data."""
    return f"sqlite:///{tmp_path / 'notes.sqlite'}"


@pytest.fixture
def engine(db_url):
    engine = create_db_engine(db_url)
    yield engine
    engine.dispose()


@pytest.fixture
def pool(engine):
    pool = ConnectionPool(engine, max_connections=4)
    yield pool
    pool.close()


@pytest.fixture
def store(pool):
    """Initialised store: tables created and migrations applied."""
    store = NoteStore(pool, default_timeout=5.0)
    store.init()
    return store


def fetch_all(pool, sql, **params):
    """Runs a read-only statement on a pooled connection."""
    with pool.connection() as conn:
        rows = conn.execute(text(sql), params).all()
        conn.rollback()
    return rows
