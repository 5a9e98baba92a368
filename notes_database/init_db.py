"""
Database initialization/migration script.

Run this script to create all required tables and apply pending migrations.
"""
import logging

from .config import get_settings
from .repository import NoteStore


# PUBLIC_INTERFACE
def init_db(settings=None):
    """Creates missing tables and runs pending migrations; returns the names executed."""
    store = NoteStore.from_settings(settings or get_settings())
    try:
        return store.init()
    finally:
        store.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    executed = init_db()
    print("Database tables created successfully.")
    print(f"Migrations applied: {', '.join(executed) if executed else 'none pending'}")
