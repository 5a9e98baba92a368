"""
Idempotent schema migrations.

Each migration runs at most once per database: its name is recorded in the
``migrations`` table inside the same transaction as its changes, and the
runner skips any name it finds there.
"""
import logging
from contextlib import contextmanager
from typing import Callable, List, NamedTuple

from sqlalchemy import insert, select, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from .errors import MigrationError, StorageError
from .models import MigrationRecord

logger = logging.getLogger(__name__)


class Migration(NamedTuple):
    name: str
    apply: Callable[[Connection], None]


def _add_performance_indexes(conn: Connection) -> None:
    # notes by owner, newest first: the list query
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_notes_user_id ON notes(user_id)"))
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_notes_updated_at ON notes(updated_at DESC)"))
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_notes_user_updated ON notes(user_id, updated_at DESC)"))
    # single-note lookups scoped by owner
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_notes_id_user ON notes(id, user_id)"))
    # login
    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_users_username ON users(username)"))
    logger.info("Performance indexes created")


def _analyze_tables(conn: Connection) -> None:
    conn.execute(text("ANALYZE"))
    logger.info("Database statistics updated")


MIGRATIONS: List[Migration] = [
    Migration("001_add_performance_indexes", _add_performance_indexes),
    Migration("002_analyze_tables", _analyze_tables),
]


# PUBLIC_INTERFACE
class MigrationRunner:
    """
    Applies ``migrations`` in list order, each in its own transaction.
    """

    def __init__(self, pool, migrations=None):
        self.pool = pool
        self.migrations = list(MIGRATIONS if migrations is None else migrations)

    @contextmanager
    def _bookkeeping(self):
        """Connection for reads/writes of the migrations table itself."""
        with self.pool.connection() as conn:
            try:
                yield conn
            except SQLAlchemyError as exc:
                if conn.in_transaction():
                    conn.rollback()
                logger.error("Could not read migration records: %s", exc)
                raise StorageError(f"Migration records unavailable: {exc}") from exc

    def ensure_table(self):
        """Creates the migrations table if it does not exist."""
        with self._bookkeeping() as conn:
            with conn.begin():
                MigrationRecord.__table__.create(conn, checkfirst=True)

    def applied(self) -> List[str]:
        """Names of applied migrations, in the order they ran."""
        with self._bookkeeping() as conn:
            rows = conn.execute(
                select(MigrationRecord.name).order_by(MigrationRecord.id)
            ).scalars().all()
            conn.rollback()
        return list(rows)

    def is_applied(self, name: str) -> bool:
        with self._bookkeeping() as conn:
            found = conn.execute(
                select(MigrationRecord.id).where(MigrationRecord.name == name)
            ).first()
            conn.rollback()
        return found is not None

    def run_migration(self, migration: Migration) -> bool:
        """
        Runs one migration unless already applied.

        Returns True when it was executed now, False when skipped. On failure the
        transaction is rolled back, nothing is recorded and MigrationError is raised.
        """
        if self.is_applied(migration.name):
            logger.info("Migration '%s' already executed", migration.name)
            return False

        logger.info("Running migration: %s", migration.name)
        with self.pool.connection() as conn:
            trans = conn.begin()
            try:
                migration.apply(conn)
                conn.execute(insert(MigrationRecord).values(name=migration.name))
                trans.commit()
            except Exception as exc:
                trans.rollback()
                logger.error("Migration '%s' rolled back: %s", migration.name, exc)
                raise MigrationError(migration.name, str(exc)) from exc
        logger.info("Migration '%s' completed successfully", migration.name)
        return True

    def run_all(self) -> List[str]:
        """
        Brings the schema up to date. Stops at the first failing migration;
        later ones are not attempted.
        """
        self.ensure_table()
        executed = []
        for migration in self.migrations:
            if self.run_migration(migration):
                executed.append(migration.name)
        return executed
