"""
Data access layer for users and notes.

Every note query carries the owner's id in its WHERE clause, so a note that
exists but belongs to someone else is indistinguishable from a missing one.
"""
import logging
import time
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db import create_db_engine, init_schema
from .errors import DuplicateUsernameError, StorageError, StorageTimeoutError
from .migrations import MigrationRunner
from .models import DEFAULT_NOTE_COLOR, Note, User, utcnow
from .pool import ConnectionPool

logger = logging.getLogger(__name__)

NOTES_PAGE_SIZE = 100

# Largest value an INTEGER PRIMARY KEY can hold.
MAX_ID = 2 ** 63 - 1

# Sentinel: use the store's default timeout.
_DEFAULT = object()


def _storable_id(*ids):
    """True when every id fits a 64-bit row id; larger ones cannot match any row."""
    return all(isinstance(i, int) and -MAX_ID - 1 <= i <= MAX_ID for i in ids)


@contextmanager
def _statement_deadline(conn, deadline):
    """Interrupts SQLite statements still running once ``deadline`` has passed."""
    if deadline is None or conn.dialect.name != "sqlite":
        yield
        return
    raw = conn.connection.dbapi_connection
    raw.set_progress_handler(lambda: 1 if time.monotonic() > deadline else 0, 1000)
    try:
        yield
    finally:
        raw.set_progress_handler(None, 0)


# PUBLIC_INTERFACE
class NoteStore:
    """
    Typed queries over the notes database, backed by a ConnectionPool.

    ``default_timeout`` (seconds) bounds each operation: the wait for a pooled
    connection plus the statements it runs. None means no deadline.
    """

    def __init__(self, pool: ConnectionPool, default_timeout: Optional[float] = None):
        self.pool = pool
        self.default_timeout = default_timeout

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "NoteStore":
        settings = settings or get_settings()
        engine = create_db_engine(settings.database_url)
        pool = ConnectionPool(engine, max_connections=settings.max_connections)
        return cls(pool, default_timeout=settings.timeout_seconds)

    # -- lifecycle -------------------------------------------------------------

    def init(self) -> List[str]:
        """
        Creates missing tables and applies pending migrations.
        Returns the names of migrations executed by this call.
        """
        try:
            with self.pool.connection() as conn:
                with conn.begin():
                    init_schema(conn)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not create tables: {exc}") from exc
        return MigrationRunner(self.pool).run_all()

    def close(self):
        self.pool.close()

    # -- unit of work ----------------------------------------------------------

    @contextmanager
    def session(self, timeout=_DEFAULT):
        """
        Yields an ORM session on a pooled connection; commits on success and
        rolls back on any error.
        """
        if timeout is _DEFAULT:
            timeout = self.default_timeout
        deadline = None if timeout is None else time.monotonic() + timeout

        with self.pool.connection(timeout) as conn:
            session = Session(bind=conn, expire_on_commit=False)
            try:
                with _statement_deadline(conn, deadline):
                    yield session
                    session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                if deadline is not None and time.monotonic() >= deadline:
                    logger.warning("Storage operation exceeded its deadline")
                    raise StorageTimeoutError("Storage operation timed out") from exc
                logger.error("Storage error: %s", exc)
                raise StorageError(str(exc)) from exc
            except OverflowError as exc:
                # raised by the driver while binding an out-of-range integer
                session.rollback()
                logger.error("Storage error: %s", exc)
                raise StorageError(str(exc)) from exc
            except BaseException:
                session.rollback()
                raise
            finally:
                session.close()

    # -- users -----------------------------------------------------------------

    def get_user_by_username(self, username: str, timeout=_DEFAULT) -> Optional[User]:
        with self.session(timeout) as session:
            return session.query(User).filter(User.username == username).first()

    def get_user(self, user_id: int, timeout=_DEFAULT) -> Optional[User]:
        if not _storable_id(user_id):
            return None
        with self.session(timeout) as session:
            return session.query(User).filter(User.id == user_id).first()

    def create_user(self, username: str, password_hash: str, timeout=_DEFAULT) -> User:
        """Inserts a user; raises DuplicateUsernameError if the name is taken."""
        with self.session(timeout) as session:
            user = User(username=username, password=password_hash)
            session.add(user)
            try:
                session.flush()
            except IntegrityError as exc:
                raise DuplicateUsernameError(username) from exc
            session.refresh(user)
            return user

    # -- notes -----------------------------------------------------------------

    def list_notes(self, user_id: int, limit: int = NOTES_PAGE_SIZE, timeout=_DEFAULT) -> List[Note]:
        """The user's notes, most recently updated first, at most NOTES_PAGE_SIZE."""
        limit = max(0, min(limit, NOTES_PAGE_SIZE))
        with self.session(timeout) as session:
            return (
                session.query(Note)
                .filter(Note.user_id == user_id)
                .order_by(Note.updated_at.desc(), Note.id.desc())
                .limit(limit)
                .all()
            )

    def get_note(self, note_id: int, user_id: int, timeout=_DEFAULT) -> Optional[Note]:
        if not _storable_id(note_id, user_id):
            return None
        with self.session(timeout) as session:
            return session.query(Note).filter(Note.id == note_id, Note.user_id == user_id).first()

    def create_note(self, user_id: int, title: str, content: Optional[str] = None,
                    color: Optional[str] = None, timeout=_DEFAULT) -> Note:
        with self.session(timeout) as session:
            note = Note(
                user_id=user_id,
                title=title,
                content=content or "",
                color=color or DEFAULT_NOTE_COLOR,
            )
            session.add(note)
            session.flush()
            session.refresh(note)
            return note

    def update_note(self, note_id: int, user_id: int, title: str, content: Optional[str] = None,
                    color: Optional[str] = None, timeout=_DEFAULT) -> Optional[Note]:
        """
        Updates an owned note. Returns the updated note, or None when no row
        matched (missing or owned by another user).
        """
        if not _storable_id(note_id, user_id):
            return None
        now = utcnow()
        values = {
            Note.title: title,
            Note.content: content or "",
            # never move updated_at backwards, even if the clock does
            Note.updated_at: case((Note.updated_at > now, Note.updated_at), else_=now),
        }
        if color:
            values[Note.color] = color

        with self.session(timeout) as session:
            matched = (
                session.query(Note)
                .filter(Note.id == note_id, Note.user_id == user_id)
                .update(values, synchronize_session=False)
            )
            if not matched:
                return None
            return session.query(Note).filter(Note.id == note_id, Note.user_id == user_id).first()

    def delete_note(self, note_id: int, user_id: int, timeout=_DEFAULT) -> bool:
        """Deletes an owned note. Returns False when no row matched."""
        if not _storable_id(note_id, user_id):
            return False
        with self.session(timeout) as session:
            deleted = (
                session.query(Note)
                .filter(Note.id == note_id, Note.user_id == user_id)
                .delete(synchronize_session=False)
            )
            return deleted > 0


# PUBLIC_INTERFACE
def create_store(database_url=None, max_connections=10, timeout=None) -> NoteStore:
    """Builds a NoteStore with its own engine and pool."""
    engine = create_db_engine(database_url)
    return NoteStore(ConnectionPool(engine, max_connections=max_connections), default_timeout=timeout)
