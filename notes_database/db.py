from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.pool import NullPool

from .config import get_database_url
from .models import Base


def _configure_sqlite(engine):
    """
    Enables foreign keys on every new SQLite connection and lets SQLAlchemy
    emit BEGIN itself, so DDL inside a migration is part of its transaction.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


# PUBLIC_INTERFACE
def create_db_engine(database_url=None, echo=False):
    """
    Creates the engine behind the connection pool. SQLAlchemy's own pooling is
    disabled; ConnectionPool decides how many handles stay open.
    """
    url = make_url(database_url or get_database_url())
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
    engine = create_engine(url, poolclass=NullPool, connect_args=connect_args, future=True, echo=echo)
    if url.get_backend_name() == "sqlite":
        _configure_sqlite(engine)
    return engine


# PUBLIC_INTERFACE
def init_schema(bind):
    """Creates all tables if they do not exist. ``bind`` is an engine or connection."""
    Base.metadata.create_all(bind=bind)
