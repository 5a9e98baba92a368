from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone

Base = declarative_base()

DEFAULT_NOTE_COLOR = "#fef3c7"


def utcnow():
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# PUBLIC_INTERFACE
class User(Base):
    """
    SQLAlchemy model for a user in the personal notes manager app.
    The password column holds a salted bcrypt hash, never the plain text.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(64), unique=True, nullable=False)
    password = Column(String(256), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    notes = relationship("Note", back_populates="owner", passive_deletes=True)


# PUBLIC_INTERFACE
class Note(Base):
    """
    SQLAlchemy model for a note.
    """
    __tablename__ = "notes"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(128), nullable=False)
    content = Column(Text, nullable=True)
    color = Column(String(16), nullable=False, default=DEFAULT_NOTE_COLOR,
                   server_default=DEFAULT_NOTE_COLOR)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    owner = relationship("User", back_populates="notes")


# PUBLIC_INTERFACE
class MigrationRecord(Base):
    """
    One row per applied schema migration; the unique name is the idempotency key.
    """
    __tablename__ = "migrations"

    id = Column(Integer, primary_key=True)
    name = Column(String(128), unique=True, nullable=False)
    executed_at = Column(DateTime, default=utcnow)
