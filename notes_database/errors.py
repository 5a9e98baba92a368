"""Exceptions raised by the notes storage layer."""


class StorageError(Exception):
    """Unexpected failure talking to the database."""


class DuplicateUsernameError(StorageError):
    """A user with the requested username already exists."""

    def __init__(self, username: str):
        super().__init__(f"Username already exists: {username}")
        self.username = username


class StorageTimeoutError(StorageError):
    """The request's storage deadline elapsed before the operation finished."""


class PoolClosedError(StorageError):
    """The connection pool has been shut down."""


class MigrationError(StorageError):
    """A schema migration failed and was rolled back."""

    def __init__(self, name: str, message: str):
        super().__init__(f"Migration '{name}' failed: {message}")
        self.name = name
