"""
Bounded pool of database connections.

Callers that find the pool saturated queue up and are handed released
connections in arrival order.
"""
import logging
import threading
from collections import deque
from contextlib import contextmanager

from .errors import PoolClosedError, StorageTimeoutError

logger = logging.getLogger(__name__)


class _Waiter:
    """A caller queued for a connection."""

    __slots__ = ("event", "handle", "may_open")

    def __init__(self):
        self.event = threading.Event()
        self.handle = None
        self.may_open = False


# PUBLIC_INTERFACE
class ConnectionPool:
    """
    Hands out SQLAlchemy connections from ``engine``, never more than
    ``max_connections`` open at once.

    Released connections are kept idle for reuse while fewer than half the
    maximum are idle; beyond that they are closed.
    """

    def __init__(self, engine, max_connections=10):
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        self.engine = engine
        self.max_connections = max_connections
        self._lock = threading.Lock()
        self._idle = deque()
        self._waiters = deque()
        self._outstanding = 0
        self._closed = False

    @property
    def size(self):
        """Number of open connections, idle or in use."""
        return self._outstanding

    @property
    def idle(self):
        return len(self._idle)

    @property
    def waiting(self):
        return len(self._waiters)

    @property
    def closed(self):
        return self._closed

    def _open(self):
        try:
            conn = self.engine.connect()
        except Exception:
            with self._lock:
                self._outstanding -= 1
                waiter = self._grant_slot_locked()
            if waiter is not None:
                waiter.event.set()
            raise
        logger.debug("Opened database connection (%d/%d)", self._outstanding, self.max_connections)
        return conn

    def _grant_slot_locked(self):
        """Passes a freed slot to the oldest waiter, who then opens a connection."""
        if not self._waiters or self._closed:
            return None
        waiter = self._waiters.popleft()
        self._outstanding += 1
        waiter.may_open = True
        return waiter

    # PUBLIC_INTERFACE
    def acquire(self, timeout=None):
        """
        Returns a connection, waiting up to ``timeout`` seconds (forever when
        None) for one to be released if the pool is saturated.
        """
        with self._lock:
            if self._closed:
                raise PoolClosedError("Connection pool is closed")
            if not self._waiters:
                if self._idle:
                    return self._idle.pop()
                if self._outstanding < self.max_connections:
                    self._outstanding += 1
                    waiter = None
                else:
                    waiter = _Waiter()
                    self._waiters.append(waiter)
            else:
                waiter = _Waiter()
                self._waiters.append(waiter)

        if waiter is None:
            return self._open()

        logger.debug("Connection pool exhausted, %d caller(s) waiting", len(self._waiters))
        if not waiter.event.wait(timeout):
            with self._lock:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
                    logger.warning("Timed out after %.3fs waiting for a database connection", timeout)
                    raise StorageTimeoutError("Timed out waiting for a database connection")
            # Granted between the timeout and taking the lock.

        if waiter.handle is not None:
            return waiter.handle
        if waiter.may_open:
            return self._open()
        raise PoolClosedError("Connection pool is closed")

    # PUBLIC_INTERFACE
    def release(self, conn):
        """Returns ``conn`` to the pool, handing it to the oldest waiter if any."""
        with self._lock:
            if not self._closed:
                if self._waiters:
                    waiter = self._waiters.popleft()
                    waiter.handle = conn
                    waiter.event.set()
                    return
                if len(self._idle) < self.max_connections // 2:
                    self._idle.append(conn)
                    return
            self._outstanding -= 1
        conn.close()
        logger.debug("Closed database connection (%d/%d)", self._outstanding, self.max_connections)

    # PUBLIC_INTERFACE
    def discard(self, conn):
        """Closes a broken connection and frees its slot."""
        with self._lock:
            self._outstanding -= 1
            waiter = self._grant_slot_locked()
        if waiter is not None:
            waiter.event.set()
        try:
            conn.close()
        except Exception:
            logger.exception("Error closing discarded database connection")

    @contextmanager
    def connection(self, timeout=None):
        """Acquires a connection for the duration of the block."""
        conn = self.acquire(timeout)
        try:
            yield conn
        finally:
            if conn.invalidated:
                self.discard(conn)
            else:
                self.release(conn)

    # PUBLIC_INTERFACE
    def close(self):
        """
        Closes every idle connection and disposes of the engine. Connections
        still in use are closed when released; queued callers get PoolClosedError.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            idle = list(self._idle)
            self._idle.clear()
            self._outstanding -= len(idle)
            waiters = list(self._waiters)
            self._waiters.clear()
        for waiter in waiters:
            waiter.event.set()
        for conn in idle:
            conn.close()
        self.engine.dispose()
        logger.info("Connection pool closed")
