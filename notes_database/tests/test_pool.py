import threading
import time

import pytest

from notes_database import ConnectionPool, PoolClosedError, StorageTimeoutError


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.01)


def test_rejects_non_positive_max(engine):
    with pytest.raises(ValueError):
        ConnectionPool(engine, max_connections=0)


def test_acquire_opens_and_release_reuses(pool):
    conn = pool.acquire()
    assert pool.size == 1
    assert pool.idle == 0

    pool.release(conn)
    assert pool.size == 1
    assert pool.idle == 1

    again = pool.acquire()
    assert again is conn
    assert pool.size == 1
    pool.release(again)


def test_never_exceeds_max(pool):
    held = [pool.acquire() for _ in range(4)]
    assert pool.size == 4

    with pytest.raises(StorageTimeoutError):
        pool.acquire(timeout=0.05)
    assert pool.waiting == 0
    assert pool.size == 4

    for conn in held:
        pool.release(conn)


def test_release_closes_beyond_half_max(pool):
    held = [pool.acquire() for _ in range(4)]
    for conn in held:
        pool.release(conn)

    # max_connections=4 keeps at most 2 idle
    assert pool.idle == 2
    assert pool.size == 2
    assert [c.closed for c in held] == [False, False, True, True]


def test_waiters_served_in_arrival_order(engine):
    pool = ConnectionPool(engine, max_connections=1)
    held = pool.acquire()
    order = []

    def worker(name):
        conn = pool.acquire(timeout=5)
        order.append((name, conn))
        pool.release(conn)

    first = threading.Thread(target=worker, args=("first",))
    first.start()
    _wait_for(lambda: pool.waiting == 1)
    second = threading.Thread(target=worker, args=("second",))
    second.start()
    _wait_for(lambda: pool.waiting == 2)

    pool.release(held)
    first.join(5)
    second.join(5)

    assert [name for name, _ in order] == ["first", "second"]
    # the released connection is handed over, not reopened
    assert all(conn is held for _, conn in order)
    # with max_connections=1 nothing stays idle once the queue drains
    assert pool.size == 0
    pool.close()


def test_new_arrivals_queue_behind_waiters(engine):
    pool = ConnectionPool(engine, max_connections=1)
    held = pool.acquire()
    got = []

    waiter = threading.Thread(target=lambda: got.append(pool.acquire(timeout=5)))
    waiter.start()
    _wait_for(lambda: pool.waiting == 1)

    pool.release(held)
    waiter.join(5)
    assert got == [held]

    # pool is saturated again by the waiter
    with pytest.raises(StorageTimeoutError):
        pool.acquire(timeout=0.05)
    pool.release(got[0])
    pool.close()


def test_discard_frees_slot_for_waiter(engine):
    pool = ConnectionPool(engine, max_connections=1)
    broken = pool.acquire()
    got = []

    waiter = threading.Thread(target=lambda: got.append(pool.acquire(timeout=5)))
    waiter.start()
    _wait_for(lambda: pool.waiting == 1)

    pool.discard(broken)
    waiter.join(5)

    assert broken.closed
    assert len(got) == 1
    assert got[0] is not broken
    assert pool.size == 1
    pool.release(got[0])
    pool.close()


def test_connection_context_releases_on_error(pool):
    with pytest.raises(RuntimeError):
        with pool.connection() as conn:
            raise RuntimeError("boom")
    assert pool.idle == 1
    assert not conn.closed


def test_close_shuts_down(pool):
    in_use = pool.acquire()
    idle = pool.acquire()
    pool.release(idle)

    pool.close()
    assert pool.closed
    assert idle.closed
    with pytest.raises(PoolClosedError):
        pool.acquire()

    # handles still out when the pool closed are closed on release
    pool.release(in_use)
    assert in_use.closed
    assert pool.size == 0

    # closing twice is harmless
    pool.close()


def test_close_wakes_waiters(engine):
    pool = ConnectionPool(engine, max_connections=1)
    held = pool.acquire()
    errors = []

    def worker():
        try:
            pool.acquire(timeout=5)
        except PoolClosedError as exc:
            errors.append(exc)

    t = threading.Thread(target=worker)
    t.start()
    _wait_for(lambda: pool.waiting == 1)
    pool.close()
    t.join(5)

    assert len(errors) == 1
    pool.release(held)
