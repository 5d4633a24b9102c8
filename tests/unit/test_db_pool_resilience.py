import importlib


def test_pool_checkout_retries_on_stale_connection(monkeypatch):
    import champseries.datastore_pg as pg
    pg = importlib.reload(pg)

    # Fake cursor/connection/pool to simulate first checkout failure then success
    class BadCursor:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def execute(self, sql, params=None):  # pragma: no cover - exercised via _get_conn
            from psycopg2 import OperationalError

            raise OperationalError("SSL connection has been closed unexpectedly")

    class GoodCursor:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def execute(self, sql, params=None):
            return None

    class BadConn:
        autocommit = False
        closed = 0
        status = 0

        def cursor(self, cursor_factory=None):
            return BadCursor()

        def rollback(self):
            pass

        def close(self):
            self.closed = 1

    class GoodConn(BadConn):
        def cursor(self, cursor_factory=None):
            return GoodCursor()

    class FakePool:
        def __init__(self):
            self.calls_get = 0
            self.calls_put = []

        def getconn(self):
            self.calls_get += 1
            if self.calls_get == 1:
                return BadConn()
            return GoodConn()

        def putconn(self, conn, close=False):
            self.calls_put.append((conn, close))
            if close:
                conn.close()

    pool = FakePool()
    monkeypatch.setattr(pg, "_POOL", pool)

    with pg._get_conn() as conn:
        assert isinstance(conn, GoodConn)

    assert pool.calls_get == 2
    # Bad connection discarded, good one returned to the pool
    assert [(type(c).__name__, close) for c, close in pool.calls_put] == [("BadConn", True), ("GoodConn", False)]


def test_pool_checkout_gives_up_after_one_retry(monkeypatch):
    import psycopg2
    import pytest

    import champseries.datastore_pg as pg
    pg = importlib.reload(pg)

    class DeadCursor:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def execute(self, sql, params=None):
            raise psycopg2.OperationalError("server closed the connection unexpectedly")

    class DeadConn:
        autocommit = False

        def cursor(self, cursor_factory=None):
            return DeadCursor()

    class FakePool:
        def __init__(self):
            self.discarded = 0

        def getconn(self):
            return DeadConn()

        def putconn(self, conn, close=False):
            self.discarded += int(close)

    pool = FakePool()
    monkeypatch.setattr(pg, "_POOL", pool)

    with pytest.raises(psycopg2.OperationalError):
        with pg._get_conn():
            pass
    assert pool.discarded == 2
