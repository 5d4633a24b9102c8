import importlib


def test_init_pool_passes_keepalive_kwargs(monkeypatch):
    import champseries.datastore_pg as pg
    pg = importlib.reload(pg)

    monkeypatch.setenv("DB_CONNECT_TIMEOUT", "7")
    monkeypatch.setenv("DB_KEEPALIVES", "1")
    monkeypatch.setenv("DB_KEEPALIVES_IDLE", "30")
    monkeypatch.setenv("DB_KEEPALIVES_INTERVAL", "10")
    monkeypatch.setenv("DB_KEEPALIVES_COUNT", "3")

    captured = {}

    class FakePool:
        def __init__(self, minconn, maxconn, dsn=None, **kwargs):
            captured["minconn"] = minconn
            captured["maxconn"] = maxconn
            captured["dsn"] = dsn
            captured["kwargs"] = kwargs

    monkeypatch.setattr(pg, "_POOL", None)
    monkeypatch.setattr(pg.pg_pool, "ThreadedConnectionPool", FakePool)

    pg.init_pool(minconn=2, maxconn=5)

    assert captured["dsn"].startswith("postgresql://"), "Expected DSN passed to pool"
    assert (captured["minconn"], captured["maxconn"]) == (2, 5)
    kw = captured["kwargs"]
    assert kw.get("connect_timeout") == 7
    assert kw.get("keepalives") == 1
    assert kw.get("keepalives_idle") == 30
    assert kw.get("keepalives_interval") == 10
    assert kw.get("keepalives_count") == 3


def test_direct_connect_without_pool_disables_keepalives_on_request(monkeypatch):
    import champseries.datastore_pg as pg
    pg = importlib.reload(pg)

    monkeypatch.setenv("DB_KEEPALIVES", "false")
    monkeypatch.delenv("DB_CONNECT_TIMEOUT", raising=False)

    captured = {}

    class FakeConn:
        autocommit = False
        closed = 0

        def close(self):
            captured["closed"] = True

    def fake_connect(dsn=None, **kwargs):
        captured["dsn"] = dsn
        captured["kwargs"] = kwargs
        return FakeConn()

    monkeypatch.setattr(pg, "_POOL", None)
    monkeypatch.setattr(pg.psycopg2, "connect", fake_connect)

    with pg._get_conn():
        pass

    assert captured["kwargs"]["keepalives"] == 0
    assert captured["kwargs"]["connect_timeout"] == 10
    assert captured["closed"] is True
