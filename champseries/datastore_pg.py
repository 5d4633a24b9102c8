import os
from typing import Any, Dict, Iterable, List, Optional, Tuple

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor, execute_values
from contextlib import contextmanager

from .config import env_int


_POOL: Optional[pg_pool.AbstractConnectionPool] = None

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS runners (
        id VARCHAR(64) PRIMARY KEY,
        first_name VARCHAR(100),
        last_name VARCHAR(100),
        gender CHAR(1) NOT NULL,
        birth_year INTEGER,
        club_member BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS series (
        id VARCHAR(64) PRIMARY KEY,
        name VARCHAR(200) NOT NULL,
        year INTEGER NOT NULL,
        UNIQUE (name, year)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS races (
        id VARCHAR(64) PRIMARY KEY,
        series_id VARCHAR(64) REFERENCES series(id) ON DELETE CASCADE,
        year INTEGER NOT NULL,
        name VARCHAR(200),
        date DATE,
        distance_miles NUMERIC,
        race_order INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS series_registrations (
        id VARCHAR(64) PRIMARY KEY,
        runner_id VARCHAR(64) REFERENCES runners(id) ON DELETE CASCADE,
        series_id VARCHAR(64) REFERENCES series(id) ON DELETE CASCADE,
        year INTEGER NOT NULL,
        bib_number VARCHAR(20),
        age INTEGER,
        age_group VARCHAR(10)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS race_results (
        id SERIAL PRIMARY KEY,
        race_id VARCHAR(64) REFERENCES races(id) ON DELETE CASCADE,
        series_registration_id VARCHAR(64) REFERENCES series_registrations(id) ON DELETE CASCADE,
        place INTEGER,
        place_gender INTEGER,
        place_age_group INTEGER,
        gun_time INTERVAL,
        chip_time INTERVAL,
        is_dnf BOOLEAN NOT NULL DEFAULT FALSE,
        is_dq BOOLEAN NOT NULL DEFAULT FALSE,
        member_on_race_day BOOLEAN,
        UNIQUE (race_id, series_registration_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS series_standings (
        id SERIAL PRIMARY KEY,
        series_registration_id VARCHAR(64) REFERENCES series_registrations(id) ON DELETE CASCADE,
        series_id VARCHAR(64) NOT NULL,
        year INTEGER NOT NULL,
        category VARCHAR(20) NOT NULL,
        gender CHAR(1),
        age_group VARCHAR(10),
        qualifying_races_needed INTEGER NOT NULL,
        races_participated INTEGER NOT NULL,
        counted_race_ids TEXT[] NOT NULL DEFAULT '{}',
        counted_race_points INTEGER[] NOT NULL DEFAULT '{}',
        total_points INTEGER NOT NULL DEFAULT 0,
        total_distance_miles NUMERIC,
        total_time INTERVAL,
        overall_rank INTEGER,
        gender_rank INTEGER,
        age_group_rank INTEGER,
        last_calculated_at TIMESTAMPTZ,
        UNIQUE (series_registration_id, category)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_races_series_year ON races(series_id, year)",
    "CREATE INDEX IF NOT EXISTS idx_registrations_series_year ON series_registrations(series_id, year)",
    "CREATE INDEX IF NOT EXISTS idx_results_race ON race_results(race_id)",
    "CREATE INDEX IF NOT EXISTS idx_standings_series_year ON series_standings(series_id, year)",
)

_STANDING_COLUMNS = (
    "series_registration_id",
    "series_id",
    "year",
    "category",
    "gender",
    "age_group",
    "qualifying_races_needed",
    "races_participated",
    "counted_race_ids",
    "counted_race_points",
    "total_points",
    "total_distance_miles",
    "total_time",
    "overall_rank",
    "gender_rank",
    "age_group_rank",
    "last_calculated_at",
)


def _connect_kwargs() -> Dict[str, Any]:
    """Common connection kwargs: connect_timeout + TCP keepalives.

    Defaults:
      - connect_timeout: 10 seconds (overridable via DB_CONNECT_TIMEOUT)
      - keepalives: enabled by default; can be disabled by DB_KEEPALIVES=0
      - keepalive tunables applied if provided (IDLE/INTERVAL/COUNT)
    """
    kwargs: Dict[str, Any] = {"connect_timeout": env_int("DB_CONNECT_TIMEOUT", 10)}

    ka_env = os.environ.get("DB_KEEPALIVES")
    if ka_env is None:
        kwargs["keepalives"] = 1
    else:
        kwargs["keepalives"] = 0 if str(ka_env).lower() in ("0", "false") else 1

    for env_name, key in (
        ("DB_KEEPALIVES_IDLE", "keepalives_idle"),
        ("DB_KEEPALIVES_INTERVAL", "keepalives_interval"),
        ("DB_KEEPALIVES_COUNT", "keepalives_count"),
    ):
        value = env_int(env_name)
        if value is not None:
            kwargs[key] = value
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Initialize a global connection pool using DATABASE_URL.

    Safe to call multiple times; subsequent calls are ignored once a pool exists.
    """
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def _release(conn) -> None:
    """Roll back anything a caller left open before the connection is reused."""
    if getattr(conn, "closed", 0) or getattr(conn, "autocommit", False):
        return
    # status 0 = idle, 1 = active, 2 = intrans, 3 = inerror
    if getattr(conn, "status", 0) in (1, 2, 3):
        try:
            conn.rollback()
        except psycopg2.Error:
            pass


def _checkout_healthy():
    """Take a pooled connection that answers SELECT 1, replacing one stale connection."""
    retried = False
    while True:
        conn = _POOL.getconn()
        try:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
            if not getattr(conn, "autocommit", False):
                conn.rollback()
            return conn
        except psycopg2.Error:
            _POOL.putconn(conn, close=True)
            if retried:
                raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")
            retried = True


@contextmanager
def _get_conn():
    """Yield a database connection from the pool if available, else direct.

    Any exception inside the block rolls the transaction back before it
    propagates.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    if _POOL is not None:
        conn = _checkout_healthy()
        try:
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
        finally:
            try:
                _release(conn)
            finally:
                _POOL.putconn(conn)
    else:
        conn = psycopg2.connect(url, **_connect_kwargs())
        try:
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
        finally:
            conn.close()


def ensure_schema() -> None:
    """Create the series tables when they do not exist yet."""
    with _get_conn() as conn, conn.cursor() as cur:
        for stmt in _SCHEMA_STATEMENTS:
            cur.execute(stmt)
        conn.commit()


def load_series_inputs(series_id: str, year: int) -> Dict[str, List[Dict[str, Any]]]:
    """Return the registration, race and result feeds of one series/year."""
    out: Dict[str, List[Dict[str, Any]]] = {"registrations": [], "races": [], "results": []}
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT sr.id AS registration_id, sr.runner_id, r.gender, r.birth_year,
                   sr.age, sr.age_group, r.club_member, sr.bib_number AS bib,
                   r.first_name, r.last_name
            FROM series_registrations sr
            JOIN runners r ON r.id = sr.runner_id
            WHERE sr.series_id = %s AND sr.year = %s
            ORDER BY sr.id
            """,
            (series_id, int(year)),
        )
        out["registrations"] = [dict(row) for row in cur.fetchall() or []]

        cur.execute(
            """
            SELECT id AS race_id, name, date, distance_miles, race_order AS "order"
            FROM races
            WHERE series_id = %s AND year = %s
            ORDER BY date NULLS LAST, race_order NULLS LAST, id
            """,
            (series_id, int(year)),
        )
        out["races"] = [dict(row) for row in cur.fetchall() or []]

        race_ids = [row["race_id"] for row in out["races"]]
        if race_ids:
            cur.execute(
                """
                SELECT race_id, series_registration_id AS registration_id, place,
                       place_gender, place_age_group, gun_time, chip_time,
                       is_dnf, is_dq, member_on_race_day
                FROM race_results
                WHERE race_id = ANY(%s)
                ORDER BY race_id, place NULLS LAST, series_registration_id
                """,
                (race_ids,),
            )
            out["results"] = [dict(row) for row in cur.fetchall() or []]
    return out


def _standing_tuple(series_id: str, year: int, row: Dict[str, Any]) -> Tuple:
    values = dict(row, series_registration_id=row["registration_id"], series_id=series_id, year=int(year))
    return tuple(values.get(col) for col in _STANDING_COLUMNS)


def replace_standings(series_id: str, year: int, rows: Iterable[Dict[str, Any]]) -> int:
    """Replace the standings set of one series/year as a single transaction.

    A transaction-scoped advisory lock keyed on the series/year serializes
    concurrent replacements, so readers never see a partial or doubled set.
    Returns the number of rows written.
    """
    tuples = [_standing_tuple(series_id, year, row) for row in rows]
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (f"{series_id}:{int(year)}",))
        cur.execute(
            "DELETE FROM series_standings WHERE series_id = %s AND year = %s",
            (series_id, int(year)),
        )
        if tuples:
            execute_values(
                cur,
                f"INSERT INTO series_standings ({', '.join(_STANDING_COLUMNS)}) VALUES %s",
                tuples,
            )
        conn.commit()
    return len(tuples)


def get_series_standings(series_id: str, year: int, category: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return the persisted standings of one series/year with runner names."""
    sql = """
        SELECT ss.series_registration_id AS registration_id, sr.runner_id,
               r.first_name, r.last_name, sr.bib_number AS bib,
               ss.category, ss.gender, ss.age_group,
               ss.qualifying_races_needed, ss.races_participated,
               ss.counted_race_ids, ss.counted_race_points, ss.total_points,
               ss.total_distance_miles, ss.total_time,
               ss.overall_rank, ss.gender_rank, ss.age_group_rank,
               ss.last_calculated_at
        FROM series_standings ss
        JOIN series_registrations sr ON sr.id = ss.series_registration_id
        JOIN runners r ON r.id = sr.runner_id
        WHERE ss.series_id = %s AND ss.year = %s
    """
    params: List[Any] = [series_id, int(year)]
    if category:
        sql += " AND ss.category = %s"
        params.append(category)
    sql += " ORDER BY ss.category, ss.gender, ss.gender_rank"
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, params)
        return [dict(row) for row in cur.fetchall() or []]
