from flask import Blueprint, current_app, request
from datetime import datetime, timedelta, timezone
import os
import threading
import time

from .models import Category, StandingsError, StandingsRun
from .standings import compute_from_feeds
from .datastore import (
    load_series_inputs as ds_load_series_inputs,
    replace_standings as ds_replace_standings,
    get_series_standings as ds_get_series_standings,
)


bp = Blueprint('main', __name__)

# Simple in-process cache for standings reads
_STANDINGS_CACHE: dict[tuple[str, int, str], tuple[float, list[dict]]] = {}
_STANDINGS_TTL = int(os.environ.get('CACHE_TTL_STANDINGS', '180'))  # seconds

# One lock per (series, year) so concurrent recalculations run one at a time.
# Entries are kept for the process lifetime; there is one per season ever
# recalculated, never one per request.
_RECALC_LOCKS: dict[tuple[str, int], threading.Lock] = {}
_RECALC_LOCKS_GUARD = threading.Lock()


def _cache_get_standings(series_id: str, year: int, category: str) -> list[dict] | None:
    key = (series_id, int(year), category)
    entry = _STANDINGS_CACHE.get(key)
    if not entry:
        return None
    exp, value = entry
    if exp < time.time():
        _STANDINGS_CACHE.pop(key, None)
        return None
    return value


def _cache_set_standings(series_id: str, year: int, category: str, rows: list[dict]) -> None:
    _STANDINGS_CACHE[(series_id, int(year), category)] = (time.time() + _STANDINGS_TTL, rows)


def _cache_clear_series(series_id: str, year: int) -> None:
    for key in [k for k in _STANDINGS_CACHE if k[:2] == (series_id, int(year))]:
        _STANDINGS_CACHE.pop(key, None)


def _cache_clear_all() -> None:
    _STANDINGS_CACHE.clear()


def _recalc_lock(series_id: str, year: int) -> threading.Lock:
    with _RECALC_LOCKS_GUARD:
        return _RECALC_LOCKS.setdefault((series_id, int(year)), threading.Lock())


def _format_duration(value) -> str | None:
    """Return ``H:MM:SS`` for a timedelta, passing other values through."""
    if not isinstance(value, timedelta):
        return value
    total = int(value.total_seconds())
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    return f"{h}:{m:02d}:{s:02d}"


def recalculate_standings(series_id: str, year: int, calculated_at: datetime | None = None) -> tuple[StandingsRun, int]:
    """Recompute and replace the standings of one series/year.

    Gathers the three feeds, runs the engine and writes the snapshot back as
    one unit. Skipped records are logged and counted but never fail the run.

    Raises:
        StandingsError: when the series/year cannot be scored (no races).
    """
    with _recalc_lock(series_id, year):
        feeds = ds_load_series_inputs(series_id, int(year))
        run = compute_from_feeds(series_id, int(year), feeds, calculated_at=calculated_at)
        written = ds_replace_standings(series_id, int(year), [s.to_row() for s in run.standings])
    _cache_clear_series(series_id, year)
    counts = run.skipped_counts()
    current_app.logger.info(
        "recalculate_counts series=%s year=%s written=%d skipped=%d kinds=%s",
        series_id, year, written, len(run.skipped), counts,
    )
    return run, written


@bp.route('/health/db')
def health_db():
    """Database connectivity health check.

    Always returns HTTP 200 with a JSON body describing connection status.
    """
    url = os.environ.get('DATABASE_URL')
    if not url:
        return {
            'connected': False,
            'status': 'no_database_url',
            'message': 'DATABASE_URL is not set.'
        }
    try:
        import psycopg2
        with psycopg2.connect(url, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute('SELECT current_user, current_database(), version()')
                user, db, ver = cur.fetchone()
            return {
                'connected': True,
                'status': 'ok',
                'user': user,
                'database': db,
                'server_version': (ver or '').split('\n')[0],
            }
    except Exception as e:  # pragma: no cover - best-effort health output
        return {
            'connected': False,
            'status': 'error',
            'error': str(e),
        }


@bp.route('/api/standings/calculate', methods=['POST'])
def calculate_standings():
    data = request.get_json(silent=True) or {}
    series_id = data.get('series_id')
    if not series_id:
        return {'success': False, 'error': 'series_id is required'}, 400
    try:
        year = int(data.get('year') or datetime.now(timezone.utc).year)
    except (TypeError, ValueError):
        return {'success': False, 'error': f"Invalid year '{data.get('year')}'"}, 400

    try:
        run, written = recalculate_standings(str(series_id), year)
    except StandingsError as exc:
        current_app.logger.warning("recalculate_failed series=%s year=%s: %s", series_id, year, exc)
        return {'success': False, 'error': str(exc)}, 422

    calculated_at = run.standings[0].last_calculated_at if run.standings else datetime.now(timezone.utc)
    return {
        'success': True,
        'series_id': run.series_id,
        'year': run.year,
        'qualifying_races_needed': run.qualifying_races_needed,
        'written': written,
        'skipped': run.skipped_counts(),
        'calculated_at': calculated_at.isoformat(),
    }


@bp.route('/api/standings')
def standings():
    series_id = request.args.get('series_id')
    if not series_id:
        return {'success': False, 'error': 'series_id is required'}, 400
    try:
        year = int(request.args.get('year') or datetime.now(timezone.utc).year)
    except ValueError:
        return {'success': False, 'error': f"Invalid year '{request.args.get('year')}'"}, 400
    category = (request.args.get('category') or '').lower()
    if category and category not in {c.value for c in Category}:
        return {'success': False, 'error': f"Unknown category '{category}'"}, 400

    rows = _cache_get_standings(series_id, year, category)
    if rows is None:
        rows = ds_get_series_standings(series_id, year, category=category or None)
        rows = [{**row, 'total_time': _format_duration(row.get('total_time'))} for row in rows]
        _cache_set_standings(series_id, year, category, rows)
    return {
        'success': True,
        'series_id': series_id,
        'year': year,
        'category': category or None,
        'count': len(rows),
        'data': rows,
    }
