from typing import Any, Dict, Iterable, List, Optional

# PostgreSQL-only datastore proxy. Route handlers import from here so tests
# can patch the datastore_pg functions with in-memory versions.

from . import datastore_pg as _pg


def ensure_schema() -> None:
    _pg.ensure_schema()


def load_series_inputs(series_id: str, year: int) -> Dict[str, List[Dict[str, Any]]]:
    return _pg.load_series_inputs(series_id, int(year))


def replace_standings(series_id: str, year: int, rows: Iterable[Dict[str, Any]]) -> int:
    return _pg.replace_standings(series_id, int(year), list(rows))


def get_series_standings(series_id: str, year: int, category: Optional[str] = None) -> List[Dict[str, Any]]:
    return _pg.get_series_standings(series_id, int(year), category=category)
