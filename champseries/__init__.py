import os

import click
from flask import Flask

from .config import env_int


def create_app():
    app = Flask(__name__)

    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        raise RuntimeError("DATABASE_URL is required to run the standings service.")

    # Initialize connection pool early (direct connect works if pool init fails)
    try:
        from . import datastore_pg as _pg
        _pg.init_pool(minconn=env_int("DB_POOL_MIN", 1), maxconn=env_int("DB_POOL_MAX", 10))
    except Exception:  # pragma: no cover
        app.logger.exception("PostgreSQL pool initialization failed; continuing without pool")

    from . import routes
    app.register_blueprint(routes.bp)

    @app.cli.command("init-db")
    def init_db_command():
        """Create the series tables."""
        from . import datastore
        datastore.ensure_schema()
        click.echo("Schema ready")

    @app.cli.command("recalculate")
    @click.argument("series_id")
    @click.argument("year", type=int)
    def recalculate_command(series_id, year):
        """Recompute and store the standings of SERIES_ID for YEAR."""
        from .models import StandingsError
        try:
            run, written = routes.recalculate_standings(series_id, year)
        except StandingsError as exc:
            raise click.ClickException(str(exc))
        click.echo(f"Q={run.qualifying_races_needed} written={written} skipped={run.skipped_counts()}")

    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    create_app().run(host='0.0.0.0', port=port)
