"""
Versioned schema migrations.

Each migration is applied once and recorded in the `migrations` marker table.
Re-running is a no-op, so the API can call run_migrations() on start-up.
"""

import logging
import time
from typing import Callable, Dict, Any, List, Tuple

import sqlalchemy as sa
from sqlalchemy.engine import Connection

from .connection import DatabaseManager, retry_on_database_error
from . import schema

logger = logging.getLogger(__name__)


def _initial_schema(conn: Connection) -> None:
    schema.players.create(conn, checkfirst=True)
    schema.arena_matches.create(conn, checkfirst=True)


# (version, name, apply)
MIGRATIONS: List[Tuple[int, str, Callable[[Connection], None]]] = [
    (1, "initial_schema", _initial_schema),
]


def applied_versions(conn: Connection) -> List[int]:
    rows = conn.execute(sa.select(schema.migrations.c.version).order_by(schema.migrations.c.version))
    return [row[0] for row in rows]


@retry_on_database_error()
def run_migrations(db_manager: DatabaseManager) -> Dict[str, Any]:
    """
    Create the marker table and apply every migration not yet recorded.

    Returns:
        Dict with the versions applied in this run and the total known
    """
    start_time = time.time()
    applied_now = []

    with db_manager.engine.begin() as conn:
        schema.migrations.create(conn, checkfirst=True)
        done = set(applied_versions(conn))

        for version, name, apply in MIGRATIONS:
            if version in done:
                continue
            logger.info(f"Applying migration {version}: {name}")
            apply(conn)
            conn.execute(sa.insert(schema.migrations).values(version=version, name=name))
            applied_now.append(version)

    if applied_now:
        logger.info(f"Applied migrations {applied_now}")
    else:
        logger.info("Database schema already up to date, skipping migration")

    return {
        "success": True,
        "applied": applied_now,
        "latest_version": MIGRATIONS[-1][0],
        "execution_time_seconds": round(time.time() - start_time, 2),
    }


def verify_database_structure(db_manager: DatabaseManager) -> Dict[str, Any]:
    """Check that every tracker table exists."""
    inspector = sa.inspect(db_manager.engine)
    existing = set(inspector.get_table_names())
    missing = [name for name in schema.TRACKER_TABLES if name not in existing]
    return {"valid": not missing, "missing_tables": missing}
