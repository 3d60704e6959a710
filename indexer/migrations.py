"""Ordered schema migrations for the document store.

Migrations are the ``NNN-name.sql`` files in ``indexer/sql``. Each one runs
in its own ``BEGIN IMMEDIATE`` transaction together with the row recording
it in ``_schema_migrations``, so a migration is either fully applied and
tracked or not applied at all.
"""

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set

from .errors import MigrationError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "sql"
MIGRATIONS_TABLE = "_schema_migrations"


@dataclass(frozen=True)
class Migration:
    id: str
    sql: str


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    """Read migrations from disk, ordered by id."""
    migrations = []
    for path in sorted(directory.glob("*.sql")):
        migrations.append(Migration(id=path.stem, sql=path.read_text(encoding="utf-8")))
    return migrations


def _ensure_tracking_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
            id TEXT PRIMARY KEY,
            applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
        )
        """
    )


def applied_migrations(conn: sqlite3.Connection) -> Set[str]:
    _ensure_tracking_table(conn)
    return {row[0] for row in conn.execute(f"SELECT id FROM {MIGRATIONS_TABLE}")}


def apply_migrations(conn: sqlite3.Connection,
                     target: Optional[str] = None,
                     migrations: Optional[List[Migration]] = None) -> List[str]:
    """Apply pending migrations in order.

    Args:
        conn: Connection opened with ``isolation_level=None`` and sqlite-vec loaded
        target: Stop after applying the migration with this id
        migrations: Explicit migration list, defaults to ``load_migrations()``

    Returns:
        Ids of the migrations applied by this call

    Raises:
        MigrationError: if a migration fails; its changes are rolled back
    """
    migrations = migrations if migrations is not None else load_migrations()
    if target is not None and target not in {m.id for m in migrations}:
        raise MigrationError(target, "unknown migration id")

    done = applied_migrations(conn)
    newly_applied = []

    for migration in migrations:
        if migration.id in done:
            logger.debug(f"Skipping already applied migration {migration.id}")
        else:
            logger.info(f"Applying migration {migration.id}")
            script = (
                "BEGIN IMMEDIATE;\n"
                f"{migration.sql}\n;\n"
                f"INSERT INTO {MIGRATIONS_TABLE} (id) VALUES ('{migration.id}');\n"
                "COMMIT;"
            )
            try:
                conn.executescript(script)
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.error(f"Migration {migration.id} failed: {e}")
                raise MigrationError(migration.id, str(e), cause=e) from e
            newly_applied.append(migration.id)

        if migration.id == target:
            break

    if newly_applied:
        logger.info(f"Applied {len(newly_applied)} migrations: {', '.join(newly_applied)}")
    return newly_applied
