"""Apply pending SQL files from db/migrations in filename order."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection

from expense_tracker.config import settings
from expense_tracker.logging_config import get_logger, setup_logging

MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "db" / "migrations"

logger = get_logger("scripts.run_migrations")


def split_sql_statements(sql: str) -> list[str]:
    """Split a migration file on ``;`` line endings, keeping ``$$`` bodies whole."""
    statements = []
    current: list[str] = []
    in_dollar = False
    for line in sql.splitlines(keepends=True):
        stripped = line.strip()
        if not current and (not stripped or stripped.startswith("--")):
            continue
        if "$$" in line:
            in_dollar = not in_dollar
        current.append(line)
        if not in_dollar and stripped.endswith(";"):
            statements.append("".join(current).strip())
            current = []
    tail = "".join(current).strip()
    if tail:
        statements.append(tail)
    return statements


def _ensure_ledger(conn: Connection) -> set[str]:
    conn.execute(
        text(
            """
            create table if not exists schema_migrations (
              filename text primary key,
              applied_at timestamptz not null default now()
            )
            """
        )
    )
    return {row[0] for row in conn.execute(text("select filename from schema_migrations")).fetchall()}


def pending_migrations(applied: set[str], migrations_dir: Path = MIGRATIONS_DIR) -> list[Path]:
    return [path for path in sorted(migrations_dir.glob("*.sql")) if path.name not in applied]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--database-url", default=settings.database_url)
    parser.add_argument("--dry-run", action="store_true", help="list pending files without applying them")
    args = parser.parse_args(argv)
    setup_logging()

    engine = create_engine(args.database_url, future=True, pool_pre_ping=True)
    with engine.begin() as conn:
        pending = pending_migrations(_ensure_ledger(conn))
        if not pending:
            logger.info("No pending migrations")
            return 0
        for path in pending:
            if args.dry_run:
                print(f"Pending: {path.name}")
                continue
            for stmt in split_sql_statements(path.read_text(encoding="utf-8")):
                conn.execute(text(stmt))
            conn.execute(text("insert into schema_migrations (filename) values (:filename)"), {"filename": path.name})
            logger.info("Applied migration", extra={"filename": path.name})
    return 0


if __name__ == "__main__":
    sys.exit(main())
