import argparse
import os
import sys
from importlib.util import find_spec
from pathlib import Path

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

FLOW_MIGRATION_NAMESPACE = "flows"


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Apply forward-only PostgreSQL migrations for the flow engine store."
    )
    parser.add_argument(
        "--dsn",
        default=os.getenv("FLOW_POSTGRES_DSN", "").strip(),
        help="PostgreSQL DSN of the flow store (defaults to FLOW_POSTGRES_DSN).",
    )
    args = parser.parse_args(argv)

    dsn = args.dsn.strip()
    if not dsn:
        raise RuntimeError(f"POSTGRES_MIGRATION_DSN_REQUIRED:{FLOW_MIGRATION_NAMESPACE}")
    if find_spec("psycopg") is None:
        raise RuntimeError("POSTGRES_MIGRATION_DRIVER_MISSING")
    import psycopg
    from psycopg.rows import dict_row

    from src.infrastructure.postgres_migrations import apply_postgres_migrations

    with psycopg.connect(dsn, row_factory=dict_row) as connection:
        applied = apply_postgres_migrations(
            connection=connection, namespace=FLOW_MIGRATION_NAMESPACE
        )
    print(
        f"Applied migrations for namespace={FLOW_MIGRATION_NAMESPACE}: "
        f"{', '.join(applied) if applied else 'none pending'}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
