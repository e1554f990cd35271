from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MIGRATIONS_ROOT = Path(__file__).with_name("postgres_migrations")


@dataclass(frozen=True)
class PostgresMigration:
    version: str
    sql_path: Path
    checksum: str


def apply_postgres_migrations(*, connection: Any, namespace: str) -> list[str]:
    """Apply pending forward-only migrations of a namespace under an advisory lock.

    Returns the versions applied by this call.
    """
    lock_key = _migration_lock_key(namespace=namespace)
    connection.execute("SELECT pg_advisory_lock(%s::bigint)", (lock_key,))
    try:
        return _apply_migrations_locked(connection=connection, namespace=namespace)
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.execute("SELECT pg_advisory_unlock(%s::bigint)", (lock_key,))


def _apply_migrations_locked(*, connection: Any, namespace: str) -> list[str]:
    migrations = _load_migrations(namespace=namespace)
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            namespace TEXT NOT NULL,
            checksum TEXT NOT NULL,
            applied_at TEXT NOT NULL
        )
        """
    )
    rows = connection.execute(
        """
        SELECT version, checksum
        FROM schema_migrations
        WHERE namespace = %s
        ORDER BY version ASC
        """,
        (namespace,),
    ).fetchall()
    applied = {
        _strip_namespace(namespace=namespace, stored_version=str(row["version"])): str(
            row["checksum"]
        )
        for row in rows
    }
    newly_applied: list[str] = []
    for migration in migrations:
        existing_checksum = applied.get(migration.version)
        if existing_checksum is not None:
            if existing_checksum != migration.checksum:
                raise RuntimeError(
                    f"POSTGRES_MIGRATION_CHECKSUM_MISMATCH:{namespace}:{migration.version}"
                )
            continue
        for statement in split_sql_statements(migration.sql_path.read_text(encoding="utf-8")):
            connection.execute(statement)
        connection.execute(
            """
            INSERT INTO schema_migrations (
                version,
                namespace,
                checksum,
                applied_at
            ) VALUES (%s, %s, %s, %s)
            """,
            (
                f"{namespace}:{migration.version}",
                namespace,
                migration.checksum,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        newly_applied.append(migration.version)
        logger.info(
            "postgres.migration_applied",
            extra={"extra_fields": {"namespace": namespace, "version": migration.version}},
        )
    connection.commit()
    return newly_applied


def split_sql_statements(sql: str) -> list[str]:
    lines = [line for line in sql.splitlines() if not line.strip().startswith("--")]
    return [statement.strip() for statement in "\n".join(lines).split(";") if statement.strip()]


def _load_migrations(*, namespace: str) -> list[PostgresMigration]:
    namespace_path = MIGRATIONS_ROOT / namespace
    if not namespace_path.is_dir():
        raise RuntimeError(f"POSTGRES_MIGRATIONS_NAMESPACE_NOT_FOUND:{namespace}")
    migrations = []
    for sql_path in sorted(namespace_path.glob("*.sql")):
        checksum = hashlib.sha256(sql_path.read_bytes()).hexdigest()
        migrations.append(
            PostgresMigration(
                version=sql_path.stem.split("_", maxsplit=1)[0],
                sql_path=sql_path,
                checksum=checksum,
            )
        )
    return migrations


def _migration_lock_key(*, namespace: str) -> int:
    digest = hashlib.sha256(f"schema_migrations:{namespace}".encode("utf-8")).digest()[:8]
    return int.from_bytes(digest, byteorder="big", signed=True)


def _strip_namespace(*, namespace: str, stored_version: str) -> str:
    prefix = f"{namespace}:"
    return stored_version[len(prefix) :] if stored_version.startswith(prefix) else stored_version
