import os
import warnings
from typing import cast

from src.api.routers.runtime_utils import env_flag
from src.core.flows.repository import FlowRepository
from src.infrastructure.flows import InMemoryFlowRepository, PostgresFlowRepository


def flow_store_backend_name() -> str:
    backend = os.getenv("FLOW_STORE_BACKEND", "IN_MEMORY").strip().upper()
    if backend == "POSTGRES":
        return "POSTGRES"
    warnings.warn(
        "FLOW_STORE_BACKEND IN_MEMORY keeps flow state in process memory; use POSTGRES.",
        DeprecationWarning,
        stacklevel=2,
    )
    return "IN_MEMORY"


def flow_postgres_dsn() -> str:
    return os.getenv("FLOW_POSTGRES_DSN", "").strip()


def seed_definitions_enabled() -> bool:
    return env_flag("FLOW_SEED_DEFINITIONS_ENABLED", False)


def _postgres_connection_exception_types() -> tuple[type[BaseException], ...]:
    types: list[type[BaseException]] = [ConnectionError, OSError, TimeoutError, ValueError]
    try:
        import psycopg
    except ImportError:
        pass
    else:
        types.append(psycopg.Error)
    return tuple(types)


def build_repository() -> FlowRepository:
    if flow_store_backend_name() != "POSTGRES":
        return cast(FlowRepository, InMemoryFlowRepository())
    dsn = flow_postgres_dsn()
    if not dsn:
        raise RuntimeError("FLOW_POSTGRES_DSN_REQUIRED")
    try:
        return cast(FlowRepository, PostgresFlowRepository(dsn=dsn))
    except RuntimeError:
        raise
    except _postgres_connection_exception_types() as exc:
        raise RuntimeError("FLOW_POSTGRES_CONNECTION_FAILED") from exc
