from __future__ import annotations

from src.api.routers.flows_config import flow_postgres_dsn, flow_store_backend_name
from src.api.routers.runtime_utils import env_flag, env_str

_PRODUCTION_PROFILE = "PRODUCTION"
_LOCAL_PROFILE = "LOCAL"


def app_persistence_profile_name() -> str:
    profile = env_str("APP_PERSISTENCE_PROFILE", _LOCAL_PROFILE).upper()
    return _PRODUCTION_PROFILE if profile == _PRODUCTION_PROFILE else _LOCAL_PROFILE


def validate_persistence_profile_guardrails() -> None:
    if app_persistence_profile_name() != _PRODUCTION_PROFILE:
        return
    if flow_store_backend_name() != "POSTGRES":
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_FLOW_POSTGRES")
    if not flow_postgres_dsn():
        raise RuntimeError("PERSISTENCE_PROFILE_REQUIRES_FLOW_POSTGRES_DSN")
    if env_flag("FLOW_SEED_DEFINITIONS_ENABLED", False):
        raise RuntimeError("PERSISTENCE_PROFILE_FORBIDS_FLOW_DEFINITION_SEEDING")
