from typing import Annotated, Optional

from fastapi import APIRouter, Path

from src.api.routers import flows_config
from src.api.routers.runtime_utils import assert_feature_enabled, backend_unavailable
from src.core.flows import (
    EvidenceBlobStore,
    FlowDefinitionService,
    FlowEngineService,
    FlowRepository,
    SuggestionProvider,
)

router = APIRouter(tags=["Flow Engine"])

FlowInstanceIdPath = Annotated[
    str,
    Path(description="Flow instance identifier.", examples=["fi_9a8b7c6d5e4f"]),
]
ClaimIdPath = Annotated[
    str,
    Path(description="Claim identifier owning the flow.", examples=["CLM-2026-00042"]),
]
MovementIdPath = Annotated[
    str,
    Path(description="Template or inserted movement identifier.", examples=["roof_overview"]),
]

_REPOSITORY: Optional[FlowRepository] = None
_ENGINE_SERVICE: Optional[FlowEngineService] = None
_DEFINITION_SERVICE: Optional[FlowDefinitionService] = None
_SUGGESTION_PROVIDER: Optional[SuggestionProvider] = None
_BLOB_STORE: Optional[EvidenceBlobStore] = None

_REPOSITORY_INIT_DETAILS = {"FLOW_POSTGRES_DSN_REQUIRED", "FLOW_POSTGRES_DRIVER_MISSING"}


def get_flow_repository() -> FlowRepository:
    global _REPOSITORY
    if _REPOSITORY is None:
        try:
            repository = flows_config.build_repository()
        except RuntimeError as exc:
            raise backend_unavailable(
                detail=str(exc),
                known_details=_REPOSITORY_INIT_DETAILS,
                fallback_detail="FLOW_POSTGRES_CONNECTION_FAILED",
            ) from exc
        if flows_config.seed_definitions_enabled():
            FlowDefinitionService(repository=repository).seed_default_definitions()
        _REPOSITORY = repository
    return _REPOSITORY


def get_flow_engine_service() -> FlowEngineService:
    global _ENGINE_SERVICE
    if _ENGINE_SERVICE is None:
        _ENGINE_SERVICE = FlowEngineService(
            repository=get_flow_repository(),
            suggestion_provider=_SUGGESTION_PROVIDER,
            blob_store=_BLOB_STORE,
        )
    return _ENGINE_SERVICE


def get_flow_definition_service() -> FlowDefinitionService:
    global _DEFINITION_SERVICE
    if _DEFINITION_SERVICE is None:
        _DEFINITION_SERVICE = FlowDefinitionService(repository=get_flow_repository())
    return _DEFINITION_SERVICE


def configure_flow_collaborators(
    *,
    suggestion_provider: Optional[SuggestionProvider] = None,
    blob_store: Optional[EvidenceBlobStore] = None,
) -> None:
    """Install the suggestion provider and blob store used by the engine service."""
    global _SUGGESTION_PROVIDER
    global _BLOB_STORE
    global _ENGINE_SERVICE
    _SUGGESTION_PROVIDER = suggestion_provider
    _BLOB_STORE = blob_store
    _ENGINE_SERVICE = None


def reset_flow_services_for_tests() -> None:
    global _REPOSITORY
    global _ENGINE_SERVICE
    global _DEFINITION_SERVICE
    global _SUGGESTION_PROVIDER
    global _BLOB_STORE
    _REPOSITORY = None
    _ENGINE_SERVICE = None
    _DEFINITION_SERVICE = None
    _SUGGESTION_PROVIDER = None
    _BLOB_STORE = None


def assert_flow_engine_enabled() -> None:
    assert_feature_enabled(
        name="FLOW_ENGINE_APIS_ENABLED",
        default=True,
        detail="FLOW_ENGINE_APIS_DISABLED",
    )


def assert_flow_definition_admin_enabled() -> None:
    assert_feature_enabled(
        name="FLOW_DEFINITION_ADMIN_APIS_ENABLED",
        default=True,
        detail="FLOW_DEFINITION_ADMIN_APIS_DISABLED",
    )


def assert_flow_suggestions_enabled() -> None:
    assert_feature_enabled(
        name="FLOW_SUGGESTIONS_ENABLED",
        default=False,
        detail="FLOW_SUGGESTIONS_DISABLED",
    )


from src.api.routers import flows_execution_routes, flows_instance_routes  # noqa: E402,F401
