from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from src.api.routers.flow_http_errors import raise_flow_http_exception
from src.api.routers.flows import (
    assert_flow_definition_admin_enabled,
    get_flow_definition_service,
)
from src.core.flows import FlowDefinitionService, FlowEngineError, empty_flow_template
from src.core.flows.models import (
    FlowDefinitionCreateRequest,
    FlowDefinitionDuplicateRequest,
    FlowDefinitionListResponse,
    FlowDefinitionResponse,
    FlowDefinitionUpdateRequest,
    FlowDefinitionValidationRequest,
    FlowDefinitionValidationResponse,
)

router = APIRouter(prefix="/flow-definitions", tags=["Flow Definitions"])

DefinitionService = Annotated[FlowDefinitionService, Depends(get_flow_definition_service)]
FlowDefinitionIdPath = Annotated[
    str,
    Path(description="Flow definition identifier.", examples=["fd_3f2a9c01b7de"]),
]


@router.get(
    "",
    response_model=FlowDefinitionListResponse,
    status_code=status.HTTP_200_OK,
    summary="List Flow Definitions",
    description="Lists stored definitions, newest first, optionally filtered by peril and state.",
)
def list_flow_definitions(
    service: DefinitionService,
    peril_type: Annotated[
        Optional[str],
        Query(description="Peril filter.", examples=["wind_hail"]),
    ] = None,
    is_active: Annotated[
        Optional[bool],
        Query(description="Active-state filter.", examples=[True]),
    ] = None,
) -> FlowDefinitionListResponse:
    assert_flow_definition_admin_enabled()
    return service.list_definitions(peril_type=peril_type, is_active=is_active)


@router.get(
    "/template",
    status_code=status.HTTP_200_OK,
    summary="Get Empty Flow Template",
    description="Returns a minimal valid graph to start authoring from.",
)
def get_flow_definition_template() -> dict[str, Any]:
    assert_flow_definition_admin_enabled()
    return empty_flow_template()


@router.post(
    "/validate",
    response_model=FlowDefinitionValidationResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate Flow Graph",
    description="Runs every structural check and reports all violations without storing anything.",
)
def validate_flow_definition(
    payload: FlowDefinitionValidationRequest,
    service: DefinitionService,
) -> FlowDefinitionValidationResponse:
    assert_flow_definition_admin_enabled()
    return service.validate(payload.flow_json)


@router.get(
    "/{flow_definition_id}",
    response_model=FlowDefinitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Flow Definition",
)
def get_flow_definition(
    flow_definition_id: FlowDefinitionIdPath,
    service: DefinitionService,
) -> FlowDefinitionResponse:
    assert_flow_definition_admin_enabled()
    try:
        return service.get(flow_definition_id=flow_definition_id)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@router.post(
    "",
    response_model=FlowDefinitionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Flow Definition",
    description="Validates and stores a definition at version 1. Invalid graphs return 422.",
)
def create_flow_definition(
    payload: FlowDefinitionCreateRequest,
    service: DefinitionService,
) -> FlowDefinitionResponse:
    assert_flow_definition_admin_enabled()
    try:
        return service.create(payload=payload)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@router.put(
    "/{flow_definition_id}",
    response_model=FlowDefinitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Update Flow Definition",
    description=(
        "Applies the provided fields and bumps the version. Running flows keep the snapshot "
        "taken when they started."
    ),
)
def update_flow_definition(
    flow_definition_id: FlowDefinitionIdPath,
    payload: FlowDefinitionUpdateRequest,
    service: DefinitionService,
) -> FlowDefinitionResponse:
    assert_flow_definition_admin_enabled()
    try:
        return service.update(flow_definition_id=flow_definition_id, payload=payload)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@router.delete(
    "/{flow_definition_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Flow Definition",
    description="Deletes a definition that no active flow instance references.",
)
def delete_flow_definition(
    flow_definition_id: FlowDefinitionIdPath,
    service: DefinitionService,
) -> None:
    assert_flow_definition_admin_enabled()
    try:
        service.delete(flow_definition_id=flow_definition_id)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@router.post(
    "/{flow_definition_id}/duplicate",
    response_model=FlowDefinitionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate Flow Definition",
    description="Copies a definition as an inactive draft at version 1.",
)
def duplicate_flow_definition(
    flow_definition_id: FlowDefinitionIdPath,
    service: DefinitionService,
    payload: Optional[FlowDefinitionDuplicateRequest] = None,
) -> FlowDefinitionResponse:
    assert_flow_definition_admin_enabled()
    try:
        return service.duplicate(
            flow_definition_id=flow_definition_id,
            payload=payload or FlowDefinitionDuplicateRequest(),
        )
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@router.patch(
    "/{flow_definition_id}/activate",
    response_model=FlowDefinitionResponse,
    status_code=status.HTTP_200_OK,
    summary="Toggle Flow Definition Active State",
)
def toggle_flow_definition_active(
    flow_definition_id: FlowDefinitionIdPath,
    service: DefinitionService,
) -> FlowDefinitionResponse:
    assert_flow_definition_admin_enabled()
    try:
        return service.toggle_active(flow_definition_id=flow_definition_id)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)
