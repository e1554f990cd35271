from typing import Annotated, Optional

from fastapi import Depends, Path, status

from src.api.routers import flows as shared
from src.api.routers.flow_http_errors import raise_flow_http_exception
from src.core.flows import FlowEngineError, FlowEngineService
from src.core.flows.models import (
    FlowInstanceResponse,
    FlowPhasesResponse,
    FlowProgressResponse,
    FlowTimelineResponse,
    NextStepResponse,
    PhaseMovementsResponse,
    StartFlowRequest,
)

EngineService = Annotated[FlowEngineService, Depends(shared.get_flow_engine_service)]


@shared.router.post(
    "/claims/{claim_id}/flows",
    response_model=FlowInstanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start Inspection Flow for Claim",
    description=(
        "Selects the highest-version active definition for the peril, snapshots its graph and "
        "starts the first phase. Rejected when the claim already has an active flow."
    ),
)
def start_flow_for_claim(
    claim_id: shared.ClaimIdPath,
    payload: StartFlowRequest,
    service: EngineService,
) -> FlowInstanceResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.start_flow_for_claim(claim_id=claim_id, payload=payload)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.get(
    "/claims/{claim_id}/flows",
    response_model=Optional[FlowInstanceResponse],
    status_code=status.HTTP_200_OK,
    summary="Get Active Flow for Claim",
    description="Returns the active flow of the claim, or null when none is active.",
)
def get_current_flow(
    claim_id: shared.ClaimIdPath,
    service: EngineService,
) -> Optional[FlowInstanceResponse]:
    shared.assert_flow_engine_enabled()
    return service.get_current_flow(claim_id=claim_id)


@shared.router.delete(
    "/claims/{claim_id}/flows",
    response_model=FlowInstanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel Active Flow for Claim",
)
def cancel_flow_for_claim(
    claim_id: shared.ClaimIdPath,
    service: EngineService,
) -> FlowInstanceResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.cancel_flow_for_claim(claim_id=claim_id)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.get(
    "/flows/{flow_instance_id}",
    response_model=FlowInstanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Flow Instance",
)
def get_flow(
    flow_instance_id: shared.FlowInstanceIdPath,
    service: EngineService,
) -> FlowInstanceResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.get_flow(flow_instance_id=flow_instance_id)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.post(
    "/flows/{flow_instance_id}/cancel",
    response_model=FlowInstanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel Flow Instance",
    description="Cancels an active flow. Cancelled flows reject every further mutation.",
)
def cancel_flow(
    flow_instance_id: shared.FlowInstanceIdPath,
    service: EngineService,
) -> FlowInstanceResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.cancel_flow(flow_instance_id=flow_instance_id)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.get(
    "/flows/{flow_instance_id}/progress",
    response_model=FlowProgressResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Flow Progress",
    description=(
        "Counts completed and skipped movements over every known movement, including inserted "
        "ones. The percentage may drop after an insert."
    ),
)
def get_flow_progress(
    flow_instance_id: shared.FlowInstanceIdPath,
    service: EngineService,
) -> FlowProgressResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.get_flow_progress(flow_instance_id=flow_instance_id)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.get(
    "/flows/{flow_instance_id}/timeline",
    response_model=FlowTimelineResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Flow Timeline",
)
def get_flow_timeline(
    flow_instance_id: shared.FlowInstanceIdPath,
    service: EngineService,
) -> FlowTimelineResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.get_flow_timeline(flow_instance_id=flow_instance_id)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.get(
    "/flows/{flow_instance_id}/phases",
    response_model=FlowPhasesResponse,
    status_code=status.HTTP_200_OK,
    summary="List Flow Phases",
)
def get_flow_phases(
    flow_instance_id: shared.FlowInstanceIdPath,
    service: EngineService,
) -> FlowPhasesResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.get_flow_phases(flow_instance_id=flow_instance_id)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.get(
    "/flows/{flow_instance_id}/phases/{phase_id}/movements",
    response_model=PhaseMovementsResponse,
    status_code=status.HTTP_200_OK,
    summary="List Phase Movements",
)
def get_phase_movements(
    flow_instance_id: shared.FlowInstanceIdPath,
    phase_id: Annotated[
        str,
        Path(description="Phase identifier from the flow snapshot.", examples=["arrival"]),
    ],
    service: EngineService,
) -> PhaseMovementsResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.get_phase_movements(flow_instance_id=flow_instance_id, phase_id=phase_id)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.get(
    "/flows/{flow_instance_id}/next",
    response_model=NextStepResponse,
    status_code=status.HTTP_200_OK,
    summary="Get Next Step",
    description=(
        "Returns the first un-acted movement of the current phase, the pending gate once every "
        "movement is acted upon, or `complete`."
    ),
)
def get_next_movement(
    flow_instance_id: shared.FlowInstanceIdPath,
    service: EngineService,
) -> NextStepResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.get_next_movement(flow_instance_id=flow_instance_id)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)
