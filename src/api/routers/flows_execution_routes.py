from typing import Annotated, Optional

from fastapi import Body, Depends, Path, status

from src.api.routers import flows as shared
from src.api.routers.flow_http_errors import conflict_responses, raise_flow_http_exception
from src.core.flows import FlowEngineError, FlowEngineService
from src.core.flows.models import (
    AddRoomRequest,
    AttachEvidenceRequest,
    CompleteMovementRequest,
    EvaluateGateRequest,
    EvidenceResponse,
    EvidenceValidationResponse,
    GateEvaluationResponse,
    InsertCustomMovementRequest,
    MovementCompletionResponse,
    MovementView,
    PhaseMovementsResponse,
    SkipMovementRequest,
    SuggestedMovementsResponse,
    SuggestMovementsRequest,
)

EngineService = Annotated[FlowEngineService, Depends(shared.get_flow_engine_service)]


@shared.router.post(
    "/flows/{flow_instance_id}/movements/{movement_id}/complete",
    response_model=MovementCompletionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Complete Movement",
    description=(
        "Records a completion for a movement of the current phase together with its initial "
        "evidence. A movement can be acted upon once."
    ),
    responses=conflict_responses(
        "MOVEMENT_NOT_IN_CURRENT_PHASE", "MOVEMENT_ALREADY_RECORDED", "FLOW_INSTANCE_NOT_ACTIVE"
    ),
)
def complete_movement(
    flow_instance_id: shared.FlowInstanceIdPath,
    movement_id: shared.MovementIdPath,
    payload: CompleteMovementRequest,
    service: EngineService,
) -> MovementCompletionResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.complete_movement(
            flow_instance_id=flow_instance_id,
            movement_id=movement_id,
            payload=payload,
        )
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.post(
    "/flows/{flow_instance_id}/movements/{movement_id}/skip",
    response_model=MovementCompletionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Skip Movement",
    description="Records a skip with a mandatory reason. Skipped required movements fail the gate.",
    responses=conflict_responses(
        "MOVEMENT_NOT_IN_CURRENT_PHASE", "MOVEMENT_ALREADY_RECORDED", "FLOW_INSTANCE_NOT_ACTIVE"
    ),
)
def skip_movement(
    flow_instance_id: shared.FlowInstanceIdPath,
    movement_id: shared.MovementIdPath,
    payload: SkipMovementRequest,
    service: EngineService,
) -> MovementCompletionResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.skip_movement(
            flow_instance_id=flow_instance_id,
            movement_id=movement_id,
            payload=payload,
        )
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.get(
    "/flows/{flow_instance_id}/movements/{movement_id}/evidence",
    response_model=list[EvidenceResponse],
    status_code=status.HTTP_200_OK,
    summary="List Movement Evidence",
)
def get_movement_evidence(
    flow_instance_id: shared.FlowInstanceIdPath,
    movement_id: shared.MovementIdPath,
    service: EngineService,
) -> list[EvidenceResponse]:
    shared.assert_flow_engine_enabled()
    try:
        return service.get_movement_evidence(
            flow_instance_id=flow_instance_id,
            movement_id=movement_id,
        )
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.post(
    "/flows/{flow_instance_id}/movements/{movement_id}/evidence",
    response_model=EvidenceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Attach Evidence",
    description="Appends evidence to an already recorded movement. Evidence is never removed.",
)
def attach_evidence(
    flow_instance_id: shared.FlowInstanceIdPath,
    movement_id: shared.MovementIdPath,
    payload: AttachEvidenceRequest,
    service: EngineService,
) -> EvidenceResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.attach_evidence(
            flow_instance_id=flow_instance_id,
            movement_id=movement_id,
            payload=payload,
        )
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.get(
    "/flows/{flow_instance_id}/movements/{movement_id}/validate",
    response_model=EvidenceValidationResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate Movement Evidence",
)
def validate_evidence(
    flow_instance_id: shared.FlowInstanceIdPath,
    movement_id: shared.MovementIdPath,
    service: EngineService,
) -> EvidenceValidationResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.validate_evidence(
            flow_instance_id=flow_instance_id,
            movement_id=movement_id,
        )
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.post(
    "/flows/{flow_instance_id}/gates/{gate_id}/evaluate",
    response_model=GateEvaluationResponse,
    status_code=status.HTTP_200_OK,
    summary="Evaluate Phase Gate",
    description=(
        "Evaluates the gate of the current phase. A passing gate seals the phase and advances "
        "the flow. A failing gate lists the missing movements and evidence."
    ),
    responses=conflict_responses(
        "GATE_NOT_CURRENT", "GATE_EVALUATION_CONFLICT", "FLOW_INSTANCE_NOT_ACTIVE"
    ),
)
def evaluate_gate(
    flow_instance_id: shared.FlowInstanceIdPath,
    gate_id: Annotated[
        str,
        Path(description="Gate identifier of a snapshot phase.", examples=["gate_arrival"]),
    ],
    service: EngineService,
    payload: Annotated[Optional[EvaluateGateRequest], Body()] = None,
) -> GateEvaluationResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.evaluate_gate(
            flow_instance_id=flow_instance_id,
            gate_id=gate_id,
            evaluated_by=payload.evaluated_by if payload is not None else None,
        )
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.post(
    "/flows/{flow_instance_id}/rooms",
    response_model=PhaseMovementsResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add Room Movements",
    description="Appends room-derived movements to the end of the current phase.",
    responses=conflict_responses("PHASE_SEALED", "FLOW_INSTANCE_NOT_ACTIVE"),
)
def add_room_movements(
    flow_instance_id: shared.FlowInstanceIdPath,
    payload: AddRoomRequest,
    service: EngineService,
) -> PhaseMovementsResponse:
    shared.assert_flow_engine_enabled()
    try:
        return service.add_room_movements(flow_instance_id=flow_instance_id, payload=payload)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.post(
    "/flows/{flow_instance_id}/movements",
    response_model=MovementView,
    status_code=status.HTTP_201_CREATED,
    summary="Insert Custom Movement",
    description=(
        "Inserts a movement into the current phase, after `after_movement_id` when given and at "
        "the end otherwise. Sealed phases reject inserts."
    ),
    responses=conflict_responses("PHASE_NOT_CURRENT", "PHASE_SEALED", "FLOW_INSTANCE_NOT_ACTIVE"),
)
def insert_custom_movement(
    flow_instance_id: shared.FlowInstanceIdPath,
    payload: InsertCustomMovementRequest,
    service: EngineService,
) -> MovementView:
    shared.assert_flow_engine_enabled()
    try:
        return service.insert_custom_movement(flow_instance_id=flow_instance_id, payload=payload)
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)


@shared.router.post(
    "/flows/{flow_instance_id}/suggestions",
    response_model=SuggestedMovementsResponse,
    status_code=status.HTTP_200_OK,
    summary="Suggest Movements",
    description=(
        "Asks the configured suggestion provider for candidate movements. Candidates are not "
        "inserted; accept one through the custom movement endpoint with origin `suggested`."
    ),
)
def get_suggested_movements(
    flow_instance_id: shared.FlowInstanceIdPath,
    payload: SuggestMovementsRequest,
    service: EngineService,
) -> SuggestedMovementsResponse:
    shared.assert_flow_engine_enabled()
    shared.assert_flow_suggestions_enabled()
    try:
        return service.get_suggested_movements(
            flow_instance_id=flow_instance_id,
            payload=payload,
        )
    except FlowEngineError as exc:
        raise_flow_http_exception(exc)
