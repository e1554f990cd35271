import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from pydantic import ValidationError

from src.core.flows.collaborators import EvidenceBlobStore, SuggestionProvider, no_suggestions
from src.core.flows.definitions import normalize_peril_type
from src.core.flows.errors import (
    FlowCollaboratorError,
    FlowConflictError,
    FlowEngineError,
    FlowNotFoundError,
    FlowOutOfOrderError,
    FlowValidationError,
)
from src.core.flows.evidence import (
    count_evidence_by_type,
    find_evidence_excess,
    find_evidence_shortfalls,
)
from src.core.flows.gates import evaluate_gate
from src.core.flows.models import (
    AddRoomRequest,
    AttachEvidenceRequest,
    CompleteMovementRequest,
    CompletionStatus,
    DynamicMovementRecord,
    EvidenceInput,
    EvidenceRecord,
    EvidenceResponse,
    EvidenceValidationResponse,
    FlowGraph,
    FlowInstanceRecord,
    FlowInstanceResponse,
    FlowPhasesResponse,
    FlowProgressResponse,
    FlowTimelineEntry,
    FlowTimelineResponse,
    FlowWriteOutcome,
    GateEvaluationResponse,
    InsertCustomMovementRequest,
    MovementCandidate,
    MovementCompletionRecord,
    MovementCompletionResponse,
    MovementView,
    NextStepResponse,
    PendingGate,
    PhaseMovementsResponse,
    PhaseState,
    PhaseSummary,
    SkipMovementRequest,
    StartFlowRequest,
    SuggestedMovementsResponse,
    SuggestMovementsRequest,
)
from src.core.flows.repository import FlowRepository
from src.core.flows.state import FlowState, ResolvedMovement

logger = logging.getLogger(__name__)

MAX_GATE_ADVANCE_ATTEMPTS = 3


class FlowEngineService:
    """Runs flow instances: start and cancel, movement ledger, gates and expansion."""

    def __init__(
        self,
        *,
        repository: FlowRepository,
        suggestion_provider: Optional[SuggestionProvider] = None,
        blob_store: Optional[EvidenceBlobStore] = None,
    ) -> None:
        self._repository = repository
        self._suggestion_provider = suggestion_provider or no_suggestions
        self._blob_store = blob_store

    def start_flow_for_claim(
        self, *, claim_id: str, payload: StartFlowRequest
    ) -> FlowInstanceResponse:
        claim_id = claim_id.strip()
        peril_type = normalize_peril_type(payload.peril_type)
        if not claim_id:
            raise FlowValidationError("CLAIM_ID_REQUIRED")
        if not peril_type:
            raise FlowValidationError("PERIL_TYPE_REQUIRED")
        if self._repository.get_active_instance_for_claim(claim_id=claim_id) is not None:
            raise FlowConflictError("ACTIVE_FLOW_EXISTS")
        definition = self._repository.find_active_definition(peril_type=peril_type)
        if definition is None:
            raise FlowNotFoundError("FLOW_DEFINITION_NOT_FOUND_FOR_PERIL")
        snapshot = FlowGraph.model_validate(definition.flow_json)
        now = _utc_now()
        instance = FlowInstanceRecord(
            flow_instance_id=f"fi_{uuid.uuid4().hex[:12]}",
            claim_id=claim_id,
            flow_definition_id=definition.flow_definition_id,
            flow_definition_version=definition.version,
            peril_type=peril_type,
            status="active",
            current_phase_id=snapshot.phases[0].id,
            current_phase_index=0,
            revision=0,
            snapshot=snapshot,
            started_by=payload.started_by,
            started_at=now,
            updated_at=now,
        )
        if not self._repository.create_instance_if_no_active(instance):
            raise FlowConflictError("ACTIVE_FLOW_EXISTS")
        logger.info(
            "flow.started",
            extra={
                "extra_fields": {
                    "flow_instance_id": instance.flow_instance_id,
                    "claim_id": claim_id,
                    "flow_definition_id": definition.flow_definition_id,
                    "flow_definition_version": definition.version,
                }
            },
        )
        return _to_instance_response(instance, [])

    def get_current_flow(self, *, claim_id: str) -> Optional[FlowInstanceResponse]:
        instance = self._repository.get_active_instance_for_claim(claim_id=claim_id)
        if instance is None:
            return None
        completions = self._repository.list_completions(
            flow_instance_id=instance.flow_instance_id
        )
        return _to_instance_response(instance, completions)

    def get_flow(self, *, flow_instance_id: str) -> FlowInstanceResponse:
        state = self._load_state(flow_instance_id)
        return _to_instance_response(state.instance, state.completions)

    def cancel_flow(self, *, flow_instance_id: str) -> FlowInstanceResponse:
        instance = self._require_instance(flow_instance_id)
        _assert_active(instance)
        cancelled = self._repository.cancel_instance(
            flow_instance_id=flow_instance_id, cancelled_at=_utc_now()
        )
        if cancelled is None:
            raise FlowConflictError("FLOW_INSTANCE_NOT_ACTIVE")
        logger.info(
            "flow.cancelled",
            extra={
                "extra_fields": {
                    "flow_instance_id": flow_instance_id,
                    "claim_id": cancelled.claim_id,
                }
            },
        )
        completions = self._repository.list_completions(flow_instance_id=flow_instance_id)
        return _to_instance_response(cancelled, completions)

    def cancel_flow_for_claim(self, *, claim_id: str) -> FlowInstanceResponse:
        instance = self._repository.get_active_instance_for_claim(claim_id=claim_id)
        if instance is None:
            raise FlowNotFoundError("ACTIVE_FLOW_NOT_FOUND")
        return self.cancel_flow(flow_instance_id=instance.flow_instance_id)

    def get_flow_progress(self, *, flow_instance_id: str) -> FlowProgressResponse:
        state = self._load_state(flow_instance_id)
        known_ids = {movement.movement_id for movement in state.all_movements()}
        total = len(known_ids)
        completed = sum(
            1
            for item in state.completions
            if item.status == "completed" and item.movement_id in known_ids
        )
        skipped = sum(
            1
            for item in state.completions
            if item.status == "skipped" and item.movement_id in known_ids
        )
        percent = round(completed * 100 / total, 2) if total else 0.0
        return FlowProgressResponse(
            flow_instance_id=flow_instance_id,
            status=state.instance.status,
            total_movements=total,
            completed_movements=completed,
            skipped_movements=skipped,
            percent_complete=percent,
            current_phase_id=state.instance.current_phase_id,
            current_phase_name=state.current_phase.name,
            phase_index=state.instance.current_phase_index,
            phase_count=len(state.phases),
        )

    def get_flow_timeline(self, *, flow_instance_id: str) -> FlowTimelineResponse:
        state = self._load_state(flow_instance_id)
        entries = []
        for completion in state.completions:
            movement = state.find_movement(completion.movement_id)
            entries.append(
                FlowTimelineEntry(
                    completion_id=completion.completion_id,
                    movement_id=completion.movement_id,
                    movement_name=movement.name if movement else completion.movement_id,
                    phase_id=completion.phase_id,
                    status=completion.status,
                    user_id=completion.user_id,
                    notes=completion.notes,
                    skip_reason=completion.skip_reason,
                    completed_at=completion.completed_at.isoformat(),
                    evidence_count=len(state.evidence_for(completion.movement_id)),
                )
            )
        return FlowTimelineResponse(flow_instance_id=flow_instance_id, entries=entries)

    def get_flow_phases(self, *, flow_instance_id: str) -> FlowPhasesResponse:
        state = self._load_state(flow_instance_id)
        completions = state.completions_by_movement()
        summaries = []
        for index, phase in enumerate(state.phases):
            movements = state.phase_movements(phase.id)
            statuses = [
                completions[item.movement_id].status
                for item in movements
                if item.movement_id in completions
            ]
            summaries.append(
                PhaseSummary(
                    phase_id=phase.id,
                    name=phase.name,
                    description=phase.description,
                    index=index,
                    state=_phase_state(
                        state, index=index, acted=len(statuses), total=len(movements)
                    ),
                    gate_id=phase.gate.id,
                    movement_count=len(movements),
                    completed_count=statuses.count("completed"),
                    skipped_count=statuses.count("skipped"),
                )
            )
        return FlowPhasesResponse(flow_instance_id=flow_instance_id, phases=summaries)

    def get_phase_movements(
        self, *, flow_instance_id: str, phase_id: str
    ) -> PhaseMovementsResponse:
        state = self._load_state(flow_instance_id)
        if state.find_phase(phase_id) is None:
            raise FlowNotFoundError("PHASE_NOT_FOUND")
        return _to_phase_movements(state, phase_id)

    def get_next_movement(self, *, flow_instance_id: str) -> NextStepResponse:
        state = self._load_state(flow_instance_id)
        if state.instance.status != "active":
            return NextStepResponse(flow_instance_id=flow_instance_id, kind="complete")
        completions = state.completions_by_movement()
        for movement in state.phase_movements(state.instance.current_phase_id):
            if movement.movement_id not in completions:
                return NextStepResponse(
                    flow_instance_id=flow_instance_id,
                    kind="movement",
                    movement=_to_movement_view(movement, None),
                )
        phase = state.current_phase
        return NextStepResponse(
            flow_instance_id=flow_instance_id,
            kind="gate",
            gate=PendingGate(
                gate_id=phase.gate.id,
                name=phase.gate.name,
                phase_id=phase.id,
                pass_through=phase.gate.pass_through,
            ),
        )

    def complete_movement(
        self,
        *,
        flow_instance_id: str,
        movement_id: str,
        payload: CompleteMovementRequest,
    ) -> MovementCompletionResponse:
        return self._record_action(
            flow_instance_id=flow_instance_id,
            movement_id=movement_id,
            status="completed",
            user_id=payload.user_id,
            notes=payload.notes,
            skip_reason=None,
            evidence_inputs=payload.evidence,
        )

    def skip_movement(
        self,
        *,
        flow_instance_id: str,
        movement_id: str,
        payload: SkipMovementRequest,
    ) -> MovementCompletionResponse:
        reason = (payload.reason or "").strip()
        if not reason:
            raise FlowValidationError("SKIP_REASON_REQUIRED")
        return self._record_action(
            flow_instance_id=flow_instance_id,
            movement_id=movement_id,
            status="skipped",
            user_id=payload.user_id,
            notes=None,
            skip_reason=reason,
            evidence_inputs=[],
        )

    def evaluate_gate(
        self,
        *,
        flow_instance_id: str,
        gate_id: str,
        evaluated_by: Optional[str] = None,
    ) -> GateEvaluationResponse:
        for _attempt in range(MAX_GATE_ADVANCE_ATTEMPTS):
            result = self._try_evaluate_gate(
                flow_instance_id=flow_instance_id,
                gate_id=gate_id,
                evaluated_by=evaluated_by,
            )
            if result is not None:
                return result
        raise FlowConflictError("GATE_EVALUATION_CONFLICT")

    def attach_evidence(
        self,
        *,
        flow_instance_id: str,
        movement_id: str,
        payload: AttachEvidenceRequest,
    ) -> EvidenceResponse:
        state = self._load_state(flow_instance_id)
        _assert_active(state.instance)
        if state.find_movement(movement_id) is None:
            raise FlowNotFoundError("MOVEMENT_NOT_FOUND")
        completion = state.completion_for(movement_id)
        if completion is None:
            raise FlowNotFoundError("MOVEMENT_COMPLETION_NOT_FOUND")
        record = _to_evidence_record(
            payload,
            completion=completion,
            user_id=payload.user_id,
            created_at=_utc_now(),
        )
        _raise_for_outcome(self._repository.append_evidence(record))
        return _to_evidence_response(record, self._resolve_url(record.reference_id))

    def validate_evidence(
        self, *, flow_instance_id: str, movement_id: str
    ) -> EvidenceValidationResponse:
        state = self._load_state(flow_instance_id)
        movement = state.find_movement(movement_id)
        if movement is None:
            raise FlowNotFoundError("MOVEMENT_NOT_FOUND")
        counts = count_evidence_by_type(state.evidence_for(movement_id))
        missing = find_evidence_shortfalls(movement.evidence_requirements, counts)
        excess = find_evidence_excess(movement.evidence_requirements, counts)
        return EvidenceValidationResponse(
            flow_instance_id=flow_instance_id,
            movement_id=movement_id,
            is_satisfied=not missing and not excess,
            counts=counts,
            missing=missing,
            excess=excess,
        )

    def get_movement_evidence(
        self, *, flow_instance_id: str, movement_id: str
    ) -> list[EvidenceResponse]:
        state = self._load_state(flow_instance_id)
        if state.find_movement(movement_id) is None:
            raise FlowNotFoundError("MOVEMENT_NOT_FOUND")
        return [
            _to_evidence_response(item, self._resolve_url(item.reference_id))
            for item in state.evidence_for(movement_id)
        ]

    def add_room_movements(
        self, *, flow_instance_id: str, payload: AddRoomRequest
    ) -> PhaseMovementsResponse:
        room_name = payload.room_name.strip()
        if not room_name:
            raise FlowValidationError("ROOM_NAME_REQUIRED")
        if not payload.movements:
            raise FlowValidationError("ROOM_MOVEMENTS_REQUIRED")
        state = self._load_state(flow_instance_id)
        _assert_active(state.instance)
        phase_id = state.instance.current_phase_id
        existing = state.phase_movements(phase_id)
        _assert_unique_names(existing, [item.name for item in payload.movements])
        start_order = _append_order(existing)
        now = _utc_now()
        records = [
            DynamicMovementRecord(
                movement_id=f"mv_{uuid.uuid4().hex[:12]}",
                flow_instance_id=flow_instance_id,
                phase_id=phase_id,
                name=item.name.strip(),
                description=item.description,
                sequence_order=start_order + offset,
                is_required=item.is_required,
                criticality=item.criticality,
                origin="room_derived",
                room_name=room_name,
                evidence_requirements=item.evidence_requirements,
                created_by=payload.created_by,
                created_at=now,
            )
            for offset, item in enumerate(payload.movements)
        ]
        self._insert_dynamic(state, records)
        logger.info(
            "flow.room_added",
            extra={
                "extra_fields": {
                    "flow_instance_id": flow_instance_id,
                    "phase_id": phase_id,
                    "room_name": room_name,
                    "movement_count": len(records),
                }
            },
        )
        return _to_phase_movements(self._load_state(flow_instance_id), phase_id)

    def insert_custom_movement(
        self, *, flow_instance_id: str, payload: InsertCustomMovementRequest
    ) -> MovementView:
        name = payload.name.strip()
        if not name:
            raise FlowValidationError("MOVEMENT_NAME_REQUIRED")
        state = self._load_state(flow_instance_id)
        _assert_active(state.instance)
        located = state.find_phase(payload.phase_id)
        if located is None:
            raise FlowNotFoundError("PHASE_NOT_FOUND")
        index, phase = located
        if state.is_phase_sealed(index):
            raise FlowConflictError("PHASE_SEALED")
        if index != state.instance.current_phase_index:
            raise FlowOutOfOrderError("PHASE_NOT_CURRENT")
        movements = state.phase_movements(phase.id)
        _assert_unique_names(movements, [name])
        if payload.after_movement_id is None:
            sequence_order = _append_order(movements)
        else:
            sequence_order = _order_after(movements, payload.after_movement_id)
        record = DynamicMovementRecord(
            movement_id=f"mv_{uuid.uuid4().hex[:12]}",
            flow_instance_id=flow_instance_id,
            phase_id=phase.id,
            name=name,
            description=payload.description,
            sequence_order=sequence_order,
            is_required=payload.is_required,
            criticality=payload.criticality,
            origin=payload.origin,
            evidence_requirements=payload.evidence_requirements,
            created_by=payload.created_by,
            created_at=_utc_now(),
        )
        self._insert_dynamic(state, [record])
        return _to_movement_view(ResolvedMovement.from_dynamic(record), None)

    def get_suggested_movements(
        self, *, flow_instance_id: str, payload: SuggestMovementsRequest
    ) -> SuggestedMovementsResponse:
        state = self._load_state(flow_instance_id)
        _assert_active(state.instance)
        context = dict(payload.context)
        context.setdefault("current_phase_id", state.instance.current_phase_id)
        context.setdefault("peril_type", state.instance.peril_type)
        try:
            raw_candidates = list(self._suggestion_provider(flow_instance_id, context))
        except FlowEngineError:
            raise
        except Exception as exc:
            raise FlowCollaboratorError("SUGGESTION_PROVIDER_FAILED") from exc
        try:
            candidates = [MovementCandidate.model_validate(item) for item in raw_candidates]
        except ValidationError as exc:
            raise FlowCollaboratorError("SUGGESTION_PROVIDER_INVALID_RESPONSE") from exc
        return SuggestedMovementsResponse(flow_instance_id=flow_instance_id, candidates=candidates)

    def _try_evaluate_gate(
        self,
        *,
        flow_instance_id: str,
        gate_id: str,
        evaluated_by: Optional[str],
    ) -> Optional[GateEvaluationResponse]:
        state = self._load_state(flow_instance_id)
        instance = state.instance
        located = state.find_gate(gate_id)
        if located is None:
            raise FlowNotFoundError("GATE_NOT_FOUND")
        index, phase = located
        if instance.status == "cancelled":
            raise FlowConflictError("FLOW_INSTANCE_NOT_ACTIVE")
        next_phase = state.phases[index + 1] if index + 1 < len(state.phases) else None
        if state.is_phase_sealed(index):
            return GateEvaluationResponse(
                flow_instance_id=flow_instance_id,
                gate_id=gate_id,
                phase_id=phase.id,
                passed=True,
                next_phase_id=next_phase.id if next_phase else None,
                flow_status=instance.status,
            )
        if index != instance.current_phase_index:
            raise FlowOutOfOrderError("GATE_NOT_CURRENT")

        outcome = evaluate_gate(
            gate=phase.gate,
            movements=state.phase_movements(phase.id),
            completions=state.completions_by_movement(),
            evidence=state.evidence,
        )
        log_fields = {
            "flow_instance_id": flow_instance_id,
            "gate_id": gate_id,
            "phase_id": phase.id,
            "passed": outcome.passed,
            "evaluated_by": evaluated_by,
        }
        if not outcome.passed:
            logger.info("flow.gate_evaluated", extra={"extra_fields": log_fields})
            return GateEvaluationResponse(
                flow_instance_id=flow_instance_id,
                gate_id=gate_id,
                phase_id=phase.id,
                passed=False,
                reason=outcome.reason,
                flow_status=instance.status,
                missing_movements=outcome.missing_movements,
                missing_evidence=outcome.missing_evidence,
            )

        advanced = self._repository.advance_instance(
            flow_instance_id=flow_instance_id,
            expected_phase_index=index,
            expected_revision=instance.revision,
            next_phase_id=next_phase.id if next_phase else None,
            next_phase_index=index + 1 if next_phase else None,
            updated_at=_utc_now(),
        )
        if advanced is None:
            # Another writer got in between; re-read and decide again.
            return None
        logger.info("flow.gate_evaluated", extra={"extra_fields": log_fields})
        if advanced.status == "completed":
            logger.info(
                "flow.completed",
                extra={
                    "extra_fields": {
                        "flow_instance_id": flow_instance_id,
                        "claim_id": advanced.claim_id,
                    }
                },
            )
        return GateEvaluationResponse(
            flow_instance_id=flow_instance_id,
            gate_id=gate_id,
            phase_id=phase.id,
            passed=True,
            next_phase_id=next_phase.id if next_phase else None,
            flow_status=advanced.status,
        )

    def _record_action(
        self,
        *,
        flow_instance_id: str,
        movement_id: str,
        status: CompletionStatus,
        user_id: str,
        notes: Optional[str],
        skip_reason: Optional[str],
        evidence_inputs: Iterable[EvidenceInput],
    ) -> MovementCompletionResponse:
        state = self._load_state(flow_instance_id)
        _assert_active(state.instance)
        movement = state.find_movement(movement_id)
        if movement is None:
            raise FlowNotFoundError("MOVEMENT_NOT_FOUND")
        if movement.phase_id != state.instance.current_phase_id:
            raise FlowOutOfOrderError("MOVEMENT_NOT_IN_CURRENT_PHASE")
        if state.completion_for(movement_id) is not None:
            raise FlowConflictError("MOVEMENT_ALREADY_RECORDED")
        now = _utc_now()
        completion = MovementCompletionRecord(
            completion_id=f"mc_{uuid.uuid4().hex[:12]}",
            flow_instance_id=flow_instance_id,
            movement_id=movement_id,
            phase_id=movement.phase_id,
            status=status,
            user_id=user_id,
            notes=notes,
            skip_reason=skip_reason,
            completed_at=now,
        )
        evidence = [
            _to_evidence_record(item, completion=completion, user_id=user_id, created_at=now)
            for item in evidence_inputs
        ]
        outcome = self._repository.record_completion(
            completion=completion,
            evidence=evidence,
            expected_phase_index=state.instance.current_phase_index,
        )
        _raise_for_outcome(outcome)
        logger.info(
            f"flow.movement_{status}",
            extra={
                "extra_fields": {
                    "flow_instance_id": flow_instance_id,
                    "movement_id": movement_id,
                    "evidence_count": len(evidence),
                }
            },
        )
        return _to_completion_response(completion, evidence, self._resolve_url)

    def _insert_dynamic(self, state: FlowState, records: list[DynamicMovementRecord]) -> None:
        outcome = self._repository.insert_dynamic_movements(
            flow_instance_id=state.instance.flow_instance_id,
            expected_phase_index=state.instance.current_phase_index,
            movements=records,
        )
        if outcome == "PHASE_CHANGED":
            raise FlowConflictError("PHASE_SEALED")
        _raise_for_outcome(outcome)

    def _require_instance(self, flow_instance_id: str) -> FlowInstanceRecord:
        instance = self._repository.get_instance(flow_instance_id=flow_instance_id)
        if instance is None:
            raise FlowNotFoundError("FLOW_INSTANCE_NOT_FOUND")
        return instance

    def _load_state(self, flow_instance_id: str) -> FlowState:
        instance = self._require_instance(flow_instance_id)
        return FlowState(
            instance=instance,
            dynamic_movements=self._repository.list_dynamic_movements(
                flow_instance_id=flow_instance_id
            ),
            completions=self._repository.list_completions(flow_instance_id=flow_instance_id),
            evidence=self._repository.list_evidence(flow_instance_id=flow_instance_id),
        )

    def _resolve_url(self, reference_id: Optional[str]) -> Optional[str]:
        if self._blob_store is None or not reference_id:
            return None
        try:
            return self._blob_store.resolve_url(reference_id)
        except Exception as exc:
            raise FlowCollaboratorError("EVIDENCE_BLOB_STORE_FAILED") from exc


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _assert_active(instance: FlowInstanceRecord) -> None:
    if instance.status != "active":
        raise FlowConflictError("FLOW_INSTANCE_NOT_ACTIVE")


def _raise_for_outcome(outcome: FlowWriteOutcome) -> None:
    if outcome == "APPLIED":
        return
    if outcome == "DUPLICATE":
        raise FlowConflictError("MOVEMENT_ALREADY_RECORDED")
    if outcome == "INSTANCE_NOT_FOUND":
        raise FlowNotFoundError("FLOW_INSTANCE_NOT_FOUND")
    if outcome == "INSTANCE_NOT_ACTIVE":
        raise FlowConflictError("FLOW_INSTANCE_NOT_ACTIVE")
    if outcome == "PHASE_CHANGED":
        raise FlowOutOfOrderError("MOVEMENT_NOT_IN_CURRENT_PHASE")
    if outcome == "COMPLETION_MISSING":
        raise FlowNotFoundError("MOVEMENT_COMPLETION_NOT_FOUND")
    raise FlowEngineError(f"UNKNOWN_WRITE_OUTCOME: {outcome}")


def _assert_unique_names(movements: list[ResolvedMovement], names: list[str]) -> None:
    seen = {movement.name.strip().lower() for movement in movements}
    for name in names:
        normalized = name.strip().lower()
        if normalized in seen:
            raise FlowValidationError("MOVEMENT_NAME_DUPLICATE")
        seen.add(normalized)


def _append_order(movements: list[ResolvedMovement]) -> float:
    if not movements:
        return 1.0
    return max(movement.sequence_order for movement in movements) + 1


def _order_after(movements: list[ResolvedMovement], after_movement_id: str) -> float:
    for position, movement in enumerate(movements):
        if movement.movement_id != after_movement_id:
            continue
        if position + 1 == len(movements):
            return movement.sequence_order + 1
        successor = movements[position + 1]
        return (movement.sequence_order + successor.sequence_order) / 2
    raise FlowNotFoundError("MOVEMENT_NOT_FOUND")


def _phase_state(state: FlowState, *, index: int, acted: int, total: int) -> PhaseState:
    if state.is_phase_sealed(index):
        return "passed"
    if index > state.instance.current_phase_index:
        return "pending"
    if state.instance.status == "active" and acted == total:
        return "gated"
    return "in_progress"


def _to_evidence_record(
    item: EvidenceInput,
    *,
    completion: MovementCompletionRecord,
    user_id: str,
    created_at: datetime,
) -> EvidenceRecord:
    return EvidenceRecord(
        evidence_id=f"ev_{uuid.uuid4().hex[:12]}",
        flow_instance_id=completion.flow_instance_id,
        movement_id=completion.movement_id,
        completion_id=completion.completion_id,
        evidence_type=item.type,
        reference_id=item.reference_id,
        data=item.data,
        notes=item.notes,
        user_id=user_id,
        created_at=created_at,
    )


def _to_instance_response(
    instance: FlowInstanceRecord, completions: list[MovementCompletionRecord]
) -> FlowInstanceResponse:
    return FlowInstanceResponse(
        flow_instance_id=instance.flow_instance_id,
        claim_id=instance.claim_id,
        flow_definition_id=instance.flow_definition_id,
        flow_definition_version=instance.flow_definition_version,
        peril_type=instance.peril_type,
        status=instance.status,
        current_phase_id=instance.current_phase_id,
        current_phase_index=instance.current_phase_index,
        completed_movement_ids=[
            item.movement_id for item in completions if item.status == "completed"
        ],
        started_by=instance.started_by,
        started_at=instance.started_at.isoformat(),
        updated_at=instance.updated_at.isoformat(),
        completed_at=instance.completed_at.isoformat() if instance.completed_at else None,
        cancelled_at=instance.cancelled_at.isoformat() if instance.cancelled_at else None,
    )


def _to_movement_view(
    movement: ResolvedMovement, completion: Optional[MovementCompletionRecord]
) -> MovementView:
    return MovementView(
        movement_id=movement.movement_id,
        phase_id=movement.phase_id,
        name=movement.name,
        description=movement.description,
        sequence_order=movement.sequence_order,
        is_required=movement.is_required,
        criticality=movement.criticality,
        origin=movement.origin,
        room_name=movement.room_name,
        evidence_requirements=list(movement.evidence_requirements),
        state=completion.status if completion is not None else "pending",
        completed_at=completion.completed_at.isoformat() if completion is not None else None,
    )


def _to_phase_movements(state: FlowState, phase_id: str) -> PhaseMovementsResponse:
    completions = state.completions_by_movement()
    return PhaseMovementsResponse(
        flow_instance_id=state.instance.flow_instance_id,
        phase_id=phase_id,
        movements=[
            _to_movement_view(movement, completions.get(movement.movement_id))
            for movement in state.phase_movements(phase_id)
        ],
    )


def _to_evidence_response(record: EvidenceRecord, url: Optional[str]) -> EvidenceResponse:
    return EvidenceResponse(
        evidence_id=record.evidence_id,
        flow_instance_id=record.flow_instance_id,
        movement_id=record.movement_id,
        completion_id=record.completion_id,
        type=record.evidence_type,
        reference_id=record.reference_id,
        url=url,
        data=record.data,
        notes=record.notes,
        user_id=record.user_id,
        created_at=record.created_at.isoformat(),
    )


def _to_completion_response(
    completion: MovementCompletionRecord,
    evidence: list[EvidenceRecord],
    resolve_url: Callable[[Optional[str]], Optional[str]],
) -> MovementCompletionResponse:
    return MovementCompletionResponse(
        completion_id=completion.completion_id,
        flow_instance_id=completion.flow_instance_id,
        movement_id=completion.movement_id,
        phase_id=completion.phase_id,
        status=completion.status,
        user_id=completion.user_id,
        notes=completion.notes,
        skip_reason=completion.skip_reason,
        completed_at=completion.completed_at.isoformat(),
        evidence=[_to_evidence_response(item, resolve_url(item.reference_id)) for item in evidence],
    )
