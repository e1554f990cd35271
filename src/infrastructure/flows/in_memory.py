from copy import deepcopy
from datetime import datetime
from threading import Lock
from typing import Optional

from src.core.flows.models import (
    DynamicMovementRecord,
    EvidenceRecord,
    FlowDefinitionRecord,
    FlowInstanceRecord,
    FlowWriteOutcome,
    MovementCompletionRecord,
)
from src.core.flows.repository import FlowRepository


class InMemoryFlowRepository(FlowRepository):
    def __init__(self) -> None:
        self._lock = Lock()
        self._definitions: dict[str, FlowDefinitionRecord] = {}
        self._instances: dict[str, FlowInstanceRecord] = {}
        self._active_by_claim: dict[str, str] = {}
        self._completions: dict[str, list[MovementCompletionRecord]] = {}
        self._evidence: dict[str, list[EvidenceRecord]] = {}
        self._dynamic_movements: dict[str, list[DynamicMovementRecord]] = {}

    def create_definition(self, definition: FlowDefinitionRecord) -> None:
        with self._lock:
            self._definitions[definition.flow_definition_id] = deepcopy(definition)

    def update_definition(self, definition: FlowDefinitionRecord) -> None:
        with self._lock:
            self._definitions[definition.flow_definition_id] = deepcopy(definition)

    def get_definition(self, *, flow_definition_id: str) -> Optional[FlowDefinitionRecord]:
        with self._lock:
            definition = self._definitions.get(flow_definition_id)
            return deepcopy(definition) if definition is not None else None

    def list_definitions(
        self,
        *,
        peril_type: Optional[str],
        is_active: Optional[bool],
    ) -> list[FlowDefinitionRecord]:
        with self._lock:
            rows = [
                definition
                for definition in self._definitions.values()
                if (peril_type is None or definition.peril_type == peril_type)
                and (is_active is None or definition.is_active == is_active)
            ]
            rows.sort(key=lambda item: (item.created_at, item.flow_definition_id), reverse=True)
            return deepcopy(rows)

    def find_active_definition(self, *, peril_type: str) -> Optional[FlowDefinitionRecord]:
        with self._lock:
            candidates = [
                definition
                for definition in self._definitions.values()
                if definition.peril_type == peril_type and definition.is_active
            ]
            if not candidates:
                return None
            selected = max(candidates, key=lambda item: (item.version, item.updated_at))
            return deepcopy(selected)

    def delete_definition(self, *, flow_definition_id: str) -> bool:
        with self._lock:
            return self._definitions.pop(flow_definition_id, None) is not None

    def count_active_instances(self, *, flow_definition_id: str) -> int:
        with self._lock:
            return sum(
                1
                for instance in self._instances.values()
                if instance.flow_definition_id == flow_definition_id
                and instance.status == "active"
            )

    def create_instance_if_no_active(self, instance: FlowInstanceRecord) -> bool:
        with self._lock:
            if instance.claim_id in self._active_by_claim:
                return False
            self._instances[instance.flow_instance_id] = deepcopy(instance)
            self._active_by_claim[instance.claim_id] = instance.flow_instance_id
            return True

    def get_instance(self, *, flow_instance_id: str) -> Optional[FlowInstanceRecord]:
        with self._lock:
            instance = self._instances.get(flow_instance_id)
            return deepcopy(instance) if instance is not None else None

    def get_active_instance_for_claim(self, *, claim_id: str) -> Optional[FlowInstanceRecord]:
        with self._lock:
            flow_instance_id = self._active_by_claim.get(claim_id)
            if flow_instance_id is None:
                return None
            return deepcopy(self._instances[flow_instance_id])

    def advance_instance(
        self,
        *,
        flow_instance_id: str,
        expected_phase_index: int,
        expected_revision: int,
        next_phase_id: Optional[str],
        next_phase_index: Optional[int],
        updated_at: datetime,
    ) -> Optional[FlowInstanceRecord]:
        with self._lock:
            instance = self._instances.get(flow_instance_id)
            if (
                instance is None
                or instance.status != "active"
                or instance.current_phase_index != expected_phase_index
                or instance.revision != expected_revision
            ):
                return None
            changes: dict = {"revision": instance.revision + 1, "updated_at": updated_at}
            if next_phase_id is None or next_phase_index is None:
                changes.update({"status": "completed", "completed_at": updated_at})
                self._active_by_claim.pop(instance.claim_id, None)
            else:
                changes.update(
                    {"current_phase_id": next_phase_id, "current_phase_index": next_phase_index}
                )
            advanced = instance.model_copy(update=changes)
            self._instances[flow_instance_id] = advanced
            return deepcopy(advanced)

    def cancel_instance(
        self, *, flow_instance_id: str, cancelled_at: datetime
    ) -> Optional[FlowInstanceRecord]:
        with self._lock:
            instance = self._instances.get(flow_instance_id)
            if instance is None or instance.status != "active":
                return None
            cancelled = instance.model_copy(
                update={
                    "status": "cancelled",
                    "cancelled_at": cancelled_at,
                    "updated_at": cancelled_at,
                    "revision": instance.revision + 1,
                }
            )
            self._instances[flow_instance_id] = cancelled
            self._active_by_claim.pop(instance.claim_id, None)
            return deepcopy(cancelled)

    def record_completion(
        self,
        *,
        completion: MovementCompletionRecord,
        evidence: list[EvidenceRecord],
        expected_phase_index: int,
    ) -> FlowWriteOutcome:
        with self._lock:
            outcome = self._instance_outcome(
                completion.flow_instance_id, expected_phase_index=expected_phase_index
            )
            if outcome != "APPLIED":
                return outcome
            completions = self._completions.setdefault(completion.flow_instance_id, [])
            if any(item.movement_id == completion.movement_id for item in completions):
                return "DUPLICATE"
            completions.append(deepcopy(completion))
            self._evidence.setdefault(completion.flow_instance_id, []).extend(deepcopy(evidence))
            return "APPLIED"

    def list_completions(self, *, flow_instance_id: str) -> list[MovementCompletionRecord]:
        with self._lock:
            rows = list(self._completions.get(flow_instance_id, []))
            return deepcopy(sorted(rows, key=lambda item: item.completed_at))

    def append_evidence(self, evidence: EvidenceRecord) -> FlowWriteOutcome:
        with self._lock:
            outcome = self._instance_outcome(evidence.flow_instance_id, expected_phase_index=None)
            if outcome != "APPLIED":
                return outcome
            completions = self._completions.get(evidence.flow_instance_id, [])
            if not any(item.completion_id == evidence.completion_id for item in completions):
                return "COMPLETION_MISSING"
            self._evidence.setdefault(evidence.flow_instance_id, []).append(deepcopy(evidence))
            return "APPLIED"

    def list_evidence(
        self, *, flow_instance_id: str, movement_id: Optional[str] = None
    ) -> list[EvidenceRecord]:
        with self._lock:
            rows = [
                item
                for item in self._evidence.get(flow_instance_id, [])
                if movement_id is None or item.movement_id == movement_id
            ]
            return deepcopy(sorted(rows, key=lambda item: item.created_at))

    def insert_dynamic_movements(
        self,
        *,
        flow_instance_id: str,
        expected_phase_index: int,
        movements: list[DynamicMovementRecord],
    ) -> FlowWriteOutcome:
        with self._lock:
            outcome = self._instance_outcome(
                flow_instance_id, expected_phase_index=expected_phase_index
            )
            if outcome != "APPLIED":
                return outcome
            self._dynamic_movements.setdefault(flow_instance_id, []).extend(deepcopy(movements))
            instance = self._instances[flow_instance_id]
            self._instances[flow_instance_id] = instance.model_copy(
                update={"revision": instance.revision + 1}
            )
            return "APPLIED"

    def list_dynamic_movements(self, *, flow_instance_id: str) -> list[DynamicMovementRecord]:
        with self._lock:
            return deepcopy(list(self._dynamic_movements.get(flow_instance_id, [])))

    def _instance_outcome(
        self, flow_instance_id: str, *, expected_phase_index: Optional[int]
    ) -> FlowWriteOutcome:
        instance = self._instances.get(flow_instance_id)
        if instance is None:
            return "INSTANCE_NOT_FOUND"
        if instance.status != "active":
            return "INSTANCE_NOT_ACTIVE"
        if (
            expected_phase_index is not None
            and instance.current_phase_index != expected_phase_index
        ):
            return "PHASE_CHANGED"
        return "APPLIED"
