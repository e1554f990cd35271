from datetime import datetime
from typing import Optional, Protocol

from src.core.flows.models import (
    DynamicMovementRecord,
    EvidenceRecord,
    FlowDefinitionRecord,
    FlowInstanceRecord,
    FlowWriteOutcome,
    MovementCompletionRecord,
)


class FlowRepository(Protocol):
    """Persistence port for definitions, instances and the movement ledger.

    Every write that depends on instance state is conditional: the precondition is
    re-checked inside the same atomic unit as the write, and the outcome tells the
    caller which precondition failed.
    """

    def create_definition(self, definition: FlowDefinitionRecord) -> None: ...

    def update_definition(self, definition: FlowDefinitionRecord) -> None: ...

    def get_definition(self, *, flow_definition_id: str) -> Optional[FlowDefinitionRecord]: ...

    def list_definitions(
        self,
        *,
        peril_type: Optional[str],
        is_active: Optional[bool],
    ) -> list[FlowDefinitionRecord]: ...

    def find_active_definition(self, *, peril_type: str) -> Optional[FlowDefinitionRecord]: ...

    def delete_definition(self, *, flow_definition_id: str) -> bool: ...

    def count_active_instances(self, *, flow_definition_id: str) -> int: ...

    def create_instance_if_no_active(self, instance: FlowInstanceRecord) -> bool: ...

    def get_instance(self, *, flow_instance_id: str) -> Optional[FlowInstanceRecord]: ...

    def get_active_instance_for_claim(self, *, claim_id: str) -> Optional[FlowInstanceRecord]: ...

    def advance_instance(
        self,
        *,
        flow_instance_id: str,
        expected_phase_index: int,
        expected_revision: int,
        next_phase_id: Optional[str],
        next_phase_index: Optional[int],
        updated_at: datetime,
    ) -> Optional[FlowInstanceRecord]: ...

    def cancel_instance(
        self, *, flow_instance_id: str, cancelled_at: datetime
    ) -> Optional[FlowInstanceRecord]: ...

    def record_completion(
        self,
        *,
        completion: MovementCompletionRecord,
        evidence: list[EvidenceRecord],
        expected_phase_index: int,
    ) -> FlowWriteOutcome: ...

    def list_completions(self, *, flow_instance_id: str) -> list[MovementCompletionRecord]: ...

    def append_evidence(self, evidence: EvidenceRecord) -> FlowWriteOutcome: ...

    def list_evidence(
        self, *, flow_instance_id: str, movement_id: Optional[str] = None
    ) -> list[EvidenceRecord]: ...

    def insert_dynamic_movements(
        self,
        *,
        flow_instance_id: str,
        expected_phase_index: int,
        movements: list[DynamicMovementRecord],
    ) -> FlowWriteOutcome: ...

    def list_dynamic_movements(self, *, flow_instance_id: str) -> list[DynamicMovementRecord]: ...
