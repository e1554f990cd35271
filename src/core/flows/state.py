from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from src.core.flows.models import (
    DynamicMovementRecord,
    EvidenceRecord,
    EvidenceRequirement,
    FlowInstanceRecord,
    MovementCompletionRecord,
    MovementCriticality,
    MovementOrigin,
    MovementTemplate,
    PhaseTemplate,
)


@dataclass(frozen=True)
class ResolvedMovement:
    movement_id: str
    phase_id: str
    name: str
    description: Optional[str]
    sequence_order: float
    is_required: bool
    criticality: Optional[MovementCriticality]
    origin: MovementOrigin
    room_name: Optional[str]
    evidence_requirements: tuple[EvidenceRequirement, ...]
    created_at: Optional[datetime] = None

    @classmethod
    def from_template(cls, *, phase_id: str, movement: MovementTemplate) -> "ResolvedMovement":
        return cls(
            movement_id=movement.id,
            phase_id=phase_id,
            name=movement.name,
            description=movement.description,
            sequence_order=movement.sequence_order,
            is_required=movement.is_required,
            criticality=movement.criticality,
            origin="template",
            room_name=None,
            evidence_requirements=tuple(movement.evidence_requirements),
        )

    @classmethod
    def from_dynamic(cls, record: DynamicMovementRecord) -> "ResolvedMovement":
        return cls(
            movement_id=record.movement_id,
            phase_id=record.phase_id,
            name=record.name,
            description=record.description,
            sequence_order=record.sequence_order,
            is_required=record.is_required,
            criticality=record.criticality,
            origin=record.origin,
            room_name=record.room_name,
            evidence_requirements=tuple(record.evidence_requirements),
            created_at=record.created_at,
        )

    def ordering_key(self) -> tuple:
        # Template movements win ties; inserted ones follow in insertion order.
        inserted_at = self.created_at.timestamp() if self.created_at is not None else 0.0
        return (self.sequence_order, self.origin != "template", inserted_at, self.movement_id)


@dataclass
class FlowState:
    """Read-side view of one instance: snapshot, inserted movements and ledger."""

    instance: FlowInstanceRecord
    dynamic_movements: list[DynamicMovementRecord] = field(default_factory=list)
    completions: list[MovementCompletionRecord] = field(default_factory=list)
    evidence: list[EvidenceRecord] = field(default_factory=list)

    @property
    def phases(self) -> list[PhaseTemplate]:
        return list(self.instance.snapshot.phases)

    @property
    def current_phase(self) -> PhaseTemplate:
        return self.instance.snapshot.phases[self.instance.current_phase_index]

    def find_phase(self, phase_id: str) -> Optional[tuple[int, PhaseTemplate]]:
        for index, phase in enumerate(self.instance.snapshot.phases):
            if phase.id == phase_id:
                return index, phase
        return None

    def find_gate(self, gate_id: str) -> Optional[tuple[int, PhaseTemplate]]:
        for index, phase in enumerate(self.instance.snapshot.phases):
            if phase.gate.id == gate_id:
                return index, phase
        return None

    def is_phase_sealed(self, index: int) -> bool:
        if self.instance.status == "completed":
            return True
        return index < self.instance.current_phase_index

    def phase_movements(self, phase_id: str) -> list[ResolvedMovement]:
        located = self.find_phase(phase_id)
        if located is None:
            return []
        _, phase = located
        movements = [
            ResolvedMovement.from_template(phase_id=phase.id, movement=movement)
            for movement in phase.movements
        ]
        movements.extend(
            ResolvedMovement.from_dynamic(record)
            for record in self.dynamic_movements
            if record.phase_id == phase_id
        )
        return sorted(movements, key=lambda movement: movement.ordering_key())

    def all_movements(self) -> list[ResolvedMovement]:
        movements: list[ResolvedMovement] = []
        for phase in self.instance.snapshot.phases:
            movements.extend(self.phase_movements(phase.id))
        return movements

    def find_movement(self, movement_id: str) -> Optional[ResolvedMovement]:
        for movement in self.all_movements():
            if movement.movement_id == movement_id:
                return movement
        return None

    def completion_for(self, movement_id: str) -> Optional[MovementCompletionRecord]:
        for completion in self.completions:
            if completion.movement_id == movement_id:
                return completion
        return None

    def completions_by_movement(self) -> dict[str, MovementCompletionRecord]:
        return {completion.movement_id: completion for completion in self.completions}

    def evidence_for(self, movement_id: str) -> list[EvidenceRecord]:
        return [item for item in self.evidence if item.movement_id == movement_id]
