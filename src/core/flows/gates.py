from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from src.core.flows.evidence import count_evidence_by_type, find_evidence_shortfalls
from src.core.flows.models import (
    EvidenceRecord,
    GateMissingEvidence,
    GateMissingMovement,
    GateRule,
    MovementCompletionRecord,
)
from src.core.flows.state import ResolvedMovement

REASON_MOVEMENTS_INCOMPLETE = "REQUIRED_MOVEMENTS_INCOMPLETE"
REASON_EVIDENCE_MISSING = "REQUIRED_EVIDENCE_MISSING"


@dataclass(frozen=True)
class GateOutcome:
    passed: bool
    reason: Optional[str] = None
    missing_movements: list[GateMissingMovement] = field(default_factory=list)
    missing_evidence: list[GateMissingEvidence] = field(default_factory=list)


def _gate_movement_ids(gate: GateRule, movements: Iterable[ResolvedMovement]) -> list[str]:
    required = [movement.movement_id for movement in movements if movement.is_required]
    for movement_id in gate.required_movement_ids:
        if movement_id not in required:
            required.append(movement_id)
    return required


def _evidence_checked(
    movement: ResolvedMovement, completion: Optional[MovementCompletionRecord]
) -> bool:
    if movement.is_required:
        return True
    return completion is not None and completion.status == "completed"


def evaluate_gate(
    *,
    gate: GateRule,
    movements: list[ResolvedMovement],
    completions: Mapping[str, MovementCompletionRecord],
    evidence: Iterable[EvidenceRecord],
) -> GateOutcome:
    """Decide whether a phase gate passes. Reads only what it is given.

    A pass-through gate only marks a phase that starts without movements; movements
    added to such a phase at runtime are checked like any other.
    """
    by_id = {movement.movement_id: movement for movement in movements}
    missing_movements: list[GateMissingMovement] = []
    for movement_id in _gate_movement_ids(gate, movements):
        movement = by_id.get(movement_id)
        completion = completions.get(movement_id)
        if completion is not None and completion.status == "completed":
            continue
        missing_movements.append(
            GateMissingMovement(
                movement_id=movement_id,
                name=movement.name if movement is not None else movement_id,
                state=completion.status if completion is not None else "pending",
            )
        )

    evidence_by_movement: dict[str, list[EvidenceRecord]] = {}
    for item in evidence:
        evidence_by_movement.setdefault(item.movement_id, []).append(item)

    missing_evidence: list[GateMissingEvidence] = []
    for movement in movements:
        if not _evidence_checked(movement, completions.get(movement.movement_id)):
            continue
        counts = count_evidence_by_type(evidence_by_movement.get(movement.movement_id, []))
        for shortfall in find_evidence_shortfalls(movement.evidence_requirements, counts):
            missing_evidence.append(
                GateMissingEvidence(
                    movement_id=movement.movement_id,
                    name=movement.name,
                    type=shortfall.type,
                    required_min=shortfall.required_min,
                    actual=shortfall.actual,
                )
            )

    reasons = []
    if missing_movements:
        reasons.append(REASON_MOVEMENTS_INCOMPLETE)
    if missing_evidence:
        reasons.append(REASON_EVIDENCE_MISSING)
    if reasons:
        return GateOutcome(
            passed=False,
            reason=";".join(reasons),
            missing_movements=missing_movements,
            missing_evidence=missing_evidence,
        )
    return GateOutcome(passed=True)
