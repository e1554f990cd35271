from datetime import datetime, timezone

from src.core.flows.evidence import (
    count_evidence_by_type,
    find_evidence_excess,
    find_evidence_shortfalls,
)
from src.core.flows.gates import (
    REASON_EVIDENCE_MISSING,
    REASON_MOVEMENTS_INCOMPLETE,
    evaluate_gate,
)
from src.core.flows.models import (
    EvidenceRecord,
    EvidenceRequirement,
    GateRule,
    MovementCompletionRecord,
    MovementTemplate,
)
from src.core.flows.state import ResolvedMovement

_NOW = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


def _movement(movement_id: str, *, required: bool = True, requirements=()) -> ResolvedMovement:
    return ResolvedMovement.from_template(
        phase_id="exterior",
        movement=MovementTemplate(
            id=movement_id,
            name=movement_id.title(),
            sequence_order=1,
            is_required=required,
            evidence_requirements=list(requirements),
        ),
    )


def _completion(movement_id: str, status: str = "completed") -> MovementCompletionRecord:
    return MovementCompletionRecord(
        completion_id=f"mc_{movement_id}",
        flow_instance_id="fi_1",
        movement_id=movement_id,
        phase_id="exterior",
        status=status,
        user_id="adjuster_7",
        skip_reason="not accessible" if status == "skipped" else None,
        completed_at=_NOW,
    )


def _evidence(movement_id: str, evidence_type: str = "photo", index: int = 0) -> EvidenceRecord:
    return EvidenceRecord(
        evidence_id=f"ev_{movement_id}_{index}",
        flow_instance_id="fi_1",
        movement_id=movement_id,
        completion_id=f"mc_{movement_id}",
        evidence_type=evidence_type,
        user_id="adjuster_7",
        created_at=_NOW,
    )


def _gate(**kwargs) -> GateRule:
    return GateRule(id="gate_exterior", name="Exterior complete", **kwargs)


def test_count_evidence_by_type_reports_every_type():
    counts = count_evidence_by_type([_evidence("roof"), _evidence("roof", index=1)])

    assert counts == {"photo": 2, "audio": 0, "voice_note": 0, "measurement": 0, "note": 0}


def test_shortfalls_ignore_optional_requirements_and_excess_uses_max():
    requirements = [
        EvidenceRequirement(type="photo", min_quantity=2, max_quantity=3),
        EvidenceRequirement(type="note", is_required=False, min_quantity=1),
    ]
    counts = {"photo": 4, "note": 0}

    assert find_evidence_shortfalls(requirements, counts) == []
    excess = find_evidence_excess(requirements, counts)
    assert [(item.type, item.allowed_max, item.actual) for item in excess] == [("photo", 3, 4)]

    shortfalls = find_evidence_shortfalls(requirements, {"photo": 1})
    assert [(item.type, item.required_min, item.actual) for item in shortfalls] == [
        ("photo", 2, 1)
    ]


def test_pass_through_gate_passes_an_empty_phase():
    outcome = evaluate_gate(
        gate=_gate(pass_through=True), movements=[], completions={}, evidence=[]
    )

    assert outcome.passed is True
    assert outcome.reason is None


def test_pass_through_gate_still_checks_movements_added_later():
    outcome = evaluate_gate(
        gate=_gate(pass_through=True),
        movements=[_movement("roof", requirements=[EvidenceRequirement(type="photo")])],
        completions={"roof": _completion("roof", status="skipped")},
        evidence=[],
    )

    assert outcome.passed is False
    assert outcome.reason == f"{REASON_MOVEMENTS_INCOMPLETE};{REASON_EVIDENCE_MISSING}"
    assert [item.movement_id for item in outcome.missing_movements] == ["roof"]
    assert [item.movement_id for item in outcome.missing_evidence] == ["roof"]


def test_gate_fails_on_pending_and_skipped_required_movements():
    movements = [_movement("roof"), _movement("gutters"), _movement("fence", required=False)]

    outcome = evaluate_gate(
        gate=_gate(),
        movements=movements,
        completions={"gutters": _completion("gutters", status="skipped")},
        evidence=[],
    )

    assert outcome.passed is False
    assert outcome.reason == REASON_MOVEMENTS_INCOMPLETE
    assert [(item.movement_id, item.state) for item in outcome.missing_movements] == [
        ("roof", "pending"),
        ("gutters", "skipped"),
    ]


def test_gate_requires_listed_optional_movements():
    movements = [_movement("roof"), _movement("fence", required=False)]

    outcome = evaluate_gate(
        gate=_gate(required_movement_ids=["fence"]),
        movements=movements,
        completions={"roof": _completion("roof")},
        evidence=[],
    )

    assert outcome.passed is False
    assert [item.movement_id for item in outcome.missing_movements] == ["fence"]


def test_gate_reports_missing_evidence_for_required_and_completed_optional_movements():
    photo_requirement = EvidenceRequirement(type="photo", min_quantity=2)
    movements = [
        _movement("roof", requirements=[photo_requirement]),
        _movement("fence", required=False, requirements=[photo_requirement]),
        _movement("shed", required=False, requirements=[photo_requirement]),
    ]

    outcome = evaluate_gate(
        gate=_gate(),
        movements=movements,
        completions={
            "roof": _completion("roof"),
            "fence": _completion("fence"),
            "shed": _completion("shed", status="skipped"),
        },
        evidence=[_evidence("roof"), _evidence("fence"), _evidence("fence", index=1)],
    )

    assert outcome.passed is False
    assert outcome.reason == REASON_EVIDENCE_MISSING
    assert [
        (item.movement_id, item.type, item.required_min, item.actual)
        for item in outcome.missing_evidence
    ] == [("roof", "photo", 2, 1)]


def test_gate_passes_when_required_work_and_evidence_are_present():
    movements = [
        _movement("roof", requirements=[EvidenceRequirement(type="photo", min_quantity=1)]),
        _movement("fence", required=False),
    ]

    outcome = evaluate_gate(
        gate=_gate(),
        movements=movements,
        completions={"roof": _completion("roof")},
        evidence=[_evidence("roof")],
    )

    assert outcome.passed is True
    assert outcome.missing_movements == []
    assert outcome.missing_evidence == []


def test_gate_combines_failure_reasons():
    movements = [
        _movement("roof", requirements=[EvidenceRequirement(type="photo", min_quantity=1)]),
        _movement("gutters"),
    ]

    outcome = evaluate_gate(
        gate=_gate(),
        movements=movements,
        completions={"roof": _completion("roof")},
        evidence=[],
    )

    assert outcome.reason == f"{REASON_MOVEMENTS_INCOMPLETE};{REASON_EVIDENCE_MISSING}"
