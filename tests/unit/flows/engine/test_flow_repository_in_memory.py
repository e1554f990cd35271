from datetime import datetime, timezone

from src.core.flows.models import DynamicMovementRecord
from src.infrastructure.flows import InMemoryFlowRepository
from tests.factories import completion_record, evidence_record, instance_record

_LATER = datetime(2026, 3, 1, 11, 0, tzinfo=timezone.utc)


def _dynamic(movement_id: str = "mv_1") -> DynamicMovementRecord:
    return DynamicMovementRecord(
        movement_id=movement_id,
        flow_instance_id="fi_1",
        phase_id="arrival",
        name="Check fence",
        sequence_order=3.0,
        is_required=False,
        origin="custom",
        created_at=_LATER,
    )


def test_only_one_active_instance_per_claim():
    repository = InMemoryFlowRepository()

    assert repository.create_instance_if_no_active(instance_record("fi_1")) is True
    assert repository.create_instance_if_no_active(instance_record("fi_2")) is False
    assert repository.get_active_instance_for_claim(claim_id="CLM-1").flow_instance_id == "fi_1"

    repository.cancel_instance(flow_instance_id="fi_1", cancelled_at=_LATER)

    assert repository.get_active_instance_for_claim(claim_id="CLM-1") is None
    assert repository.create_instance_if_no_active(instance_record("fi_2")) is True


def test_record_completion_outcomes():
    repository = InMemoryFlowRepository()
    repository.create_instance_if_no_active(instance_record())

    assert (
        repository.record_completion(
            completion=completion_record(), evidence=[evidence_record()], expected_phase_index=0
        )
        == "APPLIED"
    )
    assert (
        repository.record_completion(
            completion=completion_record(), evidence=[], expected_phase_index=0
        )
        == "DUPLICATE"
    )
    assert (
        repository.record_completion(
            completion=completion_record("meet_insured"), evidence=[], expected_phase_index=1
        )
        == "PHASE_CHANGED"
    )
    assert (
        repository.record_completion(
            completion=completion_record(flow_instance_id="fi_missing"),
            evidence=[],
            expected_phase_index=0,
        )
        == "INSTANCE_NOT_FOUND"
    )
    repository.cancel_instance(flow_instance_id="fi_1", cancelled_at=_LATER)
    assert (
        repository.record_completion(
            completion=completion_record("meet_insured"), evidence=[], expected_phase_index=0
        )
        == "INSTANCE_NOT_ACTIVE"
    )
    assert [item.movement_id for item in repository.list_completions(flow_instance_id="fi_1")] == [
        "verify_address"
    ]
    assert [item.evidence_id for item in repository.list_evidence(flow_instance_id="fi_1")] == [
        "ev_1"
    ]


def test_append_evidence_requires_existing_completion():
    repository = InMemoryFlowRepository()
    repository.create_instance_if_no_active(instance_record())

    assert repository.append_evidence(evidence_record()) == "COMPLETION_MISSING"

    repository.record_completion(
        completion=completion_record(), evidence=[], expected_phase_index=0
    )
    assert repository.append_evidence(evidence_record("ev_2", minute=5)) == "APPLIED"
    assert repository.append_evidence(evidence_record("ev_1", minute=1)) == "APPLIED"
    assert [
        item.evidence_id
        for item in repository.list_evidence(flow_instance_id="fi_1", movement_id="verify_address")
    ] == ["ev_1", "ev_2"]
    assert repository.list_evidence(flow_instance_id="fi_1", movement_id="meet_insured") == []


def test_advance_requires_expected_phase_and_revision():
    repository = InMemoryFlowRepository()
    repository.create_instance_if_no_active(instance_record())

    stale = repository.advance_instance(
        flow_instance_id="fi_1",
        expected_phase_index=0,
        expected_revision=5,
        next_phase_id="exterior",
        next_phase_index=1,
        updated_at=_LATER,
    )
    advanced = repository.advance_instance(
        flow_instance_id="fi_1",
        expected_phase_index=0,
        expected_revision=0,
        next_phase_id="exterior",
        next_phase_index=1,
        updated_at=_LATER,
    )

    assert stale is None
    assert advanced.current_phase_id == "exterior"
    assert advanced.revision == 1

    completed = repository.advance_instance(
        flow_instance_id="fi_1",
        expected_phase_index=1,
        expected_revision=1,
        next_phase_id=None,
        next_phase_index=None,
        updated_at=_LATER,
    )
    assert completed.status == "completed"
    assert completed.completed_at == _LATER
    assert repository.get_active_instance_for_claim(claim_id="CLM-1") is None


def test_dynamic_insert_bumps_revision_and_checks_phase():
    repository = InMemoryFlowRepository()
    repository.create_instance_if_no_active(instance_record())

    assert (
        repository.insert_dynamic_movements(
            flow_instance_id="fi_1", expected_phase_index=0, movements=[_dynamic()]
        )
        == "APPLIED"
    )
    assert (
        repository.insert_dynamic_movements(
            flow_instance_id="fi_1", expected_phase_index=2, movements=[_dynamic("mv_2")]
        )
        == "PHASE_CHANGED"
    )
    assert repository.get_instance(flow_instance_id="fi_1").revision == 1
    assert [
        item.movement_id for item in repository.list_dynamic_movements(flow_instance_id="fi_1")
    ] == ["mv_1"]


def test_returned_records_are_isolated_copies():
    repository = InMemoryFlowRepository()
    repository.create_instance_if_no_active(instance_record())

    loaded = repository.get_instance(flow_instance_id="fi_1")
    loaded.snapshot.phases.clear()
    loaded.current_phase_id = "tampered"

    reloaded = repository.get_instance(flow_instance_id="fi_1")
    assert reloaded.current_phase_id == "arrival"
    assert len(reloaded.snapshot.phases) == 3
