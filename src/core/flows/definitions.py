import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError

from src.core.flows.errors import FlowConflictError, FlowNotFoundError, FlowValidationError
from src.core.flows.models import (
    EVIDENCE_TYPES,
    FlowDefinitionCreateRequest,
    FlowDefinitionDuplicateRequest,
    FlowDefinitionListResponse,
    FlowDefinitionRecord,
    FlowDefinitionResponse,
    FlowDefinitionSummary,
    FlowDefinitionUpdateRequest,
    FlowDefinitionValidationResponse,
    FlowDefinitionViolation,
    FlowGraph,
)
from src.core.flows.repository import FlowRepository
from src.core.flows.seeds import DEFAULT_FLOW_DEFINITIONS

logger = logging.getLogger(__name__)

CRITICALITY_LEVELS = {"high", "medium", "low"}


def _is_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def default_gate_id(phase_id: str) -> str:
    return f"gate_{phase_id}"


class _ViolationCollector:
    def __init__(self) -> None:
        self.items: list[FlowDefinitionViolation] = []

    def add(self, path: str, code: str, message: str) -> None:
        self.items.append(FlowDefinitionViolation(path=path, code=code, message=message))


def _check_evidence_requirements(
    requirements: Any, *, path: str, collector: _ViolationCollector
) -> None:
    if not isinstance(requirements, list):
        collector.add(
            path, "EVIDENCE_REQUIREMENTS_NOT_LIST", "evidence_requirements must be a list"
        )
        return
    for index, requirement in enumerate(requirements):
        item_path = f"{path}[{index}]"
        if not isinstance(requirement, dict):
            collector.add(item_path, "EVIDENCE_REQUIREMENT_NOT_OBJECT", "must be an object")
            continue
        evidence_type = requirement.get("type")
        if not isinstance(evidence_type, str) or evidence_type not in EVIDENCE_TYPES:
            collector.add(
                f"{item_path}.type",
                "EVIDENCE_TYPE_INVALID",
                f"evidence type {evidence_type!r} is not one of {', '.join(EVIDENCE_TYPES)}",
            )
        min_quantity = requirement.get("min_quantity", 1)
        max_quantity = requirement.get("max_quantity")
        if not _is_count(min_quantity):
            collector.add(
                f"{item_path}.min_quantity",
                "EVIDENCE_QUANTITY_INVALID",
                "min_quantity must be a non-negative integer",
            )
        if max_quantity is not None and not _is_count(max_quantity):
            collector.add(
                f"{item_path}.max_quantity",
                "EVIDENCE_QUANTITY_INVALID",
                "max_quantity must be a non-negative integer",
            )
        if (
            _is_count(min_quantity)
            and max_quantity is not None
            and _is_count(max_quantity)
            and min_quantity > max_quantity
        ):
            collector.add(
                item_path,
                "EVIDENCE_BOUNDS_INVERTED",
                f"min_quantity {min_quantity} exceeds max_quantity {max_quantity}",
            )


def validate_flow_definition(flow_json: Any) -> list[FlowDefinitionViolation]:
    """Collect every structural problem of a flow graph payload. Never raises."""
    collector = _ViolationCollector()
    if not isinstance(flow_json, dict):
        collector.add("$", "FLOW_JSON_NOT_OBJECT", "flow definition must be a JSON object")
        return collector.items
    phases = flow_json.get("phases")
    if not isinstance(phases, list):
        collector.add("phases", "PHASES_MISSING", "phases must be a list")
        return collector.items
    if not phases:
        collector.add("phases", "PHASES_EMPTY", "flow must contain at least one phase")
        return collector.items

    movement_phase: dict[str, str] = {}
    phase_ids: set[str] = set()
    gate_ids: set[str] = set()
    for phase_index, phase in enumerate(phases):
        path = f"phases[{phase_index}]"
        if not isinstance(phase, dict):
            collector.add(path, "PHASE_NOT_OBJECT", "phase must be an object")
            continue
        phase_id = phase.get("id")
        if not _is_text(phase_id):
            collector.add(f"{path}.id", "PHASE_ID_MISSING", "phase id is required")
        elif phase_id in phase_ids:
            collector.add(f"{path}.id", "PHASE_ID_DUPLICATE", f"duplicate phase id {phase_id!r}")
        else:
            phase_ids.add(phase_id)
        if not _is_text(phase.get("name")):
            collector.add(f"{path}.name", "PHASE_NAME_MISSING", "phase name is required")

        movements = phase.get("movements", [])
        if not isinstance(movements, list):
            collector.add(f"{path}.movements", "MOVEMENTS_NOT_LIST", "movements must be a list")
            movements = []
        gate = phase.get("gate")
        if gate is not None and not isinstance(gate, dict):
            collector.add(f"{path}.gate", "GATE_NOT_OBJECT", "gate must be an object")
            gate = None
        gate = gate or {}
        if not movements and gate.get("pass_through") is not True:
            collector.add(
                path,
                "PHASE_EMPTY",
                f"phase {phase_id!r} has no movements and no pass-through gate",
            )
        if movements and gate.get("pass_through") is True:
            collector.add(
                f"{path}.gate.pass_through",
                "GATE_PASS_THROUGH_WITH_MOVEMENTS",
                f"phase {phase_id!r} has movements and cannot use a pass-through gate",
            )

        names: set[str] = set()
        own_movement_ids: set[str] = set()
        for movement_index, movement in enumerate(movements):
            movement_path = f"{path}.movements[{movement_index}]"
            if not isinstance(movement, dict):
                collector.add(movement_path, "MOVEMENT_NOT_OBJECT", "movement must be an object")
                continue
            movement_id = movement.get("id")
            if not _is_text(movement_id):
                collector.add(
                    f"{movement_path}.id", "MOVEMENT_ID_MISSING", "movement id is required"
                )
            elif movement_id in movement_phase:
                collector.add(
                    f"{movement_path}.id",
                    "MOVEMENT_ID_DUPLICATE",
                    f"duplicate movement id {movement_id!r}",
                )
            else:
                movement_phase[movement_id] = str(phase_id)
                own_movement_ids.add(movement_id)
            name = movement.get("name")
            if not _is_text(name):
                collector.add(
                    f"{movement_path}.name", "MOVEMENT_NAME_MISSING", "movement name is required"
                )
            else:
                normalized_name = name.strip().lower()
                if normalized_name in names:
                    collector.add(
                        f"{movement_path}.name",
                        "MOVEMENT_NAME_DUPLICATE",
                        f"movement name {name!r} is repeated within phase {phase_id!r}",
                    )
                names.add(normalized_name)
            criticality = movement.get("criticality")
            if criticality is not None and (
                not isinstance(criticality, str) or criticality not in CRITICALITY_LEVELS
            ):
                collector.add(
                    f"{movement_path}.criticality",
                    "MOVEMENT_CRITICALITY_INVALID",
                    "criticality must be high, medium or low",
                )
            sequence_order = movement.get("sequence_order")
            if sequence_order is not None and (
                isinstance(sequence_order, bool) or not isinstance(sequence_order, (int, float))
            ):
                collector.add(
                    f"{movement_path}.sequence_order",
                    "MOVEMENT_SEQUENCE_INVALID",
                    "sequence_order must be a number",
                )
            _check_evidence_requirements(
                movement.get("evidence_requirements", []),
                path=f"{movement_path}.evidence_requirements",
                collector=collector,
            )

        gate_id = gate.get("id")
        if gate_id is not None and not _is_text(gate_id):
            collector.add(
                f"{path}.gate.id", "GATE_ID_INVALID", "gate id must be a non-empty string"
            )
            gate_id = None
        elif gate_id is None and _is_text(phase_id):
            gate_id = default_gate_id(phase_id)
        if gate_id is not None:
            if gate_id in gate_ids:
                collector.add(
                    f"{path}.gate.id", "GATE_ID_DUPLICATE", f"duplicate gate id {gate_id!r}"
                )
            gate_ids.add(gate_id)
        required_ids = gate.get("required_movement_ids", [])
        if not isinstance(required_ids, list):
            collector.add(
                f"{path}.gate.required_movement_ids",
                "GATE_REQUIRED_MOVEMENTS_INVALID",
                "required_movement_ids must be a list",
            )
            continue
        for required_index, required_id in enumerate(required_ids):
            required_path = f"{path}.gate.required_movement_ids[{required_index}]"
            if not _is_text(required_id):
                collector.add(
                    required_path,
                    "GATE_REQUIRED_MOVEMENTS_INVALID",
                    "required movement ids must be non-empty strings",
                )
                continue
            if required_id in own_movement_ids:
                continue
            collector.add(
                required_path,
                "GATE_REFERENCES_FOREIGN_MOVEMENT",
                f"gate of phase {phase_id!r} references movement {required_id!r} outside its phase",
            )

    if collector.items:
        return collector.items
    try:
        build_flow_graph(flow_json)
    except ValidationError as exc:
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            collector.add(location or "$", "FLOW_JSON_INVALID", str(error.get("msg")))
    return collector.items


def build_flow_graph(flow_json: dict) -> FlowGraph:
    """Normalize a validated payload: fill default gates and sequence orders."""
    phases = []
    for phase in flow_json["phases"]:
        movements = []
        for index, movement in enumerate(phase.get("movements", [])):
            normalized = dict(movement)
            if normalized.get("sequence_order") is None:
                normalized["sequence_order"] = index + 1
            movements.append(normalized)
        gate = dict(phase.get("gate") or {})
        if not gate.get("id"):
            gate["id"] = default_gate_id(phase["id"])
        gate.setdefault("name", f"{phase['name']} complete")
        phases.append(
            {
                "id": phase["id"],
                "name": phase["name"],
                "description": phase.get("description"),
                "movements": movements,
                "gate": gate,
            }
        )
    return FlowGraph.model_validate({"phases": phases})


def empty_flow_template() -> dict[str, Any]:
    return {
        "phases": [
            {
                "id": "arrival",
                "name": "Arrival",
                "description": "Initial property documentation",
                "movements": [],
                "gate": {
                    "id": default_gate_id("arrival"),
                    "name": "Arrival complete",
                    "pass_through": True,
                    "required_movement_ids": [],
                },
            }
        ]
    }


def normalize_peril_type(peril_type: str) -> str:
    return peril_type.strip().lower()


def _normalized_flow_json(flow_json: Any) -> dict[str, Any]:
    violations = validate_flow_definition(flow_json)
    if violations:
        raise FlowValidationError("FLOW_DEFINITION_INVALID", violations=violations)
    return build_flow_graph(flow_json).model_dump(mode="json")


class FlowDefinitionService:
    def __init__(self, *, repository: FlowRepository) -> None:
        self._repository = repository

    def validate(self, flow_json: Any) -> FlowDefinitionValidationResponse:
        violations = validate_flow_definition(flow_json)
        return FlowDefinitionValidationResponse(is_valid=not violations, violations=violations)

    def create(self, *, payload: FlowDefinitionCreateRequest) -> FlowDefinitionResponse:
        flow_json = _normalized_flow_json(payload.flow_json)
        now = _utc_now()
        record = FlowDefinitionRecord(
            flow_definition_id=f"fd_{uuid.uuid4().hex[:12]}",
            name=payload.name.strip(),
            description=payload.description,
            peril_type=normalize_peril_type(payload.peril_type),
            property_type=payload.property_type,
            flow_json=flow_json,
            version=1,
            is_active=payload.is_active,
            created_by=payload.created_by,
            created_at=now,
            updated_at=now,
        )
        self._repository.create_definition(record)
        logger.info(
            "flow_definition.created",
            extra={
                "extra_fields": {
                    "flow_definition_id": record.flow_definition_id,
                    "peril_type": record.peril_type,
                }
            },
        )
        return _to_definition_response(record)

    def get(self, *, flow_definition_id: str) -> FlowDefinitionResponse:
        return _to_definition_response(self._require(flow_definition_id))

    def list_definitions(
        self,
        *,
        peril_type: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> FlowDefinitionListResponse:
        records = self._repository.list_definitions(
            peril_type=normalize_peril_type(peril_type) if peril_type else None,
            is_active=is_active,
        )
        return FlowDefinitionListResponse(items=[_to_definition_summary(item) for item in records])

    def update(
        self, *, flow_definition_id: str, payload: FlowDefinitionUpdateRequest
    ) -> FlowDefinitionResponse:
        record = self._require(flow_definition_id)
        changes: dict[str, Any] = {}
        if payload.flow_json is not None:
            changes["flow_json"] = _normalized_flow_json(payload.flow_json)
        if payload.name is not None:
            changes["name"] = payload.name.strip()
        if payload.description is not None:
            changes["description"] = payload.description
        if payload.peril_type is not None:
            changes["peril_type"] = normalize_peril_type(payload.peril_type)
        if payload.property_type is not None:
            changes["property_type"] = payload.property_type
        if payload.is_active is not None:
            changes["is_active"] = payload.is_active
        updated = record.model_copy(
            update={**changes, "version": record.version + 1, "updated_at": _utc_now()}
        )
        self._repository.update_definition(updated)
        return _to_definition_response(updated)

    def delete(self, *, flow_definition_id: str) -> None:
        self._require(flow_definition_id)
        if self._repository.count_active_instances(flow_definition_id=flow_definition_id) > 0:
            raise FlowConflictError("FLOW_DEFINITION_IN_USE")
        if not self._repository.delete_definition(flow_definition_id=flow_definition_id):
            raise FlowNotFoundError("FLOW_DEFINITION_NOT_FOUND")

    def duplicate(
        self, *, flow_definition_id: str, payload: FlowDefinitionDuplicateRequest
    ) -> FlowDefinitionResponse:
        source = self._require(flow_definition_id)
        name = payload.name.strip() if payload.name and payload.name.strip() else None
        now = _utc_now()
        copy = source.model_copy(
            update={
                "flow_definition_id": f"fd_{uuid.uuid4().hex[:12]}",
                "name": name or f"{source.name} (Copy)",
                "version": 1,
                "is_active": False,
                "created_by": payload.created_by or source.created_by,
                "created_at": now,
                "updated_at": now,
            },
            deep=True,
        )
        self._repository.create_definition(copy)
        return _to_definition_response(copy)

    def toggle_active(self, *, flow_definition_id: str) -> FlowDefinitionResponse:
        record = self._require(flow_definition_id)
        updated = record.model_copy(
            update={"is_active": not record.is_active, "updated_at": _utc_now()}
        )
        self._repository.update_definition(updated)
        return _to_definition_response(updated)

    def seed_default_definitions(
        self, *, created_by: str = "system"
    ) -> list[FlowDefinitionResponse]:
        """Create the bundled definitions whose (peril, name) pair is not stored yet."""
        seeded: list[FlowDefinitionResponse] = []
        for seed in DEFAULT_FLOW_DEFINITIONS:
            existing = self._repository.list_definitions(
                peril_type=seed["peril_type"], is_active=None
            )
            if any(item.name == seed["name"] for item in existing):
                continue
            seeded.append(
                self.create(
                    payload=FlowDefinitionCreateRequest(
                        name=seed["name"],
                        description=seed["description"],
                        peril_type=seed["peril_type"],
                        property_type=seed["property_type"],
                        flow_json=seed["flow_json"],
                        created_by=created_by,
                    )
                )
            )
        return seeded

    def _require(self, flow_definition_id: str) -> FlowDefinitionRecord:
        record = self._repository.get_definition(flow_definition_id=flow_definition_id)
        if record is None:
            raise FlowNotFoundError("FLOW_DEFINITION_NOT_FOUND")
        return record


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_definition_summary(record: FlowDefinitionRecord) -> FlowDefinitionSummary:
    phases = record.flow_json.get("phases", [])
    return FlowDefinitionSummary(
        flow_definition_id=record.flow_definition_id,
        name=record.name,
        description=record.description,
        peril_type=record.peril_type,
        property_type=record.property_type,
        version=record.version,
        is_active=record.is_active,
        phase_count=len(phases),
        movement_count=sum(len(phase.get("movements", [])) for phase in phases),
        created_by=record.created_by,
        created_at=record.created_at.isoformat(),
        updated_at=record.updated_at.isoformat(),
    )


def _to_definition_response(record: FlowDefinitionRecord) -> FlowDefinitionResponse:
    return FlowDefinitionResponse(
        **_to_definition_summary(record).model_dump(),
        flow_json=record.flow_json,
    )
