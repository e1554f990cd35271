import json
from contextlib import closing
from datetime import datetime
from importlib.util import find_spec
from typing import Any, Optional

from src.core.flows.models import (
    DynamicMovementRecord,
    EvidenceRecord,
    EvidenceRequirement,
    FlowDefinitionRecord,
    FlowGraph,
    FlowInstanceRecord,
    FlowWriteOutcome,
    MovementCompletionRecord,
)
from src.infrastructure.postgres_migrations import apply_postgres_migrations

_DEFINITION_COLUMNS = """
    flow_definition_id,
    name,
    description,
    peril_type,
    property_type,
    flow_json,
    version,
    is_active,
    created_by,
    created_at,
    updated_at
"""

_INSTANCE_COLUMNS = """
    flow_instance_id,
    claim_id,
    flow_definition_id,
    flow_definition_version,
    peril_type,
    status,
    current_phase_id,
    current_phase_index,
    revision,
    snapshot_json,
    started_by,
    started_at,
    updated_at,
    completed_at,
    cancelled_at
"""

_COMPLETION_COLUMNS = """
    completion_id,
    flow_instance_id,
    movement_id,
    phase_id,
    status,
    user_id,
    notes,
    skip_reason,
    completed_at
"""

_EVIDENCE_COLUMNS = """
    evidence_id,
    flow_instance_id,
    movement_id,
    completion_id,
    evidence_type,
    reference_id,
    data_json,
    notes,
    user_id,
    created_at
"""


class PostgresFlowRepository:
    def __init__(self, *, dsn: str) -> None:
        if not dsn:
            raise RuntimeError("FLOW_POSTGRES_DSN_REQUIRED")
        if find_spec("psycopg") is None:
            raise RuntimeError("FLOW_POSTGRES_DRIVER_MISSING")
        self._dsn = dsn
        self._init_db()

    def create_definition(self, definition: FlowDefinitionRecord) -> None:
        self._upsert_definition(definition)

    def update_definition(self, definition: FlowDefinitionRecord) -> None:
        self._upsert_definition(definition)

    def get_definition(self, *, flow_definition_id: str) -> Optional[FlowDefinitionRecord]:
        query = f"SELECT {_DEFINITION_COLUMNS} FROM flow_definitions WHERE flow_definition_id = %s"
        with closing(self._connect()) as connection:
            row = connection.execute(query, (flow_definition_id,)).fetchone()
        return _to_definition(row) if row is not None else None

    def list_definitions(
        self,
        *,
        peril_type: Optional[str],
        is_active: Optional[bool],
    ) -> list[FlowDefinitionRecord]:
        clauses: list[str] = []
        args: list[Any] = []
        if peril_type is not None:
            clauses.append("peril_type = %s")
            args.append(peril_type)
        if is_active is not None:
            clauses.append("is_active = %s")
            args.append(is_active)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f"""
            SELECT {_DEFINITION_COLUMNS}
            FROM flow_definitions
            {where}
            ORDER BY created_at DESC, flow_definition_id DESC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, tuple(args)).fetchall()
        return [_to_definition(row) for row in rows]

    def find_active_definition(self, *, peril_type: str) -> Optional[FlowDefinitionRecord]:
        query = f"""
            SELECT {_DEFINITION_COLUMNS}
            FROM flow_definitions
            WHERE peril_type = %s AND is_active = TRUE
            ORDER BY version DESC, updated_at DESC
            LIMIT 1
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (peril_type,)).fetchone()
        return _to_definition(row) if row is not None else None

    def delete_definition(self, *, flow_definition_id: str) -> bool:
        query = """
            DELETE FROM flow_definitions
            WHERE flow_definition_id = %s
            RETURNING flow_definition_id
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (flow_definition_id,)).fetchone()
            connection.commit()
        return row is not None

    def count_active_instances(self, *, flow_definition_id: str) -> int:
        query = """
            SELECT COUNT(*) AS active_count
            FROM flow_instances
            WHERE flow_definition_id = %s AND status = 'active'
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (flow_definition_id,)).fetchone()
        return int(row["active_count"]) if row is not None else 0

    def create_instance_if_no_active(self, instance: FlowInstanceRecord) -> bool:
        query = f"""
            INSERT INTO flow_instances ({_INSTANCE_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            RETURNING flow_instance_id
        """
        with closing(self._connect()) as connection:
            row = connection.execute(
                query,
                (
                    instance.flow_instance_id,
                    instance.claim_id,
                    instance.flow_definition_id,
                    instance.flow_definition_version,
                    instance.peril_type,
                    instance.status,
                    instance.current_phase_id,
                    instance.current_phase_index,
                    instance.revision,
                    _json_dump(instance.snapshot.model_dump(mode="json")),
                    instance.started_by,
                    instance.started_at.isoformat(),
                    instance.updated_at.isoformat(),
                    _isoformat(instance.completed_at),
                    _isoformat(instance.cancelled_at),
                ),
            ).fetchone()
            connection.commit()
        return row is not None

    def get_instance(self, *, flow_instance_id: str) -> Optional[FlowInstanceRecord]:
        query = f"SELECT {_INSTANCE_COLUMNS} FROM flow_instances WHERE flow_instance_id = %s"
        with closing(self._connect()) as connection:
            row = connection.execute(query, (flow_instance_id,)).fetchone()
        return _to_instance(row) if row is not None else None

    def get_active_instance_for_claim(self, *, claim_id: str) -> Optional[FlowInstanceRecord]:
        query = f"""
            SELECT {_INSTANCE_COLUMNS}
            FROM flow_instances
            WHERE claim_id = %s AND status = 'active'
        """
        with closing(self._connect()) as connection:
            row = connection.execute(query, (claim_id,)).fetchone()
        return _to_instance(row) if row is not None else None

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
        if next_phase_id is None or next_phase_index is None:
            query = f"""
                UPDATE flow_instances
                SET status = 'completed',
                    completed_at = %s,
                    updated_at = %s,
                    revision = revision + 1
                WHERE flow_instance_id = %s
                  AND status = 'active'
                  AND current_phase_index = %s
                  AND revision = %s
                RETURNING {_INSTANCE_COLUMNS}
            """
            args: tuple[Any, ...] = (
                updated_at.isoformat(),
                updated_at.isoformat(),
                flow_instance_id,
                expected_phase_index,
                expected_revision,
            )
        else:
            query = f"""
                UPDATE flow_instances
                SET current_phase_id = %s,
                    current_phase_index = %s,
                    updated_at = %s,
                    revision = revision + 1
                WHERE flow_instance_id = %s
                  AND status = 'active'
                  AND current_phase_index = %s
                  AND revision = %s
                RETURNING {_INSTANCE_COLUMNS}
            """
            args = (
                next_phase_id,
                next_phase_index,
                updated_at.isoformat(),
                flow_instance_id,
                expected_phase_index,
                expected_revision,
            )
        with closing(self._connect()) as connection:
            row = connection.execute(query, args).fetchone()
            connection.commit()
        return _to_instance(row) if row is not None else None

    def cancel_instance(
        self, *, flow_instance_id: str, cancelled_at: datetime
    ) -> Optional[FlowInstanceRecord]:
        query = f"""
            UPDATE flow_instances
            SET status = 'cancelled',
                cancelled_at = %s,
                updated_at = %s,
                revision = revision + 1
            WHERE flow_instance_id = %s AND status = 'active'
            RETURNING {_INSTANCE_COLUMNS}
        """
        with closing(self._connect()) as connection:
            row = connection.execute(
                query,
                (cancelled_at.isoformat(), cancelled_at.isoformat(), flow_instance_id),
            ).fetchone()
            connection.commit()
        return _to_instance(row) if row is not None else None

    def record_completion(
        self,
        *,
        completion: MovementCompletionRecord,
        evidence: list[EvidenceRecord],
        expected_phase_index: int,
    ) -> FlowWriteOutcome:
        query = f"""
            INSERT INTO flow_movement_completions ({_COMPLETION_COLUMNS})
            SELECT %s, %s, %s, %s, %s, %s, %s, %s, %s
            WHERE EXISTS (
                SELECT 1
                FROM flow_instances
                WHERE flow_instance_id = %s
                  AND status = 'active'
                  AND current_phase_index = %s
                FOR SHARE
            )
            ON CONFLICT (flow_instance_id, movement_id) DO NOTHING
            RETURNING completion_id
        """
        with closing(self._connect()) as connection:
            row = connection.execute(
                query,
                (
                    completion.completion_id,
                    completion.flow_instance_id,
                    completion.movement_id,
                    completion.phase_id,
                    completion.status,
                    completion.user_id,
                    completion.notes,
                    completion.skip_reason,
                    completion.completed_at.isoformat(),
                    completion.flow_instance_id,
                    expected_phase_index,
                ),
            ).fetchone()
            if row is None:
                outcome = _diagnose_instance(
                    connection=connection,
                    flow_instance_id=completion.flow_instance_id,
                    expected_phase_index=expected_phase_index,
                )
                connection.rollback()
                return "DUPLICATE" if outcome == "APPLIED" else outcome
            for item in evidence:
                self._insert_evidence(connection=connection, evidence=item)
            connection.commit()
        return "APPLIED"

    def list_completions(self, *, flow_instance_id: str) -> list[MovementCompletionRecord]:
        query = f"""
            SELECT {_COMPLETION_COLUMNS}
            FROM flow_movement_completions
            WHERE flow_instance_id = %s
            ORDER BY completed_at ASC, completion_id ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (flow_instance_id,)).fetchall()
        return [_to_completion(row) for row in rows]

    def append_evidence(self, evidence: EvidenceRecord) -> FlowWriteOutcome:
        query = f"""
            INSERT INTO flow_evidence ({_EVIDENCE_COLUMNS})
            SELECT %s, %s, %s, %s, %s, %s, %s, %s, %s, %s
            WHERE EXISTS (
                SELECT 1
                FROM flow_instances
                WHERE flow_instance_id = %s AND status = 'active'
                FOR SHARE
            )
            AND EXISTS (
                SELECT 1
                FROM flow_movement_completions
                WHERE completion_id = %s AND flow_instance_id = %s
            )
            RETURNING evidence_id
        """
        with closing(self._connect()) as connection:
            row = connection.execute(
                query,
                (
                    *_evidence_args(evidence),
                    evidence.flow_instance_id,
                    evidence.completion_id,
                    evidence.flow_instance_id,
                ),
            ).fetchone()
            if row is None:
                outcome = _diagnose_instance(
                    connection=connection,
                    flow_instance_id=evidence.flow_instance_id,
                    expected_phase_index=None,
                )
                connection.rollback()
                return "COMPLETION_MISSING" if outcome == "APPLIED" else outcome
            connection.commit()
        return "APPLIED"

    def list_evidence(
        self, *, flow_instance_id: str, movement_id: Optional[str] = None
    ) -> list[EvidenceRecord]:
        clauses = ["flow_instance_id = %s"]
        args: list[Any] = [flow_instance_id]
        if movement_id is not None:
            clauses.append("movement_id = %s")
            args.append(movement_id)
        query = f"""
            SELECT {_EVIDENCE_COLUMNS}
            FROM flow_evidence
            WHERE {' AND '.join(clauses)}
            ORDER BY created_at ASC, evidence_id ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, tuple(args)).fetchall()
        return [_to_evidence(row) for row in rows]

    def insert_dynamic_movements(
        self,
        *,
        flow_instance_id: str,
        expected_phase_index: int,
        movements: list[DynamicMovementRecord],
    ) -> FlowWriteOutcome:
        query = """
            INSERT INTO flow_dynamic_movements (
                movement_id,
                flow_instance_id,
                phase_id,
                name,
                description,
                sequence_order,
                is_required,
                criticality,
                origin,
                room_name,
                evidence_requirements_json,
                created_by,
                created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        with closing(self._connect()) as connection:
            row = connection.execute(
                """
                SELECT status, current_phase_index
                FROM flow_instances
                WHERE flow_instance_id = %s
                FOR UPDATE
                """,
                (flow_instance_id,),
            ).fetchone()
            outcome = _instance_outcome(row, expected_phase_index=expected_phase_index)
            if outcome != "APPLIED":
                connection.rollback()
                return outcome
            for movement in movements:
                connection.execute(
                    query,
                    (
                        movement.movement_id,
                        movement.flow_instance_id,
                        movement.phase_id,
                        movement.name,
                        movement.description,
                        movement.sequence_order,
                        movement.is_required,
                        movement.criticality,
                        movement.origin,
                        movement.room_name,
                        _json_dump(
                            [
                                item.model_dump(mode="json")
                                for item in movement.evidence_requirements
                            ]
                        ),
                        movement.created_by,
                        movement.created_at.isoformat(),
                    ),
                )
            connection.execute(
                """
                UPDATE flow_instances
                SET revision = revision + 1
                WHERE flow_instance_id = %s
                """,
                (flow_instance_id,),
            )
            connection.commit()
        return "APPLIED"

    def list_dynamic_movements(self, *, flow_instance_id: str) -> list[DynamicMovementRecord]:
        query = """
            SELECT
                movement_id,
                flow_instance_id,
                phase_id,
                name,
                description,
                sequence_order,
                is_required,
                criticality,
                origin,
                room_name,
                evidence_requirements_json,
                created_by,
                created_at
            FROM flow_dynamic_movements
            WHERE flow_instance_id = %s
            ORDER BY created_at ASC, movement_id ASC
        """
        with closing(self._connect()) as connection:
            rows = connection.execute(query, (flow_instance_id,)).fetchall()
        return [_to_dynamic_movement(row) for row in rows]

    def _connect(self):
        psycopg, dict_row = _import_psycopg()
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def _init_db(self) -> None:
        with closing(self._connect()) as connection:
            apply_postgres_migrations(connection=connection, namespace="flows")

    def _upsert_definition(self, definition: FlowDefinitionRecord) -> None:
        query = f"""
            INSERT INTO flow_definitions ({_DEFINITION_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (flow_definition_id) DO UPDATE SET
                name=excluded.name,
                description=excluded.description,
                peril_type=excluded.peril_type,
                property_type=excluded.property_type,
                flow_json=excluded.flow_json,
                version=excluded.version,
                is_active=excluded.is_active,
                updated_at=excluded.updated_at
        """
        with closing(self._connect()) as connection:
            connection.execute(
                query,
                (
                    definition.flow_definition_id,
                    definition.name,
                    definition.description,
                    definition.peril_type,
                    definition.property_type,
                    _json_dump(definition.flow_json),
                    definition.version,
                    definition.is_active,
                    definition.created_by,
                    definition.created_at.isoformat(),
                    definition.updated_at.isoformat(),
                ),
            )
            connection.commit()

    def _insert_evidence(self, *, connection, evidence: EvidenceRecord) -> None:
        query = f"""
            INSERT INTO flow_evidence ({_EVIDENCE_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        connection.execute(query, _evidence_args(evidence))


def _import_psycopg():
    import psycopg
    from psycopg.rows import dict_row

    return psycopg, dict_row


def _diagnose_instance(
    *, connection, flow_instance_id: str, expected_phase_index: Optional[int]
) -> FlowWriteOutcome:
    row = connection.execute(
        """
        SELECT status, current_phase_index
        FROM flow_instances
        WHERE flow_instance_id = %s
        """,
        (flow_instance_id,),
    ).fetchone()
    return _instance_outcome(row, expected_phase_index=expected_phase_index)


def _instance_outcome(row, *, expected_phase_index: Optional[int]) -> FlowWriteOutcome:
    if row is None:
        return "INSTANCE_NOT_FOUND"
    if row["status"] != "active":
        return "INSTANCE_NOT_ACTIVE"
    if expected_phase_index is not None and int(row["current_phase_index"]) != expected_phase_index:
        return "PHASE_CHANGED"
    return "APPLIED"


def _evidence_args(evidence: EvidenceRecord) -> tuple[Any, ...]:
    return (
        evidence.evidence_id,
        evidence.flow_instance_id,
        evidence.movement_id,
        evidence.completion_id,
        evidence.evidence_type,
        evidence.reference_id,
        _json_dump(evidence.data) if evidence.data is not None else None,
        evidence.notes,
        evidence.user_id,
        evidence.created_at.isoformat(),
    )


def _json_dump(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _to_definition(row) -> FlowDefinitionRecord:
    return FlowDefinitionRecord(
        flow_definition_id=row["flow_definition_id"],
        name=row["name"],
        description=row["description"],
        peril_type=row["peril_type"],
        property_type=row["property_type"],
        flow_json=json.loads(row["flow_json"]),
        version=int(row["version"]),
        is_active=bool(row["is_active"]),
        created_by=row["created_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _to_instance(row) -> FlowInstanceRecord:
    return FlowInstanceRecord(
        flow_instance_id=row["flow_instance_id"],
        claim_id=row["claim_id"],
        flow_definition_id=row["flow_definition_id"],
        flow_definition_version=int(row["flow_definition_version"]),
        peril_type=row["peril_type"],
        status=row["status"],
        current_phase_id=row["current_phase_id"],
        current_phase_index=int(row["current_phase_index"]),
        revision=int(row["revision"]),
        snapshot=FlowGraph.model_validate(json.loads(row["snapshot_json"])),
        started_by=row["started_by"],
        started_at=datetime.fromisoformat(row["started_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        completed_at=_parse_datetime(row["completed_at"]),
        cancelled_at=_parse_datetime(row["cancelled_at"]),
    )


def _to_completion(row) -> MovementCompletionRecord:
    return MovementCompletionRecord(
        completion_id=row["completion_id"],
        flow_instance_id=row["flow_instance_id"],
        movement_id=row["movement_id"],
        phase_id=row["phase_id"],
        status=row["status"],
        user_id=row["user_id"],
        notes=row["notes"],
        skip_reason=row["skip_reason"],
        completed_at=datetime.fromisoformat(row["completed_at"]),
    )


def _to_evidence(row) -> EvidenceRecord:
    return EvidenceRecord(
        evidence_id=row["evidence_id"],
        flow_instance_id=row["flow_instance_id"],
        movement_id=row["movement_id"],
        completion_id=row["completion_id"],
        evidence_type=row["evidence_type"],
        reference_id=row["reference_id"],
        data=json.loads(row["data_json"]) if row["data_json"] else None,
        notes=row["notes"],
        user_id=row["user_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _to_dynamic_movement(row) -> DynamicMovementRecord:
    return DynamicMovementRecord(
        movement_id=row["movement_id"],
        flow_instance_id=row["flow_instance_id"],
        phase_id=row["phase_id"],
        name=row["name"],
        description=row["description"],
        sequence_order=float(row["sequence_order"]),
        is_required=bool(row["is_required"]),
        criticality=row["criticality"],
        origin=row["origin"],
        room_name=row["room_name"],
        evidence_requirements=[
            EvidenceRequirement.model_validate(item)
            for item in json.loads(row["evidence_requirements_json"])
        ],
        created_by=row["created_by"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )
