from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, Field

EvidenceType = Literal["photo", "audio", "voice_note", "measurement", "note"]
EVIDENCE_TYPES: tuple[str, ...] = get_args(EvidenceType)

FlowInstanceStatus = Literal["active", "completed", "cancelled"]
CompletionStatus = Literal["completed", "skipped"]
MovementState = Literal["pending", "completed", "skipped"]
MovementOrigin = Literal["template", "custom", "suggested", "room_derived"]
CustomMovementOrigin = Literal["custom", "suggested"]
MovementCriticality = Literal["high", "medium", "low"]
PhaseState = Literal["pending", "in_progress", "gated", "passed"]
NextStepKind = Literal["movement", "gate", "complete"]
FlowWriteOutcome = Literal[
    "APPLIED",
    "DUPLICATE",
    "INSTANCE_NOT_FOUND",
    "INSTANCE_NOT_ACTIVE",
    "PHASE_CHANGED",
    "COMPLETION_MISSING",
]


class EvidenceRequirement(BaseModel):
    model_config = {"frozen": True}

    type: EvidenceType = Field(
        description="Evidence kind that satisfies this requirement.",
        examples=["photo"],
    )
    description: Optional[str] = Field(
        default=None,
        description="Adjuster-facing capture hint.",
        examples=["Wide shot of each roof slope"],
    )
    is_required: bool = Field(
        default=True,
        description="Whether the requirement gates phase advancement.",
        examples=[True],
    )
    min_quantity: int = Field(
        default=1,
        ge=0,
        description="Minimum number of matching evidence items.",
        examples=[4],
    )
    max_quantity: Optional[int] = Field(
        default=None,
        ge=0,
        description="Maximum number of matching evidence items. Unbounded when omitted.",
        examples=[20],
    )


class MovementTemplate(BaseModel):
    model_config = {"frozen": True}

    id: str = Field(description="Movement id, unique within the flow.", examples=["roof_overview"])
    name: str = Field(description="Movement display name.", examples=["Roof Overview"])
    description: Optional[str] = Field(default=None, description="Capture instructions.")
    sequence_order: float = Field(
        description="Ordering key within the phase.",
        examples=[1],
    )
    is_required: bool = Field(default=True, description="Whether skipping fails the phase gate.")
    criticality: Optional[MovementCriticality] = Field(
        default=None,
        description="Optional adjuster-facing priority hint.",
        examples=["high"],
    )
    evidence_requirements: List[EvidenceRequirement] = Field(default_factory=list)


class GateRule(BaseModel):
    model_config = {"frozen": True}

    id: str = Field(description="Gate id, unique within the flow.", examples=["exterior_gate"])
    name: str = Field(description="Gate display name.", examples=["Exterior complete"])
    pass_through: bool = Field(
        default=False,
        description="Pass-through gates pass unconditionally.",
        examples=[False],
    )
    required_movement_ids: List[str] = Field(
        default_factory=list,
        description=(
            "Movement ids that must be completed in addition to every required movement "
            "of the phase."
        ),
        examples=[["roof_overview"]],
    )


class PhaseTemplate(BaseModel):
    model_config = {"frozen": True}

    id: str = Field(description="Phase id, unique within the flow.", examples=["exterior"])
    name: str = Field(description="Phase display name.", examples=["Exterior Inspection"])
    description: Optional[str] = Field(default=None)
    movements: List[MovementTemplate] = Field(default_factory=list)
    gate: GateRule


class FlowGraph(BaseModel):
    model_config = {"frozen": True}

    phases: List[PhaseTemplate] = Field(description="Ordered phases of the inspection flow.")


class FlowDefinitionRecord(BaseModel):
    flow_definition_id: str = Field(description="Internal flow definition id.")
    name: str = Field(description="Internal definition display name.")
    description: Optional[str] = Field(default=None, description="Internal definition summary.")
    peril_type: str = Field(description="Internal peril key used to select the definition.")
    property_type: Optional[str] = Field(default=None, description="Internal property scope.")
    flow_json: Dict[str, Any] = Field(description="Internal normalized flow graph payload.")
    version: int = Field(description="Internal definition version number.")
    is_active: bool = Field(description="Internal active flag.")
    created_by: Optional[str] = Field(default=None, description="Internal author id.")
    created_at: datetime = Field(description="Internal creation timestamp.")
    updated_at: datetime = Field(description="Internal update timestamp.")


class FlowInstanceRecord(BaseModel):
    flow_instance_id: str = Field(description="Internal flow instance id.")
    claim_id: str = Field(description="Internal claim id.")
    flow_definition_id: str = Field(description="Internal source definition id.")
    flow_definition_version: int = Field(description="Internal source definition version.")
    peril_type: str = Field(description="Internal peril key the flow was started for.")
    status: FlowInstanceStatus = Field(description="Internal instance status.")
    current_phase_id: str = Field(description="Internal current phase id.")
    current_phase_index: int = Field(description="Internal current phase position.")
    revision: int = Field(
        default=0,
        description="Internal structural revision bumped on phase changes and inserts.",
    )
    snapshot: FlowGraph = Field(description="Internal immutable copy of the definition graph.")
    started_by: Optional[str] = Field(default=None, description="Internal starting actor id.")
    started_at: datetime = Field(description="Internal start timestamp.")
    updated_at: datetime = Field(description="Internal update timestamp.")
    completed_at: Optional[datetime] = Field(default=None, description="Internal completion time.")
    cancelled_at: Optional[datetime] = Field(default=None, description="Internal cancel time.")


class MovementCompletionRecord(BaseModel):
    completion_id: str = Field(description="Internal completion id.")
    flow_instance_id: str = Field(description="Internal flow instance id.")
    movement_id: str = Field(description="Internal movement id.")
    phase_id: str = Field(description="Internal phase id of the movement.")
    status: CompletionStatus = Field(description="Internal completion status.")
    user_id: str = Field(description="Internal acting user id.")
    notes: Optional[str] = Field(default=None, description="Internal adjuster notes.")
    skip_reason: Optional[str] = Field(default=None, description="Internal skip reason.")
    completed_at: datetime = Field(description="Internal completion timestamp.")


class EvidenceRecord(BaseModel):
    evidence_id: str = Field(description="Internal evidence id.")
    flow_instance_id: str = Field(description="Internal flow instance id.")
    movement_id: str = Field(description="Internal movement id.")
    completion_id: str = Field(description="Internal completion id the evidence is attached to.")
    evidence_type: EvidenceType = Field(description="Internal evidence kind.")
    reference_id: Optional[str] = Field(default=None, description="Internal blob reference.")
    data: Optional[Dict[str, Any]] = Field(default=None, description="Internal inline payload.")
    notes: Optional[str] = Field(default=None, description="Internal evidence notes.")
    user_id: str = Field(description="Internal capturing user id.")
    created_at: datetime = Field(description="Internal capture timestamp.")


class DynamicMovementRecord(BaseModel):
    movement_id: str = Field(description="Internal dynamic movement id.")
    flow_instance_id: str = Field(description="Internal flow instance id.")
    phase_id: str = Field(description="Internal target phase id.")
    name: str = Field(description="Internal movement name.")
    description: Optional[str] = Field(default=None, description="Internal capture instructions.")
    sequence_order: float = Field(description="Internal ordering key within the phase.")
    is_required: bool = Field(description="Internal required flag.")
    criticality: Optional[MovementCriticality] = Field(default=None)
    origin: MovementOrigin = Field(description="Internal movement origin.")
    room_name: Optional[str] = Field(default=None, description="Internal source room name.")
    evidence_requirements: List[EvidenceRequirement] = Field(default_factory=list)
    created_by: Optional[str] = Field(default=None, description="Internal author id.")
    created_at: datetime = Field(description="Internal insertion timestamp.")


class FlowDefinitionViolation(BaseModel):
    path: str = Field(description="JSON path of the offending element.", examples=["phases[1]"])
    code: str = Field(description="Stable violation code.", examples=["PHASE_EMPTY"])
    message: str = Field(
        description="Human readable violation message.",
        examples=["phase 'exterior' has no movements and no pass-through gate"],
    )


class FlowDefinitionValidationRequest(BaseModel):
    flow_json: Any = Field(
        description="Candidate flow graph payload.",
        examples=[{"phases": []}],
    )


class FlowDefinitionValidationResponse(BaseModel):
    is_valid: bool = Field(description="Whether the graph passed every structural check.")
    violations: List[FlowDefinitionViolation] = Field(default_factory=list)


class FlowDefinitionCreateRequest(BaseModel):
    name: str = Field(min_length=1, description="Definition name.", examples=["Wind/Hail"])
    description: Optional[str] = Field(default=None, description="Definition summary.")
    peril_type: str = Field(
        min_length=1,
        description="Peril key used to select the definition at flow start.",
        examples=["wind_hail"],
    )
    property_type: Optional[str] = Field(default=None, examples=["residential"])
    flow_json: Any = Field(description="Flow graph payload.", examples=[{"phases": []}])
    is_active: bool = Field(default=True, description="Whether the definition is selectable.")
    created_by: Optional[str] = Field(default=None, examples=["admin_1"])


class FlowDefinitionUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = Field(default=None)
    peril_type: Optional[str] = Field(default=None, min_length=1)
    property_type: Optional[str] = Field(default=None)
    flow_json: Optional[Any] = Field(default=None, description="Replacement flow graph payload.")
    is_active: Optional[bool] = Field(default=None)


class FlowDefinitionDuplicateRequest(BaseModel):
    name: Optional[str] = Field(
        default=None,
        description="Name of the copy. Defaults to '<name> (Copy)'.",
        examples=["Wind/Hail v2 draft"],
    )
    created_by: Optional[str] = Field(default=None, examples=["admin_1"])


class FlowDefinitionSummary(BaseModel):
    flow_definition_id: str = Field(examples=["fd_3f2a9c01b7de"])
    name: str = Field(examples=["Wind/Hail Standard Inspection"])
    description: Optional[str] = Field(default=None)
    peril_type: str = Field(examples=["wind_hail"])
    property_type: Optional[str] = Field(default=None)
    version: int = Field(examples=[1])
    is_active: bool = Field(examples=[True])
    phase_count: int = Field(description="Number of phases in the graph.", examples=[4])
    movement_count: int = Field(description="Number of template movements.", examples=[10])
    created_by: Optional[str] = Field(default=None)
    created_at: str = Field(examples=["2026-03-01T10:00:00+00:00"])
    updated_at: str = Field(examples=["2026-03-01T10:00:00+00:00"])


class FlowDefinitionResponse(FlowDefinitionSummary):
    flow_json: Dict[str, Any] = Field(description="Normalized flow graph payload.")


class FlowDefinitionListResponse(BaseModel):
    items: List[FlowDefinitionSummary] = Field(default_factory=list)


class StartFlowRequest(BaseModel):
    peril_type: str = Field(
        min_length=1,
        description="Peril key of the claim; selects the active definition.",
        examples=["wind_hail"],
    )
    started_by: Optional[str] = Field(default=None, examples=["adjuster_7"])


class EvidenceInput(BaseModel):
    type: EvidenceType = Field(description="Evidence kind.", examples=["photo"])
    reference_id: Optional[str] = Field(
        default=None,
        description="Opaque blob reference returned by the media store.",
        examples=["blob_7f3e1c"],
    )
    data: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Inline payload such as measurement values.",
        examples=[{"value": 12.5, "unit": "ft"}],
    )
    notes: Optional[str] = Field(default=None)


class CompleteMovementRequest(BaseModel):
    user_id: str = Field(min_length=1, description="Acting adjuster id.", examples=["adjuster_7"])
    notes: Optional[str] = Field(default=None, examples=["Hail strikes on north slope"])
    evidence: List[EvidenceInput] = Field(
        default_factory=list,
        description="Evidence captured together with the completion.",
    )


class SkipMovementRequest(BaseModel):
    user_id: str = Field(min_length=1, description="Acting adjuster id.", examples=["adjuster_7"])
    reason: Optional[str] = Field(
        default=None,
        description="Why the movement was not performed. Required.",
        examples=["Roof too steep to access safely"],
    )


class AttachEvidenceRequest(EvidenceInput):
    user_id: str = Field(
        min_length=1, description="Capturing adjuster id.", examples=["adjuster_7"]
    )


class EvaluateGateRequest(BaseModel):
    evaluated_by: Optional[str] = Field(default=None, examples=["adjuster_7"])


class RoomMovementInput(BaseModel):
    name: str = Field(min_length=1, examples=["Ceiling damage"])
    description: Optional[str] = Field(default=None)
    is_required: bool = Field(default=True)
    criticality: Optional[MovementCriticality] = Field(default=None)
    evidence_requirements: List[EvidenceRequirement] = Field(default_factory=list)


class AddRoomRequest(BaseModel):
    room_name: str = Field(min_length=1, description="Room being inspected.", examples=["Kitchen"])
    movements: List[RoomMovementInput] = Field(
        default_factory=list,
        description="Movements to append to the current phase for this room.",
    )
    created_by: Optional[str] = Field(default=None, examples=["adjuster_7"])


class InsertCustomMovementRequest(BaseModel):
    phase_id: str = Field(min_length=1, description="Target phase id.", examples=["interior"])
    name: str = Field(min_length=1, description="Movement name.", examples=["Attic decking"])
    description: Optional[str] = Field(default=None)
    after_movement_id: Optional[str] = Field(
        default=None,
        description="Insert directly after this movement; appended at the end when omitted.",
        examples=["ceiling_walls"],
    )
    is_required: bool = Field(default=False)
    criticality: Optional[MovementCriticality] = Field(default=None)
    evidence_requirements: List[EvidenceRequirement] = Field(default_factory=list)
    origin: CustomMovementOrigin = Field(default="custom")
    created_by: Optional[str] = Field(default=None, examples=["adjuster_7"])


class SuggestMovementsRequest(BaseModel):
    context: Dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque context forwarded to the suggestion provider.",
        examples=[{"observations": "water staining near chimney"}],
    )


class MovementCandidate(BaseModel):
    name: str = Field(examples=["Chimney flashing"])
    description: Optional[str] = Field(default=None)
    phase_id: Optional[str] = Field(default=None, examples=["exterior"])
    is_required: bool = Field(default=False)
    evidence_requirements: List[EvidenceRequirement] = Field(default_factory=list)
    rationale: Optional[str] = Field(default=None, examples=["Staining suggests flashing failure"])


class SuggestedMovementsResponse(BaseModel):
    flow_instance_id: str
    candidates: List[MovementCandidate] = Field(default_factory=list)


class EvidenceResponse(BaseModel):
    evidence_id: str = Field(examples=["ev_8c1d2e3f4a5b"])
    flow_instance_id: str
    movement_id: str
    completion_id: str
    type: EvidenceType
    reference_id: Optional[str] = Field(default=None)
    url: Optional[str] = Field(
        default=None,
        description="Resolved download location for blob-backed evidence.",
    )
    data: Optional[Dict[str, Any]] = Field(default=None)
    notes: Optional[str] = Field(default=None)
    user_id: str
    created_at: str


class MovementView(BaseModel):
    movement_id: str = Field(examples=["roof_overview"])
    phase_id: str = Field(examples=["exterior"])
    name: str
    description: Optional[str] = Field(default=None)
    sequence_order: float
    is_required: bool
    criticality: Optional[MovementCriticality] = Field(default=None)
    origin: MovementOrigin
    room_name: Optional[str] = Field(default=None)
    evidence_requirements: List[EvidenceRequirement] = Field(default_factory=list)
    state: MovementState = Field(default="pending")
    completed_at: Optional[str] = Field(default=None)


class MovementCompletionResponse(BaseModel):
    completion_id: str = Field(examples=["mc_4d5e6f7a8b9c"])
    flow_instance_id: str
    movement_id: str
    phase_id: str
    status: CompletionStatus
    user_id: str
    notes: Optional[str] = Field(default=None)
    skip_reason: Optional[str] = Field(default=None)
    completed_at: str
    evidence: List[EvidenceResponse] = Field(default_factory=list)


class PendingGate(BaseModel):
    gate_id: str
    name: str
    phase_id: str
    pass_through: bool


class NextStepResponse(BaseModel):
    flow_instance_id: str
    kind: NextStepKind = Field(
        description="Whether the next step is a movement, a gate evaluation or nothing.",
        examples=["movement"],
    )
    movement: Optional[MovementView] = Field(default=None)
    gate: Optional[PendingGate] = Field(default=None)


class GateMissingMovement(BaseModel):
    movement_id: str
    name: str
    state: MovementState


class GateMissingEvidence(BaseModel):
    movement_id: str
    name: str
    type: EvidenceType
    required_min: int
    actual: int


class GateEvaluationResponse(BaseModel):
    flow_instance_id: str
    gate_id: str
    phase_id: str
    passed: bool
    reason: Optional[str] = Field(
        default=None,
        description="Failure summary; null when the gate passed.",
        examples=["REQUIRED_MOVEMENTS_INCOMPLETE"],
    )
    next_phase_id: Optional[str] = Field(
        default=None,
        description="Phase the flow advanced to; null when the flow completed or the gate failed.",
    )
    flow_status: FlowInstanceStatus
    missing_movements: List[GateMissingMovement] = Field(default_factory=list)
    missing_evidence: List[GateMissingEvidence] = Field(default_factory=list)


class EvidenceShortfall(BaseModel):
    type: EvidenceType
    required_min: int
    actual: int


class EvidenceExcess(BaseModel):
    type: EvidenceType
    allowed_max: int
    actual: int


class EvidenceValidationResponse(BaseModel):
    flow_instance_id: str
    movement_id: str
    is_satisfied: bool
    counts: Dict[str, int] = Field(
        default_factory=dict,
        description="Evidence item count per evidence type.",
        examples=[{"photo": 3, "audio": 0, "voice_note": 0, "measurement": 0, "note": 0}],
    )
    missing: List[EvidenceShortfall] = Field(default_factory=list)
    excess: List[EvidenceExcess] = Field(default_factory=list)


class FlowInstanceResponse(BaseModel):
    flow_instance_id: str = Field(examples=["fi_9a8b7c6d5e4f"])
    claim_id: str = Field(examples=["CLM-2026-00042"])
    flow_definition_id: str
    flow_definition_version: int
    peril_type: str
    status: FlowInstanceStatus
    current_phase_id: str
    current_phase_index: int
    completed_movement_ids: List[str] = Field(
        default_factory=list,
        description="Movements with a completed (not skipped) record.",
    )
    started_by: Optional[str] = Field(default=None)
    started_at: str
    updated_at: str
    completed_at: Optional[str] = Field(default=None)
    cancelled_at: Optional[str] = Field(default=None)


class FlowProgressResponse(BaseModel):
    flow_instance_id: str
    status: FlowInstanceStatus
    total_movements: int
    completed_movements: int
    skipped_movements: int
    percent_complete: float = Field(
        description="Completed (not skipped) movements over all movements, 0-100.",
        examples=[62.5],
    )
    current_phase_id: str
    current_phase_name: str
    phase_index: int
    phase_count: int


class FlowTimelineEntry(BaseModel):
    completion_id: str
    movement_id: str
    movement_name: str
    phase_id: str
    status: CompletionStatus
    user_id: str
    notes: Optional[str] = Field(default=None)
    skip_reason: Optional[str] = Field(default=None)
    completed_at: str
    evidence_count: int


class FlowTimelineResponse(BaseModel):
    flow_instance_id: str
    entries: List[FlowTimelineEntry] = Field(default_factory=list)


class PhaseSummary(BaseModel):
    phase_id: str
    name: str
    description: Optional[str] = Field(default=None)
    index: int
    state: PhaseState
    gate_id: str
    movement_count: int
    completed_count: int
    skipped_count: int


class FlowPhasesResponse(BaseModel):
    flow_instance_id: str
    phases: List[PhaseSummary] = Field(default_factory=list)


class PhaseMovementsResponse(BaseModel):
    flow_instance_id: str
    phase_id: str
    movements: List[MovementView] = Field(default_factory=list)
