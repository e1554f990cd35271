from src.core.flows.collaborators import EvidenceBlobStore, SuggestionProvider
from src.core.flows.definitions import (
    FlowDefinitionService,
    empty_flow_template,
    validate_flow_definition,
)
from src.core.flows.errors import (
    FlowCollaboratorError,
    FlowConflictError,
    FlowEngineError,
    FlowNotFoundError,
    FlowOutOfOrderError,
    FlowValidationError,
)
from src.core.flows.repository import FlowRepository
from src.core.flows.service import FlowEngineService

__all__ = [
    "EvidenceBlobStore",
    "FlowCollaboratorError",
    "FlowConflictError",
    "FlowDefinitionService",
    "FlowEngineError",
    "FlowEngineService",
    "FlowNotFoundError",
    "FlowOutOfOrderError",
    "FlowRepository",
    "FlowValidationError",
    "SuggestionProvider",
    "empty_flow_template",
    "validate_flow_definition",
]
