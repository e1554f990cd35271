from typing import Optional

from src.core.flows.models import FlowDefinitionViolation


class FlowEngineError(Exception):
    pass


class FlowNotFoundError(FlowEngineError):
    pass


class FlowConflictError(FlowEngineError):
    pass


class FlowOutOfOrderError(FlowEngineError):
    pass


class FlowValidationError(FlowEngineError):
    def __init__(
        self,
        message: str,
        *,
        violations: Optional[list[FlowDefinitionViolation]] = None,
    ) -> None:
        super().__init__(message)
        self.violations = list(violations or [])


class FlowCollaboratorError(FlowEngineError):
    pass
