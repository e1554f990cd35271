from typing import Any, NoReturn

from fastapi import HTTPException, status

from src.core.flows import (
    FlowCollaboratorError,
    FlowConflictError,
    FlowEngineError,
    FlowNotFoundError,
    FlowOutOfOrderError,
    FlowValidationError,
)

HTTP_422_UNPROCESSABLE = getattr(
    status,
    "HTTP_422_UNPROCESSABLE_CONTENT",
    status.HTTP_422_UNPROCESSABLE_ENTITY,
)


def raise_flow_http_exception(exc: FlowEngineError) -> NoReturn:
    if isinstance(exc, FlowNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, (FlowConflictError, FlowOutOfOrderError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, FlowValidationError):
        detail: object = str(exc)
        if exc.violations:
            detail = {
                "code": str(exc),
                "violations": [item.model_dump() for item in exc.violations],
            }
        raise HTTPException(status_code=HTTP_422_UNPROCESSABLE, detail=detail) from exc
    if isinstance(exc, FlowCollaboratorError):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    raise exc


def conflict_responses(*detail_codes: str) -> dict[int | str, dict[str, Any]]:
    """OpenAPI 409 entry listing the detail codes a route can return.

    Conflict and out-of-order errors share the status; clients branch on `detail`.
    """
    return {
        409: {
            "description": "Conflicting or out-of-order request; `detail` carries the code.",
            "content": {
                "application/json": {
                    "examples": {
                        code.lower(): {"summary": code, "value": {"detail": code}}
                        for code in detail_codes
                    }
                }
            },
        }
    }
