"""
Remote Operation Responses

Every remote operation answers with an OperationResponse:
either `{success: True, data}` or `{success: False, error}`.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorPayload(BaseModel):
    """Typed failure returned to the caller."""

    code: str = Field(
        ...,
        description="Wire error code (e.g. 'not-found', 'already-exists')"
    )
    message: str
    retryable: bool = Field(
        default=False,
        description="Can the caller retry the same request?"
    )


class OperationResponse(BaseModel):
    """Result of a remote operation."""

    success: bool
    data: Any = None
    error: Optional[ErrorPayload] = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: str, message: str, retryable: bool = False) -> "OperationResponse":
        return cls(
            success=False,
            error=ErrorPayload(code=code, message=message, retryable=retryable),
        )
