# This project was developed with assistance from AI tools.
"""Error response schema shared by every endpoint."""

from typing import Literal

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Structured error body. Stack traces and raw upstream messages never appear here."""

    ok: Literal[False] = False
    error: str = Field(description="Stable machine-readable error code, e.g. ``not_found``.")
    detail: str = Field(
        default="",
        description="Human-readable explanation specific to this occurrence.",
    )
    request_id: str = Field(
        default="",
        description="Correlation ID for tracing this request in logs.",
    )
