"""
schemas/errors.py — Structured error response model

Shared by the ProcurementError, HTTPException and RequestValidationError
handlers in main.py. ``error`` is always the generic category; internal
detail stays in the logs.
"""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    status_code: int
    request_id: str = ""
    detail: list | None = None
