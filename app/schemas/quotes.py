"""
schemas/quotes.py — Pydantic models for quote request endpoints

Validates accept / reject payloads, supplier additions and thread
re-linking requests.

Business Rules:
- Accept and reject name exactly one supplier thread (supplier_id + thread_id)
- Ids must be positive integers
- force_resync re-links threads that already have a supplier

Called by: routers/quote_requests.py
Depends on: pydantic
"""

from __future__ import annotations

from pydantic import BaseModel, field_validator

from ..models.enums import FulfillmentMethod


class SupplierThreadAction(BaseModel):
    """Target one supplier thread of a quote request."""
    supplier_id: int
    thread_id: int

    @field_validator("supplier_id", "thread_id")
    @classmethod
    def positive_id(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Id must be a positive integer")
        return v


class AcceptQuote(SupplierThreadAction):
    """Accept one supplier's quote and convert it to an order."""
    fulfillment_method: FulfillmentMethod = FulfillmentMethod.DELIVERY


class RejectQuote(SupplierThreadAction):
    """Reject one supplier's quote."""
    reason: str = ""


class AddSupplier(BaseModel):
    supplier_id: int


class SyncThreads(BaseModel):
    force_resync: bool = False


class FollowUpRequest(BaseModel):
    reason: str = "No response received by expected date"
    additional_message: str = ""
