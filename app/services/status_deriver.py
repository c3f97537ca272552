"""
status_deriver.py — Aggregate quote request status from supplier threads

Maps the per-supplier SupplierThread states of a quote request to one
QuoteRequest status. ``derive_quote_status`` is pure; the helpers around
it take a fresh snapshot from the database and persist the result.

Business Rules (first match wins):
- CONVERTED_TO_ORDER and EXPIRED are terminal and returned unchanged
- No threads → current status unchanged
- Any thread ACCEPTED → APPROVED
- APPROVED stays APPROVED while no thread is ACCEPTED yet (an accept is
  in flight; only its own compensation moves it back)
- Every thread REJECTED or NO_RESPONSE, at least one REJECTED → REJECTED
- Any thread RESPONDED, or any thread with INBOUND mail → UNDER_REVIEW
- Every thread SENT with no INBOUND mail → SENT
- Otherwise the current status is kept
- Snapshots are always re-read (populate_existing); never derive from a
  cached thread list after another request may have written
- Only threads of the current negotiation round count; threads from
  before a reopen keep their status but no longer drive the aggregate

Called by: services/conversion.py, services/email_ledger.py,
           routers/quote_requests.py
Depends on: models
"""

from dataclasses import dataclass
from typing import Iterable

from loguru import logger
from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Session

from ..models import EmailMessage, QuoteRequest, SupplierThread
from ..models.enums import MessageDirection, QuoteStatus, ThreadStatus


@dataclass(frozen=True)
class ThreadSnapshot:
    """One supplier thread as seen by the deriver."""

    thread_id: int
    supplier_id: int
    status: ThreadStatus
    has_inbound: bool = False


def derive_quote_status(current: QuoteStatus, threads: Iterable[ThreadSnapshot]) -> QuoteStatus:
    current = QuoteStatus(current)
    if current.is_terminal:
        return current

    threads = list(threads)
    if not threads:
        return current

    statuses = [ThreadStatus(t.status) for t in threads]

    if ThreadStatus.ACCEPTED in statuses:
        return QuoteStatus.APPROVED

    # APPROVED with no ACCEPTED thread yet: an accept is between its steps
    if current == QuoteStatus.APPROVED:
        return current

    closed = (ThreadStatus.REJECTED, ThreadStatus.NO_RESPONSE)
    if all(s in closed for s in statuses) and ThreadStatus.REJECTED in statuses:
        return QuoteStatus.REJECTED

    if ThreadStatus.RESPONDED in statuses or any(t.has_inbound for t in threads):
        return QuoteStatus.UNDER_REVIEW

    if all(s == ThreadStatus.SENT for s in statuses):
        return QuoteStatus.SENT

    return current


# ── Snapshot / persistence ────────────────────────────────────────────


def _has_inbound_clause():
    return (
        exists()
        .where(
            and_(
                EmailMessage.thread_id == SupplierThread.email_thread_id,
                EmailMessage.direction == MessageDirection.INBOUND,
            )
        )
        .correlate(SupplierThread)
    )


def thread_snapshots(db: Session, quote: QuoteRequest) -> list[ThreadSnapshot]:
    """Fresh read of the supplier threads in the quote's current round."""
    db.flush()
    rows = db.execute(
        select(SupplierThread, _has_inbound_clause().label("has_inbound"))
        .where(
            SupplierThread.quote_request_id == quote.id,
            SupplierThread.negotiation_round == quote.negotiation_round,
        )
        .order_by(SupplierThread.id)
        .execution_options(populate_existing=True)
    ).all()
    return [
        ThreadSnapshot(
            thread_id=st.id,
            supplier_id=st.supplier_id,
            status=ThreadStatus(st.status),
            has_inbound=bool(has_inbound),
        )
        for st, has_inbound in rows
    ]


def refresh_thread_statuses(db: Session, quote: QuoteRequest) -> int:
    """Flip SENT threads that have INBOUND mail to RESPONDED.

    ACCEPTED and REJECTED threads are never touched. The response date is
    the latest inbound receipt time. Returns the number of threads changed;
    the caller commits.
    """
    threads = (
        db.query(SupplierThread)
        .filter(SupplierThread.quote_request_id == quote.id)
        .populate_existing()
        .all()
    )
    updated = 0
    for st in threads:
        if st.status != ThreadStatus.SENT:
            continue
        latest = (
            db.query(EmailMessage)
            .filter(
                EmailMessage.thread_id == st.email_thread_id,
                EmailMessage.direction == MessageDirection.INBOUND,
            )
            .order_by(EmailMessage.received_at.desc().nulls_last(), EmailMessage.id.desc())
            .first()
        )
        if not latest:
            continue
        st.status = ThreadStatus.RESPONDED
        st.response_date = latest.received_at or latest.created_at
        updated += 1
        logger.info(
            "Thread {} (supplier {}) marked RESPONDED for quote {}",
            st.id, st.supplier_id, quote.id,
        )
    if updated:
        db.flush()
    return updated


def recompute_quote_status(db: Session, quote: QuoteRequest, *, commit: bool = True) -> QuoteStatus:
    """Re-derive and store the aggregate status from a fresh snapshot."""
    db.flush()
    db.refresh(quote)
    derived = derive_quote_status(quote.status, thread_snapshots(db, quote))
    if derived != quote.status:
        logger.info("Quote {} status {} → {}", quote.id, quote.status.value, derived.value)
        quote.status = derived
        if commit:
            db.commit()
        else:
            db.flush()
    return derived
