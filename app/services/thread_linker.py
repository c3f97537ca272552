"""
thread_linker.py — Link workflow-created email threads to suppliers

After a quote request is sent the external workflow creates one email
thread per supplier, asynchronously. This module matches those threads
to suppliers and retries on a schedule until every supplier is linked.

Business Rules:
- A thread belongs to the supplier whose email appears in the recipient
  of the thread's first OUTBOUND message
- Existing links of the current round are reported as already linked
  (never duplicated); a thread linked in any round is never reused
- force_resync drops the current round's SENT links first; not allowed
  once a supplier is accepted
- Retry offsets come from settings.thread_link_retry_delays (seconds
  after the send); attempts = min(len(delays), ceil(2 x suppliers))
- A schedule stops at the first attempt that links every supplier and
  can be cancelled at any time; cancelling drops every pending timer
- One schedule per quote request; starting a new one cancels the old

Called by: services/conversion.py, routers/quote_requests.py
Depends on: models, database
"""

import asyncio
import math
from typing import Awaitable, Callable

from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import Conflict
from ..models import EmailMessage, EmailThread, QuoteRequest, Supplier, SupplierThread
from ..models.enums import MessageDirection, QuoteStatus, ThreadStatus


def _first_outbound(db: Session, thread_id: int) -> EmailMessage | None:
    return (
        db.query(EmailMessage)
        .filter(EmailMessage.thread_id == thread_id, EmailMessage.direction == MessageDirection.OUTBOUND)
        .order_by(EmailMessage.created_at, EmailMessage.id)
        .first()
    )


def sync_threads(db: Session, quote: QuoteRequest, *, force_resync: bool = False) -> dict:
    """Create missing SupplierThread links. Returns linked / already_linked / errors."""
    if force_resync:
        if quote.status in (QuoteStatus.APPROVED, QuoteStatus.CONVERTED_TO_ORDER):
            raise Conflict(
                f"quote {quote.id} is {quote.status.value}; links are frozen",
                public_message="Threads cannot be re-synced after a quote is accepted",
            )
        dropped = (
            db.query(SupplierThread)
            .filter(
                SupplierThread.quote_request_id == quote.id,
                SupplierThread.negotiation_round == quote.negotiation_round,
                SupplierThread.status == ThreadStatus.SENT,
            )
            .delete(synchronize_session="fetch")
        )
        logger.info("Force re-sync for quote {} dropped {} link(s)", quote.id, dropped)

    all_links = db.query(SupplierThread).filter_by(quote_request_id=quote.id).all()
    links = {st.supplier_id: st for st in all_links if st.negotiation_round == quote.negotiation_round}
    linked_thread_ids = {st.email_thread_id for st in all_links}
    candidates = [
        t
        for t in db.query(EmailThread).filter_by(quote_request_id=quote.id).order_by(EmailThread.created_at).all()
        if t.id not in linked_thread_ids
    ]
    first_outbound = {t.id: _first_outbound(db, t.id) for t in candidates}

    result = {"linked": [], "already_linked": [], "errors": []}
    suppliers = db.query(Supplier).filter(Supplier.id.in_(quote.supplier_ids)).all() if quote.supplier_ids else []
    for supplier in sorted(suppliers, key=lambda s: quote.supplier_ids.index(s.id)):
        existing = links.get(supplier.id)
        if existing:
            result["already_linked"].append(
                {"supplier_id": supplier.id, "supplier_name": supplier.name, "email_thread_id": existing.email_thread_id}
            )
            continue

        email = (supplier.email or "").strip().lower()
        match = None
        if email:
            for t in candidates:
                msg = first_outbound.get(t.id)
                if msg and email in (msg.to_address or "").lower():
                    match = t
                    break
        if not match:
            result["errors"].append(
                {
                    "supplier_id": supplier.id,
                    "supplier_name": supplier.name,
                    "error": f"No email thread found with recipient {supplier.email}",
                }
            )
            continue

        st = SupplierThread(
            quote_request_id=quote.id,
            supplier_id=supplier.id,
            email_thread_id=match.id,
            is_primary=supplier.id == quote.supplier_id,
            status=ThreadStatus.SENT,
            negotiation_round=quote.negotiation_round,
        )
        db.add(st)
        candidates.remove(match)
        result["linked"].append(
            {"supplier_id": supplier.id, "supplier_name": supplier.name, "email_thread_id": match.id}
        )

    db.commit()
    logger.info(
        "Thread sync for quote {}: linked={} already={} errors={}",
        quote.id, len(result["linked"]), len(result["already_linked"]), len(result["errors"]),
    )
    return result


# ── Retry schedule ────────────────────────────────────────────────────


def max_attempts(supplier_count: int, delays: list[float] | None = None) -> int:
    delays = settings.thread_link_retry_delays if delays is None else delays
    return min(len(delays), math.ceil(supplier_count * 2))


class RetrySchedule:
    """Bounded series of checks at increasing offsets from start()."""

    def __init__(
        self,
        name: str,
        check: Callable[[], Awaitable[bool]],
        offsets: list[float],
    ):
        self.name = name
        self.check = check
        self.offsets = list(offsets)
        self.attempts = 0
        self.succeeded = False
        self._task: asyncio.Task | None = None

    def start(self) -> "RetrySchedule":
        self._task = asyncio.create_task(self._run())
        return self

    async def _run(self) -> None:
        elapsed = 0.0
        for offset in self.offsets:
            await asyncio.sleep(max(0.0, offset - elapsed))
            elapsed = offset
            self.attempts += 1
            try:
                ok = await self.check()
            except Exception as e:
                logger.warning("{} attempt {}/{} errored: {}", self.name, self.attempts, len(self.offsets), e)
                ok = False
            if ok:
                self.succeeded = True
                logger.info("{} succeeded on attempt {}", self.name, self.attempts)
                return
        logger.warning("{} gave up after {} attempt(s)", self.name, self.attempts)

    def cancel(self) -> bool:
        """Cancel every pending check. Returns False if nothing was pending."""
        if self._task is None or self._task.done():
            return False
        self._task.cancel()
        logger.info("{} cancelled after {} attempt(s)", self.name, self.attempts)
        return True

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(self) -> None:
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass


_schedules: dict[int, RetrySchedule] = {}


async def _link_check(quote_id: int) -> bool:
    from ..database import SessionLocal

    db = SessionLocal()
    try:
        quote = db.get(QuoteRequest, quote_id)
        if not quote:
            return True
        return not sync_threads(db, quote)["errors"]
    finally:
        db.close()


def start_thread_link_retries(quote_id: int, supplier_count: int) -> RetrySchedule:
    cancel_thread_link_retries(quote_id)
    offsets = settings.thread_link_retry_delays[: max_attempts(supplier_count)]
    schedule = RetrySchedule(
        f"Thread link for quote {quote_id}", lambda: _link_check(quote_id), offsets
    ).start()
    _schedules[quote_id] = schedule
    schedule._task.add_done_callback(
        lambda _t: _schedules.pop(quote_id, None) if _schedules.get(quote_id) is schedule else None
    )
    return schedule


def cancel_thread_link_retries(quote_id: int) -> bool:
    schedule = _schedules.pop(quote_id, None)
    return schedule.cancel() if schedule else False


def cancel_all() -> int:
    """Cancel every schedule. Called on shutdown."""
    count = 0
    for quote_id in list(_schedules):
        count += cancel_thread_link_retries(quote_id)
    return count
