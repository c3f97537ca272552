"""
conversion.py — Quote request lifecycle: send, accept → order, reject, reopen

The accept path is a saga: it crosses the quote request, its supplier
threads and a new order, so every write step registers an undo and a
failure part-way runs the undos in reverse.

Business Rules:
- Accept only from RECEIVED / UNDER_REVIEW, refreshed through the deriver
  first; the APPROVED write is a conditional UPDATE, zero rows → Conflict
  (a second concurrent accept never double-applies)
- Target thread ACCEPTED, every other current-round thread NOT_SELECTED
- Order items come from the accepted supplier's priced items only
- On failure after the APPROVED write: order voided (never deleted),
  threads and quote restored, QUOTE_ACCEPT_FAILED logged, error surfaced
- accept_rollback_strategy "snapshot" restores the exact pre-attempt
  values; "legacy" resets to UNDER_REVIEW / RESPONDED and warns when that
  differs from the snapshot
- Reject flips one thread to REJECTED and re-derives the quote status
- Only threads of the current negotiation round can be rejected
- Reopen only from REJECTED / EXPIRED: status SENT, next negotiation
  round; old threads keep their REJECTED / NOT_SELECTED status
- Suppliers can be added while DRAFT or SENT
- Sending requests one email per supplier; a failure for one supplier
  does not stop the others; thread linking then retries in the background

Called by: routers/quote_requests.py
Depends on: status_deriver, order_service, thread_linker, parsing_client,
            email_ledger, activity_service, background
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable

from loguru import logger
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import (
    AuthorizationDenied,
    Conflict,
    ExternalServiceError,
    NotFound,
    ProcurementError,
    ValidationFailed,
)
from ..models import (
    EmailThread,
    Order,
    QuoteRequest,
    QuoteRequestItem,
    Supplier,
    SupplierThread,
    User,
)
from ..models.base import utcnow
from ..models.enums import (
    ACCEPTABLE_QUOTE_STATUSES,
    REOPENABLE_QUOTE_STATUSES,
    FulfillmentMethod,
    QuoteStatus,
    ThreadStatus,
)
from . import activity_service as activity
from . import parsing_client, thread_linker
from .background import spawn
from .email_ledger import record_outbound_message
from .order_service import create_order_from_quote, line_total, send_order_confirmation, void_order
from .status_deriver import recompute_quote_status, refresh_thread_statuses


# ── Loading / validation ──────────────────────────────────────────────


def _load_quote(db: Session, quote_id: int, user: User) -> QuoteRequest:
    quote = db.get(QuoteRequest, quote_id)
    if not quote:
        raise NotFound(f"quote request {quote_id} not found", public_message="Quote request not found")
    if quote.organization_id != user.organization_id:
        raise AuthorizationDenied(f"user {user.id} cannot act on quote {quote_id}")
    return quote


def _target_thread(db: Session, quote: QuoteRequest, supplier_id: int, thread_id: int) -> SupplierThread:
    """The SupplierThread for (supplier, email thread) on this quote."""
    st = (
        db.query(SupplierThread)
        .filter_by(quote_request_id=quote.id, supplier_id=supplier_id, email_thread_id=thread_id)
        .first()
    )
    if not st:
        raise ValidationFailed(
            f"thread {thread_id} / supplier {supplier_id} not on quote {quote.id}",
            public_message="Thread does not belong to this quote request and supplier",
        )
    return st


def _current_threads(db: Session, quote: QuoteRequest) -> list[SupplierThread]:
    return (
        db.query(SupplierThread)
        .filter_by(quote_request_id=quote.id, negotiation_round=quote.negotiation_round)
        .order_by(SupplierThread.id)
        .populate_existing()
        .all()
    )


def _priced_items(db: Session, quote: QuoteRequest, supplier_id: int) -> list[QuoteRequestItem]:
    return (
        db.query(QuoteRequestItem)
        .filter_by(quote_request_id=quote.id, supplier_id=supplier_id)
        .order_by(QuoteRequestItem.id)
        .all()
    )


# ── Accept summary ────────────────────────────────────────────────────


@dataclass
class AcceptanceSummary:
    """What the user confirms before accepting a supplier's quote."""

    supplier_id: int
    supplier_name: str
    supplier_email: str | None
    thread_id: int
    items: list[QuoteRequestItem] = field(default_factory=list)
    quoted_total: Decimal = Decimal("0")
    other_suppliers_count: int = 0

    def to_dict(self) -> dict:
        return {
            "supplier": {"id": self.supplier_id, "name": self.supplier_name, "email": self.supplier_email},
            "thread_id": self.thread_id,
            "items": [
                {
                    "id": i.id,
                    "part_number": i.part_number,
                    "description": i.description,
                    "quantity": i.quantity,
                    "unit_price": float(i.unit_price) if i.unit_price is not None else None,
                    "total_price": float(i.total_price) if i.total_price is not None else None,
                    "availability": i.availability.value if i.availability else None,
                    "estimated_delivery_days": i.estimated_delivery_days,
                }
                for i in self.items
            ],
            "quoted_total": float(self.quoted_total),
            "other_suppliers_count": self.other_suppliers_count,
        }


def summarize_acceptance(db: Session, quote: QuoteRequest, supplier_id: int, thread_id: int) -> AcceptanceSummary:
    st = _target_thread(db, quote, supplier_id, thread_id)
    items = _priced_items(db, quote, supplier_id)
    others = [t for t in _current_threads(db, quote) if t.id != st.id]
    return AcceptanceSummary(
        supplier_id=st.supplier.id,
        supplier_name=st.supplier.name,
        supplier_email=st.supplier.email,
        thread_id=thread_id,
        items=items,
        quoted_total=sum((line_total(i) for i in items), Decimal("0")),
        other_suppliers_count=len(others),
    )


# ── Saga ──────────────────────────────────────────────────────────────


class Saga:
    """Ordered log of undo callbacks for a multi-step operation."""

    def __init__(self, name: str):
        self.name = name
        self.steps: list[tuple[str, Callable[[], None]]] = []

    def register(self, label: str, undo: Callable[[], None]) -> None:
        self.steps.append((label, undo))

    def compensate(self) -> list[str]:
        """Run every undo, newest first. Returns the labels that failed."""
        failed = []
        for label, undo in reversed(self.steps):
            try:
                undo()
                logger.info("{}: compensated '{}'", self.name, label)
            except Exception:
                logger.exception("{}: compensation '{}' failed", self.name, label)
                failed.append(label)
        return failed


@dataclass(frozen=True)
class _AcceptSnapshot:
    quote_status: QuoteStatus
    selected_supplier_id: int | None
    thread_statuses: dict[int, ThreadStatus]


def _restore_quote(db: Session, quote: QuoteRequest, snap: _AcceptSnapshot) -> None:
    db.rollback()
    db.refresh(quote)
    if settings.accept_rollback_strategy == "legacy":
        target = QuoteStatus.UNDER_REVIEW
        if snap.quote_status != target:
            logger.warning(
                "Legacy rollback sets quote {} to {} (was {} before the attempt)",
                quote.id, target.value, snap.quote_status.value,
            )
        quote.status = target
        quote.selected_supplier_id = None
    else:
        quote.status = snap.quote_status
        quote.selected_supplier_id = snap.selected_supplier_id
    db.commit()


def _restore_threads(db: Session, quote: QuoteRequest, snap: _AcceptSnapshot) -> None:
    db.rollback()
    legacy = settings.accept_rollback_strategy == "legacy"
    for st in db.query(SupplierThread).filter(SupplierThread.id.in_(snap.thread_statuses)).all():
        before = snap.thread_statuses[st.id]
        if legacy:
            if before != ThreadStatus.RESPONDED:
                logger.warning(
                    "Legacy rollback sets thread {} to RESPONDED (was {} before the attempt)",
                    st.id, before.value,
                )
            st.status = ThreadStatus.RESPONDED
        else:
            st.status = before
    db.commit()


# ── Accept ────────────────────────────────────────────────────────────


async def accept_quote(
    db: Session,
    quote_id: int,
    *,
    supplier_id: int,
    thread_id: int,
    user: User,
    fulfillment_method: FulfillmentMethod = FulfillmentMethod.DELIVERY,
) -> Order:
    """Accept one supplier's quote and convert the request into an order."""
    quote = _load_quote(db, quote_id, user)
    target = _target_thread(db, quote, supplier_id, thread_id)
    if target.negotiation_round != quote.negotiation_round:
        raise Conflict(
            f"thread {target.id} belongs to round {target.negotiation_round}",
            public_message="This supplier thread is from an earlier round",
        )

    db.refresh(quote)
    if quote.status == QuoteStatus.APPROVED:
        raise Conflict(
            f"quote {quote.id} has an accept in progress",
            public_message="Quote request was already accepted or changed",
        )

    refresh_thread_statuses(db, quote)
    current = recompute_quote_status(db, quote)
    if current not in ACCEPTABLE_QUOTE_STATUSES:
        raise Conflict(
            f"quote {quote.id} is {current.value}",
            public_message="Quote request is not awaiting a decision",
        )

    threads = _current_threads(db, quote)
    snap = _AcceptSnapshot(
        quote_status=QuoteStatus(quote.status),
        selected_supplier_id=quote.selected_supplier_id,
        thread_statuses={st.id: ThreadStatus(st.status) for st in threads},
    )
    items = _priced_items(db, quote, supplier_id)

    result = db.execute(
        update(QuoteRequest)
        .where(QuoteRequest.id == quote.id, QuoteRequest.status.in_(ACCEPTABLE_QUOTE_STATUSES))
        .values(status=QuoteStatus.APPROVED, selected_supplier_id=supplier_id, updated_at=utcnow())
    )
    if result.rowcount == 0:
        db.rollback()
        raise Conflict(
            f"quote {quote.id} changed status before approval",
            public_message="Quote request was already accepted or changed",
        )
    db.commit()
    db.refresh(quote)

    saga = Saga(f"Accept quote {quote.quote_number}")
    saga.register("restore quote request", lambda: _restore_quote(db, quote, snap))
    order_id = None
    try:
        for st in threads:
            st.status = ThreadStatus.ACCEPTED if st.id == target.id else ThreadStatus.NOT_SELECTED
        db.commit()
        saga.register("restore supplier threads", lambda: _restore_threads(db, quote, snap))

        order = create_order_from_quote(
            db, quote, target, items, user, fulfillment_method=fulfillment_method
        )
        order_id = order.id
        saga.register(
            "void order",
            lambda: void_order(db, order_id, f"conversion of quote {quote.quote_number} failed"),
        )

        quote.status = QuoteStatus.CONVERTED_TO_ORDER
        activity.log_quote_activity(
            db, user.id, quote, activity.QUOTE_ACCEPTED, "Quote accepted",
            f"Accepted {target.supplier.name}; order {order.order_number} created",
            supplier_id=supplier_id,
            order_id=order.id,
            not_selected=len(threads) - 1,
        )
        activity.log_order_activity(
            db, user.id, order, activity.ORDER_CREATED, "Order created",
            quote_request_id=quote.id,
            supplier_id=supplier_id,
            item_count=len(items),
        )
        db.commit()
    except Exception as e:
        logger.error("Accept of quote {} failed, compensating: {}", quote.id, e)
        db.rollback()
        failed_undos = saga.compensate()
        activity.log_quote_activity(
            db, user.id, quote, activity.QUOTE_ACCEPT_FAILED, "Quote acceptance failed",
            f"Conversion failed and was rolled back: {e}",
            supplier_id=supplier_id,
            voided_order_id=order_id,
            rollback_strategy=settings.accept_rollback_strategy,
            failed_compensations=failed_undos,
        )
        if order_id:
            voided = db.get(Order, order_id)
            activity.log_order_activity(
                db, user.id, voided, activity.ORDER_VOIDED, "Order voided",
                quote_request_id=quote.id,
            )
        db.commit()
        if isinstance(e, ProcurementError):
            raise
        raise ProcurementError(
            f"conversion of quote {quote.id} failed: {e}",
            public_message="Failed to convert quote to order",
        ) from e

    logger.info(
        "Quote {} converted to order {} (supplier {})",
        quote.quote_number, order.order_number, supplier_id,
    )
    spawn(
        "order_confirmation",
        send_order_confirmation,
        order.id,
        user.id,
        entity_type="order",
        entity_id=order.id,
    )
    return order


# ── Reject / reopen ───────────────────────────────────────────────────


def reject_quote(
    db: Session,
    quote_id: int,
    *,
    supplier_id: int,
    thread_id: int,
    user: User,
    reason: str = "",
) -> QuoteStatus:
    """Reject one supplier's quote. Returns the re-derived quote status."""
    quote = _load_quote(db, quote_id, user)
    st = _target_thread(db, quote, supplier_id, thread_id)
    if st.negotiation_round != quote.negotiation_round:
        raise Conflict(
            f"thread {st.id} belongs to round {st.negotiation_round}",
            public_message="This supplier thread is from an earlier round",
        )
    if quote.status.is_terminal or quote.status == QuoteStatus.APPROVED:
        raise Conflict(
            f"quote {quote.id} is {quote.status.value}",
            public_message="Quote request can no longer be changed",
        )
    if st.status == ThreadStatus.ACCEPTED:
        raise Conflict(
            f"thread {st.id} already accepted",
            public_message="An accepted quote cannot be rejected",
        )

    st.status = ThreadStatus.REJECTED
    activity.log_quote_activity(
        db, user.id, quote, activity.QUOTE_REJECTED, "Supplier quote rejected",
        f"Rejected {st.supplier.name}" + (f": {reason}" if reason else ""),
        supplier_id=supplier_id,
        thread_id=thread_id,
        reason=reason,
    )
    status = recompute_quote_status(db, quote, commit=False)
    db.commit()
    logger.info("Quote {} supplier {} rejected; quote now {}", quote.id, supplier_id, status.value)
    return status


def reopen_quote(db: Session, quote_id: int, user: User) -> QuoteRequest:
    quote = _load_quote(db, quote_id, user)
    if quote.status not in REOPENABLE_QUOTE_STATUSES:
        raise Conflict(
            f"quote {quote.id} is {quote.status.value}",
            public_message="Only rejected or expired quote requests can be reopened",
        )
    previous = quote.status
    thread_linker.cancel_thread_link_retries(quote.id)
    quote.status = QuoteStatus.SENT
    quote.selected_supplier_id = None
    quote.negotiation_round = (quote.negotiation_round or 1) + 1
    activity.log_quote_activity(
        db, user.id, quote, activity.QUOTE_REOPENED, "Quote request reopened",
        previous_status=previous.value,
        negotiation_round=quote.negotiation_round,
    )
    db.commit()
    logger.info("Quote {} reopened (round {})", quote.id, quote.negotiation_round)
    return quote


# ── Suppliers / sending ───────────────────────────────────────────────


async def add_supplier(db: Session, quote_id: int, supplier_id: int, user: User) -> dict | None:
    """Attach another supplier. On a SENT quote the request goes out right away."""
    quote = _load_quote(db, quote_id, user)
    if quote.status not in (QuoteStatus.DRAFT, QuoteStatus.SENT):
        raise Conflict(
            f"quote {quote.id} is {quote.status.value}",
            public_message="Suppliers can only be added to draft or sent quote requests",
        )
    supplier = db.get(Supplier, supplier_id)
    if not supplier or supplier.organization_id != quote.organization_id:
        raise NotFound(f"supplier {supplier_id} not found", public_message="Supplier not found")
    in_round = (
        db.query(SupplierThread.id)
        .filter_by(quote_request_id=quote.id, supplier_id=supplier_id, negotiation_round=quote.negotiation_round)
        .first()
    )
    if supplier_id in quote.supplier_ids and (quote.status == QuoteStatus.DRAFT or in_round):
        raise Conflict(
            f"supplier {supplier_id} already on quote {quote.id}",
            public_message="Supplier is already on this quote request",
        )

    if supplier_id not in quote.supplier_ids:
        if quote.supplier_id is None:
            quote.supplier_id = supplier_id
        else:
            quote.additional_supplier_ids = [*(quote.additional_supplier_ids or []), supplier_id]
    activity.log_quote_activity(
        db, user.id, quote, activity.SUPPLIER_ADDED, "Supplier added",
        f"Added {supplier.name}",
        supplier_id=supplier_id,
    )
    db.commit()

    if quote.status == QuoteStatus.SENT:
        return await send_quote_request(db, quote.id, user, supplier_ids=[supplier_id])
    return None


def _supplier_items(db: Session, quote: QuoteRequest, supplier_id: int) -> list[QuoteRequestItem]:
    """Per-supplier copies of the requested items, created on first send."""
    existing = {i.part_number: i for i in _priced_items(db, quote, supplier_id)}
    for base in quote.items:
        if base.supplier_id is not None or base.part_number in existing:
            continue
        copy = QuoteRequestItem(
            quote_request_id=quote.id,
            supplier_id=supplier_id,
            part_number=base.part_number,
            description=base.description,
            quantity=base.quantity,
        )
        db.add(copy)
        existing[base.part_number] = copy
    db.flush()
    return list(existing.values())


def _request_payload(quote: QuoteRequest, supplier: Supplier, items: list[QuoteRequestItem], user: User) -> dict:
    return {
        "quoteRequestId": quote.id,
        "quoteNumber": quote.quote_number,
        "supplierId": supplier.id,
        "isPrimary": supplier.id == quote.supplier_id,
        "supplier": {
            "id": supplier.id,
            "name": supplier.name,
            "email": supplier.email,
            "contactPerson": supplier.contact_person,
        },
        "items": [
            {"id": i.id, "partNumber": i.part_number, "description": i.description, "quantity": i.quantity}
            for i in items
        ],
        "specialInstructions": quote.notes,
        "organization": {"id": quote.organization_id},
        "user": {"id": user.id, "name": user.name or "User", "email": user.email, "role": user.role},
        "emailThread": {"createdById": user.id},
    }


def _record_sent_email(db: Session, quote: QuoteRequest, supplier: Supplier, user: User, data: dict) -> None:
    """Store the generated email when the service reports the thread it used."""
    content = data.get("emailContent") or {}
    external_id = data.get("threadId")
    if not external_id or not content.get("subject"):
        return
    thread = db.query(EmailThread).filter_by(external_thread_id=str(external_id)).first()
    if not thread:
        thread = EmailThread(
            external_thread_id=str(external_id),
            subject=content["subject"],
            organization_id=quote.organization_id,
            quote_request_id=quote.id,
        )
        db.add(thread)
        db.flush()
    record_outbound_message(
        db,
        thread,
        from_address=user.email,
        to_address=supplier.email,
        subject=content["subject"],
        body=content.get("body", ""),
        body_html=content.get("bodyHtml"),
        external_message_id=data.get("messageId"),
        details={"quote_request_id": quote.id, "supplier_id": supplier.id},
    )


async def send_quote_request(
    db: Session,
    quote_id: int,
    user: User,
    supplier_ids: list[int] | None = None,
) -> dict:
    """Request the quote emails for every (or the given) supplier."""
    quote = _load_quote(db, quote_id, user)
    if quote.status not in (QuoteStatus.DRAFT, QuoteStatus.SENT):
        raise Conflict(
            f"quote {quote.id} is {quote.status.value}",
            public_message="Quote request has already been sent",
        )
    if quote.status == QuoteStatus.SENT and not supplier_ids:
        linked = {
            st.supplier_id
            for st in db.query(SupplierThread).filter_by(
                quote_request_id=quote.id, negotiation_round=quote.negotiation_round
            )
        }
        supplier_ids = [sid for sid in quote.supplier_ids if sid not in linked]
        if not supplier_ids:
            raise Conflict(
                f"quote {quote.id} already sent to every supplier",
                public_message="Quote request has already been sent",
            )
    targets = supplier_ids if supplier_ids is not None else quote.supplier_ids
    if not targets:
        raise ValidationFailed(f"quote {quote.id} has no suppliers", public_message="Quote request has no suppliers")

    results = {"sent": [], "errors": []}
    for supplier in db.query(Supplier).filter(Supplier.id.in_(targets)).all():
        if not supplier.email:
            results["errors"].append(
                {"supplier_id": supplier.id, "supplier_name": supplier.name,
                 "error": "Supplier does not have an email address"}
            )
            continue
        items = _supplier_items(db, quote, supplier.id)
        try:
            data = await parsing_client.generate_quote_request_email(
                _request_payload(quote, supplier, items, user)
            )
        except ExternalServiceError as e:
            logger.error("Quote request {} to supplier {} failed: {}", quote.id, supplier.id, e.detail)
            results["errors"].append(
                {"supplier_id": supplier.id, "supplier_name": supplier.name, "error": e.public_message}
            )
            continue
        _record_sent_email(db, quote, supplier, user, data)
        results["sent"].append(
            {"supplier_id": supplier.id, "supplier_name": supplier.name, "message_id": data.get("messageId")}
        )

    if not results["sent"]:
        db.rollback()
        raise ExternalServiceError(
            f"no quote request email could be sent for quote {quote.id}",
            public_message="Failed to send quote request",
        )

    quote.status = QuoteStatus.SENT
    activity.log_quote_activity(
        db, user.id, quote, activity.QUOTE_SENT, "Quote request sent",
        f"Sent to {len(results['sent'])} supplier(s)",
        supplier_ids=[s["supplier_id"] for s in results["sent"]],
        failed=len(results["errors"]),
    )
    db.commit()

    link = thread_linker.sync_threads(db, quote)
    results["link"] = link
    if link["errors"]:
        thread_linker.start_thread_link_retries(quote.id, len(quote.supplier_ids))
        results["link_retry_scheduled"] = True
    logger.info(
        "Quote {} sent: {} ok, {} failed, {} awaiting thread link",
        quote.quote_number, len(results["sent"]), len(results["errors"]), len(link["errors"]),
    )
    return results
