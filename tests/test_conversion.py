"""
test_conversion.py — Tests for app/services/conversion.py

Covers the accept → order saga (happy path, eligibility, the conditional
APPROVED write under a concurrent change, compensation after a failure
before and after the order exists, both rollback strategies), supplier
rejection and its cascade, reopening into a new negotiation round,
adding suppliers, and sending quote requests with per-supplier failures.

The confirmation email and thread-link retries are patched out; they are
covered in test_order_service.py and test_thread_linker.py.

Called by: pytest
Depends on: app/services/conversion.py, conftest.py
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import update

from app.config import settings
from app.errors import (
    AuthorizationDenied,
    Conflict,
    ExternalServiceError,
    NotFound,
    ProcurementError,
    ValidationFailed,
)
from app.models import (
    ActivityLog,
    EmailMessage,
    Order,
    QuoteRequest,
    QuoteRequestItem,
    Supplier,
    SupplierThread,
)
from app.models.enums import FulfillmentMethod, OrderStatus, QuoteStatus, ThreadStatus
from app.services import activity_service as activity
from app.services.conversion import (
    Saga,
    accept_quote,
    add_supplier,
    reject_quote,
    reopen_quote,
    send_quote_request,
    summarize_acceptance,
)
from app.services.order_service import send_order_confirmation
from app.services.status_deriver import recompute_quote_status
from factories import add_inbound

_PATCH_SPAWN = "app.services.conversion.spawn"
_PATCH_CREATE_ORDER = "app.services.conversion.create_order_from_quote"
_PATCH_GENERATE = "app.services.conversion.parsing_client.generate_quote_request_email"
_PATCH_RETRIES = "app.services.conversion.thread_linker.start_thread_link_retries"


@pytest.fixture(autouse=True)
def mock_spawn():
    with patch(_PATCH_SPAWN) as m:
        yield m


def _activity_types(db, quote) -> list[str]:
    rows = (
        db.query(ActivityLog)
        .filter_by(entity_type="quote_request", entity_id=quote.id)
        .order_by(ActivityLog.id)
        .all()
    )
    return [r.activity_type for r in rows]


@pytest.fixture()
def reviewed_quote(db_session, sent_quote):
    """sent_quote after supplier A replied: UNDER_REVIEW."""
    quote, (thread_a, _), _ = sent_quote
    add_inbound(db_session, thread_a)
    db_session.commit()
    recompute_quote_status(db_session, quote)
    return sent_quote


@pytest.fixture()
def received_quote(db_session, sent_quote):
    """RECEIVED with A=NO_RESPONSE, B=SENT; the deriver keeps RECEIVED."""
    quote, (_, st_a), (_, st_b) = sent_quote
    quote.status = QuoteStatus.RECEIVED
    st_a.status = ThreadStatus.NO_RESPONSE
    db_session.commit()
    return sent_quote


# ── Accept ──────────────────────────────────────────────────────────


class TestAcceptQuote:
    @pytest.mark.asyncio
    async def test_two_supplier_scenario(self, db_session, reviewed_quote, suppliers, test_user, mock_spawn):
        quote, (thread_a, st_a), (_, st_b) = reviewed_quote
        a, _ = suppliers
        assert quote.status == QuoteStatus.UNDER_REVIEW

        order = await accept_quote(
            db_session, quote.id, supplier_id=a.id, thread_id=thread_a.id, user=test_user,
            fulfillment_method=FulfillmentMethod.PICKUP,
        )

        assert st_a.status == ThreadStatus.ACCEPTED
        assert st_b.status == ThreadStatus.NOT_SELECTED
        assert quote.status == QuoteStatus.CONVERTED_TO_ORDER
        assert quote.selected_supplier_id == a.id

        assert db_session.query(Order).count() == 1
        assert order.status == OrderStatus.PROCESSING
        assert order.supplier_id == a.id
        assert order.email_thread_id == thread_a.id
        assert order.fulfillment_method == FulfillmentMethod.PICKUP
        assert sorted(i.part_number for i in order.items) == ["BRK-100", "BRK-200"]
        assert order.subtotal == Decimal("125")
        assert order.total == order.subtotal

        assert _activity_types(db_session, quote)[-1] == activity.QUOTE_ACCEPTED
        assert db_session.query(ActivityLog).filter_by(
            entity_type="order", entity_id=order.id, activity_type=activity.ORDER_CREATED
        ).count() == 1

        mock_spawn.assert_called_once()
        assert mock_spawn.call_args.args[:4] == (
            "order_confirmation", send_order_confirmation, order.id, test_user.id,
        )

    @pytest.mark.asyncio
    async def test_only_accepted_supplier_items_copied(self, db_session, reviewed_quote, suppliers, test_user):
        quote, _, (thread_b, _) = reviewed_quote
        _, b = suppliers
        add_inbound(db_session, thread_b, sender="quotes@bravosupply.com")
        db_session.commit()

        order = await accept_quote(db_session, quote.id, supplier_id=b.id, thread_id=thread_b.id, user=test_user)
        assert [i.part_number for i in order.items] == ["BRK-100"]
        assert order.subtotal == Decimal("120")

    @pytest.mark.asyncio
    async def test_not_awaiting_decision_is_conflict(self, db_session, sent_quote, suppliers, test_user):
        quote, (thread_a, st_a), _ = sent_quote
        with pytest.raises(Conflict):
            await accept_quote(
                db_session, quote.id, supplier_id=suppliers[0].id, thread_id=thread_a.id, user=test_user
            )
        assert quote.status == QuoteStatus.SENT
        assert st_a.status == ThreadStatus.SENT
        assert db_session.query(Order).count() == 0

    @pytest.mark.asyncio
    async def test_second_accept_is_conflict(self, db_session, reviewed_quote, suppliers, test_user):
        quote, (thread_a, _), _ = reviewed_quote
        a, _ = suppliers
        await accept_quote(db_session, quote.id, supplier_id=a.id, thread_id=thread_a.id, user=test_user)
        with pytest.raises(Conflict):
            await accept_quote(db_session, quote.id, supplier_id=a.id, thread_id=thread_a.id, user=test_user)
        assert db_session.query(Order).count() == 1

    @pytest.mark.asyncio
    async def test_accept_in_flight_blocks_other_supplier(self, db_session, reviewed_quote, suppliers, test_user):
        quote, _, (thread_b, st_b) = reviewed_quote
        a, b = suppliers
        add_inbound(db_session, thread_b, sender="quotes@bravosupply.com")
        # Supplier A's accept has written APPROVED but not yet its threads
        quote.status = QuoteStatus.APPROVED
        quote.selected_supplier_id = a.id
        db_session.commit()

        with pytest.raises(Conflict):
            await accept_quote(db_session, quote.id, supplier_id=b.id, thread_id=thread_b.id, user=test_user)

        assert db_session.query(Order).count() == 0
        assert quote.status == QuoteStatus.APPROVED
        assert quote.selected_supplier_id == a.id
        assert st_b.status != ThreadStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_concurrent_status_change_rejected_by_conditional_write(
        self, db_session, reviewed_quote, suppliers, test_user
    ):
        quote, (thread_a, st_a), (_, st_b) = reviewed_quote

        def racing_recompute(db, q, **kwargs):
            # Another request converts the quote between the read and the write
            db.execute(
                update(QuoteRequest)
                .where(QuoteRequest.id == q.id)
                .values(status=QuoteStatus.CONVERTED_TO_ORDER)
            )
            db.commit()
            return QuoteStatus.UNDER_REVIEW

        with patch("app.services.conversion.recompute_quote_status", side_effect=racing_recompute):
            with pytest.raises(Conflict):
                await accept_quote(
                    db_session, quote.id, supplier_id=suppliers[0].id, thread_id=thread_a.id, user=test_user
                )

        assert db_session.query(Order).count() == 0
        assert st_a.status != ThreadStatus.ACCEPTED
        assert st_b.status == ThreadStatus.SENT

    @pytest.mark.asyncio
    async def test_thread_of_other_supplier_is_validation_error(self, db_session, reviewed_quote, suppliers, test_user):
        quote, (thread_a, _), _ = reviewed_quote
        with pytest.raises(ValidationFailed):
            await accept_quote(
                db_session, quote.id, supplier_id=suppliers[1].id, thread_id=thread_a.id, user=test_user
            )
        assert quote.status == QuoteStatus.UNDER_REVIEW

    @pytest.mark.asyncio
    async def test_earlier_round_thread_is_conflict(self, db_session, reviewed_quote, suppliers, test_user):
        quote, (thread_a, _), _ = reviewed_quote
        quote.negotiation_round = 2
        db_session.commit()
        with pytest.raises(Conflict):
            await accept_quote(
                db_session, quote.id, supplier_id=suppliers[0].id, thread_id=thread_a.id, user=test_user
            )

    @pytest.mark.asyncio
    async def test_other_organization_denied(self, db_session, reviewed_quote, suppliers, outsider):
        quote, (thread_a, _), _ = reviewed_quote
        with pytest.raises(AuthorizationDenied):
            await accept_quote(db_session, quote.id, supplier_id=suppliers[0].id, thread_id=thread_a.id, user=outsider)

    @pytest.mark.asyncio
    async def test_unknown_quote(self, db_session, test_user):
        with pytest.raises(NotFound):
            await accept_quote(db_session, 9999, supplier_id=1, thread_id=1, user=test_user)


# ── Compensation ────────────────────────────────────────────────────


class TestAcceptCompensation:
    @pytest.mark.asyncio
    async def test_failure_at_order_creation_restores_pre_attempt_state(
        self, db_session, received_quote, suppliers, test_user, mock_spawn
    ):
        quote, (_, st_a), (thread_b, st_b) = received_quote
        before = (quote.status, st_a.status, st_b.status)

        with patch(_PATCH_CREATE_ORDER, side_effect=RuntimeError("order table locked")):
            with pytest.raises(ProcurementError) as exc:
                await accept_quote(
                    db_session, quote.id, supplier_id=suppliers[1].id, thread_id=thread_b.id, user=test_user
                )

        assert exc.value.public_message == "Failed to convert quote to order"
        db_session.expire_all()
        assert (quote.status, st_a.status, st_b.status) == before
        assert quote.selected_supplier_id is None
        assert db_session.query(Order).count() == 0
        assert _activity_types(db_session, quote)[-1] == activity.QUOTE_ACCEPT_FAILED
        mock_spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_after_order_creation_voids_order(self, db_session, reviewed_quote, suppliers, test_user):
        quote, (thread_a, st_a), (_, st_b) = reviewed_quote
        real_log = activity.log_quote_activity

        def flaky_log(db, user_id, q, activity_type, *args, **kwargs):
            if activity_type == activity.QUOTE_ACCEPTED:
                raise RuntimeError("audit store unavailable")
            return real_log(db, user_id, q, activity_type, *args, **kwargs)

        with patch("app.services.conversion.activity.log_quote_activity", side_effect=flaky_log):
            with pytest.raises(ProcurementError):
                await accept_quote(
                    db_session, quote.id, supplier_id=suppliers[0].id, thread_id=thread_a.id, user=test_user
                )

        db_session.expire_all()
        order = db_session.query(Order).one()
        assert order.status == OrderStatus.CANCELLED
        assert "Voided:" in order.notes
        assert quote.status == QuoteStatus.UNDER_REVIEW
        assert st_a.status == ThreadStatus.RESPONDED
        assert st_b.status == ThreadStatus.SENT
        assert db_session.query(ActivityLog).filter_by(
            entity_type="order", entity_id=order.id, activity_type=activity.ORDER_VOIDED
        ).count() == 1
        failed = db_session.query(ActivityLog).filter_by(activity_type=activity.QUOTE_ACCEPT_FAILED).one()
        assert failed.details["voided_order_id"] == order.id

    @pytest.mark.asyncio
    async def test_domain_error_is_reraised_unchanged(self, db_session, reviewed_quote, suppliers, test_user):
        quote, (thread_a, _), _ = reviewed_quote
        with patch(_PATCH_CREATE_ORDER, side_effect=ExternalServiceError("n8n down")):
            with pytest.raises(ExternalServiceError):
                await accept_quote(
                    db_session, quote.id, supplier_id=suppliers[0].id, thread_id=thread_a.id, user=test_user
                )
        db_session.expire_all()
        assert quote.status == QuoteStatus.UNDER_REVIEW

    @pytest.mark.asyncio
    async def test_legacy_strategy_resets_to_review_state(self, db_session, received_quote, suppliers, test_user):
        quote, (_, st_a), (thread_b, st_b) = received_quote
        with patch.object(settings, "accept_rollback_strategy", "legacy"):
            with patch(_PATCH_CREATE_ORDER, side_effect=RuntimeError("boom")):
                with pytest.raises(ProcurementError):
                    await accept_quote(
                        db_session, quote.id, supplier_id=suppliers[1].id, thread_id=thread_b.id, user=test_user
                    )

        db_session.expire_all()
        assert quote.status == QuoteStatus.UNDER_REVIEW
        assert st_a.status == ThreadStatus.RESPONDED
        assert st_b.status == ThreadStatus.RESPONDED


class TestSaga:
    def test_compensates_newest_first(self):
        calls = []
        saga = Saga("test")
        saga.register("first", lambda: calls.append("first"))
        saga.register("second", lambda: calls.append("second"))
        assert saga.compensate() == []
        assert calls == ["second", "first"]

    def test_failed_undo_does_not_stop_the_rest(self):
        calls = []
        saga = Saga("test")
        saga.register("first", lambda: calls.append("first"))
        saga.register("broken", MagicMock(side_effect=RuntimeError("nope")))
        assert saga.compensate() == ["broken"]
        assert calls == ["first"]


class TestAcceptSummary:
    def test_summary_of_supplier_quote(self, db_session, sent_quote, suppliers):
        quote, (thread_a, _), _ = sent_quote
        summary = summarize_acceptance(db_session, quote, suppliers[0].id, thread_a.id).to_dict()
        assert summary["supplier"]["name"] == "Alpha Parts"
        assert summary["quoted_total"] == 125.0
        assert [i["part_number"] for i in summary["items"]] == ["BRK-100", "BRK-200"]
        assert summary["other_suppliers_count"] == 1


# ── Reject / reopen ─────────────────────────────────────────────────


class TestRejectQuote:
    def test_reject_one_keeps_waiting_on_the_other(self, db_session, sent_quote, suppliers, test_user):
        quote, (thread_a, st_a), _ = sent_quote
        status = reject_quote(
            db_session, quote.id, supplier_id=suppliers[0].id, thread_id=thread_a.id, user=test_user, reason="Too slow"
        )
        assert st_a.status == ThreadStatus.REJECTED
        assert status == QuoteStatus.SENT
        assert _activity_types(db_session, quote) == [activity.QUOTE_REJECTED]

    def test_rejecting_every_supplier_rejects_the_quote(self, db_session, sent_quote, suppliers, test_user):
        quote, (thread_a, _), (thread_b, _) = sent_quote
        a, b = suppliers
        reject_quote(db_session, quote.id, supplier_id=a.id, thread_id=thread_a.id, user=test_user)
        status = reject_quote(db_session, quote.id, supplier_id=b.id, thread_id=thread_b.id, user=test_user)
        assert status == QuoteStatus.REJECTED
        assert quote.status == QuoteStatus.REJECTED

    def test_reply_from_the_other_supplier_means_review(self, db_session, sent_quote, suppliers, test_user):
        quote, (thread_a, _), (thread_b, _) = sent_quote
        add_inbound(db_session, thread_b, sender="quotes@bravosupply.com")
        db_session.commit()
        status = reject_quote(db_session, quote.id, supplier_id=suppliers[0].id, thread_id=thread_a.id, user=test_user)
        assert status == QuoteStatus.UNDER_REVIEW

    def test_accepted_thread_cannot_be_rejected(self, db_session, sent_quote, suppliers, test_user):
        quote, (thread_a, st_a), _ = sent_quote
        st_a.status = ThreadStatus.ACCEPTED
        db_session.commit()
        with pytest.raises(Conflict):
            reject_quote(db_session, quote.id, supplier_id=suppliers[0].id, thread_id=thread_a.id, user=test_user)

    def test_earlier_round_thread_is_left_alone(self, db_session, sent_quote, suppliers, test_user):
        quote, (thread_a, st_a), _ = sent_quote
        st_a.status = ThreadStatus.NOT_SELECTED
        quote.negotiation_round = 2
        db_session.commit()
        with pytest.raises(Conflict):
            reject_quote(db_session, quote.id, supplier_id=suppliers[0].id, thread_id=thread_a.id, user=test_user)
        assert st_a.status == ThreadStatus.NOT_SELECTED
        assert _activity_types(db_session, quote) == []

    def test_converted_quote_cannot_be_changed(self, db_session, sent_quote, suppliers, test_user):
        quote, (thread_a, st_a), _ = sent_quote
        quote.status = QuoteStatus.CONVERTED_TO_ORDER
        db_session.commit()
        with pytest.raises(Conflict):
            reject_quote(db_session, quote.id, supplier_id=suppliers[0].id, thread_id=thread_a.id, user=test_user)
        assert st_a.status == ThreadStatus.SENT


class TestReopenQuote:
    def test_reopen_starts_next_round(self, db_session, sent_quote, test_user):
        quote, (_, st_a), (_, st_b) = sent_quote
        st_a.status = ThreadStatus.REJECTED
        st_b.status = ThreadStatus.NOT_SELECTED
        quote.status = QuoteStatus.REJECTED
        db_session.commit()

        reopened = reopen_quote(db_session, quote.id, test_user)

        assert reopened.status == QuoteStatus.SENT
        assert reopened.negotiation_round == 2
        assert st_a.status == ThreadStatus.REJECTED
        assert st_b.status == ThreadStatus.NOT_SELECTED
        assert recompute_quote_status(db_session, quote) == QuoteStatus.SENT
        assert _activity_types(db_session, quote) == [activity.QUOTE_REOPENED]

    def test_reopen_expired(self, db_session, sent_quote, test_user):
        quote = sent_quote[0]
        quote.status = QuoteStatus.EXPIRED
        db_session.commit()
        assert reopen_quote(db_session, quote.id, test_user).status == QuoteStatus.SENT

    @pytest.mark.parametrize("status", [QuoteStatus.SENT, QuoteStatus.UNDER_REVIEW, QuoteStatus.CONVERTED_TO_ORDER])
    def test_only_rejected_or_expired(self, db_session, sent_quote, test_user, status):
        quote = sent_quote[0]
        quote.status = status
        db_session.commit()
        with pytest.raises(Conflict):
            reopen_quote(db_session, quote.id, test_user)
        assert quote.negotiation_round == 1


# ── Suppliers / sending ─────────────────────────────────────────────


@pytest.fixture()
def draft_quote(db_session, test_org, test_user, suppliers):
    a, b = suppliers
    quote = QuoteRequest(
        organization_id=test_org.id,
        quote_number="QR-2026-0002",
        title="Filters",
        status=QuoteStatus.DRAFT,
        supplier_id=a.id,
        additional_supplier_ids=[b.id],
        created_by_id=test_user.id,
    )
    db_session.add(quote)
    db_session.flush()
    db_session.add(QuoteRequestItem(quote_request_id=quote.id, part_number="FLT-9", quantity=6))
    db_session.commit()
    return quote


@pytest.fixture()
def carol(db_session, test_org):
    s = Supplier(organization_id=test_org.id, name="Carol Components", email="carol@components.example")
    db_session.add(s)
    db_session.commit()
    return s


def _generated(payload):
    email = payload["supplier"]["email"]
    return {
        "threadId": f"n8n-{payload['quoteRequestId']}-{payload['supplierId']}",
        "messageId": f"msg-{payload['supplierId']}",
        "emailContent": {"subject": f"Quote request {payload['quoteNumber']}", "body": f"Hello {email}"},
    }


class TestSendQuoteRequest:
    @pytest.mark.asyncio
    async def test_sends_to_every_supplier_and_links_threads(self, db_session, draft_quote, suppliers, test_user):
        with patch(_PATCH_GENERATE, new_callable=AsyncMock, side_effect=_generated) as mock_gen, \
                patch(_PATCH_RETRIES) as mock_retries:
            result = await send_quote_request(db_session, draft_quote.id, test_user)

        assert mock_gen.await_count == 2
        assert {s["supplier_name"] for s in result["sent"]} == {"Alpha Parts", "Bravo Supply"}
        assert result["errors"] == []
        assert len(result["link"]["linked"]) == 2
        mock_retries.assert_not_called()

        assert draft_quote.status == QuoteStatus.SENT
        threads = db_session.query(SupplierThread).filter_by(quote_request_id=draft_quote.id).all()
        assert {t.supplier_id for t in threads} == {s.id for s in suppliers}
        assert all(t.status == ThreadStatus.SENT for t in threads)
        copies = db_session.query(QuoteRequestItem).filter(
            QuoteRequestItem.quote_request_id == draft_quote.id, QuoteRequestItem.supplier_id.isnot(None)
        ).all()
        assert sorted((c.supplier_id, c.part_number, c.quantity) for c in copies) == sorted(
            (s.id, "FLT-9", 6) for s in suppliers
        )
        assert _activity_types(db_session, draft_quote) == [activity.QUOTE_SENT]

    @pytest.mark.asyncio
    async def test_one_supplier_failing_does_not_stop_the_other(self, db_session, draft_quote, suppliers, test_user):
        _, b = suppliers

        def half_broken(payload):
            if payload["supplierId"] == b.id:
                raise ExternalServiceError("quote_request webhook returned 500")
            return _generated(payload)

        with patch(_PATCH_GENERATE, new_callable=AsyncMock, side_effect=half_broken), \
                patch(_PATCH_RETRIES) as mock_retries:
            result = await send_quote_request(db_session, draft_quote.id, test_user)

        assert [s["supplier_id"] for s in result["sent"]] == [suppliers[0].id]
        assert result["errors"][0]["supplier_id"] == b.id
        assert result["errors"][0]["error"] == "External service failed"
        assert result["link_retry_scheduled"] is True
        mock_retries.assert_called_once_with(draft_quote.id, 2)
        assert draft_quote.status == QuoteStatus.SENT

    @pytest.mark.asyncio
    async def test_all_failing_leaves_draft(self, db_session, draft_quote, test_user):
        with patch(_PATCH_GENERATE, new_callable=AsyncMock, side_effect=ExternalServiceError("down")):
            with pytest.raises(ExternalServiceError) as exc:
                await send_quote_request(db_session, draft_quote.id, test_user)
        assert exc.value.public_message == "Failed to send quote request"
        db_session.expire_all()
        assert draft_quote.status == QuoteStatus.DRAFT
        assert db_session.query(EmailMessage).count() == 0

    @pytest.mark.asyncio
    async def test_supplier_without_email_is_reported(self, db_session, draft_quote, suppliers, test_user):
        suppliers[1].email = None
        db_session.commit()
        with patch(_PATCH_GENERATE, new_callable=AsyncMock, side_effect=_generated), patch(_PATCH_RETRIES):
            result = await send_quote_request(db_session, draft_quote.id, test_user)
        assert result["errors"] == [
            {
                "supplier_id": suppliers[1].id,
                "supplier_name": "Bravo Supply",
                "error": "Supplier does not have an email address",
            }
        ]

    @pytest.mark.asyncio
    async def test_already_sent_to_everyone_is_conflict(self, db_session, sent_quote, test_user):
        with pytest.raises(Conflict):
            await send_quote_request(db_session, sent_quote[0].id, test_user)


class TestAddSupplier:
    @pytest.mark.asyncio
    async def test_add_to_draft(self, db_session, test_user, suppliers, carol, draft_quote):
        assert await add_supplier(db_session, draft_quote.id, carol.id, test_user) is None
        assert draft_quote.supplier_ids == [suppliers[0].id, suppliers[1].id, carol.id]
        assert _activity_types(db_session, draft_quote) == [activity.SUPPLIER_ADDED]

    @pytest.mark.asyncio
    async def test_duplicate_on_draft_is_conflict(self, db_session, test_user, suppliers, draft_quote):
        with pytest.raises(Conflict):
            await add_supplier(db_session, draft_quote.id, suppliers[1].id, test_user)

    @pytest.mark.asyncio
    async def test_add_to_sent_quote_sends_right_away(self, db_session, sent_quote, test_user, carol):
        quote = sent_quote[0]
        with patch("app.services.conversion.send_quote_request", new_callable=AsyncMock,
                   return_value={"sent": [{"supplier_id": carol.id}], "errors": []}) as mock_send:
            result = await add_supplier(db_session, quote.id, carol.id, test_user)
        mock_send.assert_awaited_once_with(db_session, quote.id, test_user, supplier_ids=[carol.id])
        assert result["sent"][0]["supplier_id"] == carol.id
        assert carol.id in quote.supplier_ids

    @pytest.mark.asyncio
    async def test_supplier_already_in_round_is_conflict(self, db_session, sent_quote, suppliers, test_user):
        with pytest.raises(Conflict):
            await add_supplier(db_session, sent_quote[0].id, suppliers[0].id, test_user)

    @pytest.mark.asyncio
    async def test_other_organization_supplier_not_found(self, db_session, draft_quote, other_org, test_user):
        foreign = Supplier(organization_id=other_org.id, name="Elsewhere", email="x@elsewhere.example")
        db_session.add(foreign)
        db_session.commit()
        with pytest.raises(NotFound):
            await add_supplier(db_session, draft_quote.id, foreign.id, test_user)

    @pytest.mark.asyncio
    async def test_not_on_decided_quote(self, db_session, sent_quote, carol, test_user):
        quote = sent_quote[0]
        quote.status = QuoteStatus.UNDER_REVIEW
        db_session.commit()
        with pytest.raises(Conflict):
            await add_supplier(db_session, quote.id, carol.id, test_user)
