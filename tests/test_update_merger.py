"""
test_update_merger.py — Tests for app/services/update_merger.py

Covers the order status no-downgrade rule over every status pair, the
absorbing CANCELLED status, field-level change counting, item updates
with unknown ids, and the audit entry written only when something changed.

Called by: pytest
Depends on: app/services/update_merger.py, conftest.py
"""

import itertools

import pytest

from app.models import ActivityLog
from app.models.enums import ItemAvailability, OrderStatus
from app.schemas.webhooks import ParseServiceResponse
from app.services import activity_service as activity
from app.services.update_merger import (
    apply_parse_response,
    merge_order_status,
    merge_order_updates,
    merge_response,
)
from factories import make_order, utc


def _response(order_updates=None, item_updates=None) -> ParseServiceResponse:
    return ParseServiceResponse.model_validate(
        {"success": True, "orderUpdates": order_updates, "itemUpdates": item_updates or []}
    )


@pytest.fixture()
def order(db_session, test_org, suppliers):
    o = make_order(db_session, test_org, suppliers[0], parts=("BRK-100", "BRK-200"))
    db_session.commit()
    return o


# ── Status ordering ─────────────────────────────────────────────────


class TestMergeOrderStatus:
    def test_never_moves_backwards(self):
        for current, candidate in itertools.product(OrderStatus, repeat=2):
            merged = merge_order_status(current, candidate)
            assert merged.rank >= current.rank, (current, candidate, merged)

    @pytest.mark.parametrize("candidate", list(OrderStatus))
    def test_cancelled_is_absorbing(self, candidate):
        assert merge_order_status(OrderStatus.CANCELLED, candidate) == OrderStatus.CANCELLED

    @pytest.mark.parametrize("current", list(OrderStatus))
    def test_cancelled_always_applies(self, current):
        assert merge_order_status(current, OrderStatus.CANCELLED) == OrderStatus.CANCELLED

    def test_processing_ignores_pending(self):
        assert merge_order_status(OrderStatus.PROCESSING, OrderStatus.PENDING) == OrderStatus.PROCESSING

    def test_higher_status_applies(self):
        assert merge_order_status(OrderStatus.PROCESSING, OrderStatus.IN_TRANSIT) == OrderStatus.IN_TRANSIT

    def test_missing_candidate_keeps_current(self):
        assert merge_order_status(OrderStatus.IN_TRANSIT, None) == OrderStatus.IN_TRANSIT


# ── Field merge ─────────────────────────────────────────────────────


class TestMergeOrderUpdates:
    def test_tracking_and_carrier_taken(self, order):
        changed = merge_order_updates(
            order, _response({"trackingNumber": "1Z999", "shippingCarrier": "UPS"}).order_updates
        )
        assert changed == ["tracking_number", "shipping_carrier"]
        assert order.tracking_number == "1Z999"
        assert order.shipping_carrier == "UPS"

    def test_blank_values_are_ignored(self, order):
        order.tracking_number = "1Z999"
        changed = merge_order_updates(order, _response({"trackingNumber": "", "status": ""}).order_updates)
        assert changed == []
        assert order.tracking_number == "1Z999"

    def test_same_value_is_not_counted(self, order):
        order.tracking_number = "1Z999"
        assert merge_order_updates(order, _response({"trackingNumber": "1Z999"}).order_updates) == []

    def test_naive_expected_delivery_is_utc(self, order):
        changed = merge_order_updates(order, _response({"expectedDelivery": "2026-03-10T08:00:00"}).order_updates)
        assert changed == ["expected_delivery"]
        assert order.expected_delivery == utc(2026, 3, 10, 8, 0)

    def test_status_downgrade_not_counted(self, order):
        changed = merge_order_updates(order, _response({"status": "pending"}).order_updates)
        assert changed == []
        assert order.status == OrderStatus.PROCESSING

    def test_none_updates(self, order):
        assert merge_order_updates(order, None) == []


class TestMergeResponse:
    def test_item_updates_apply_independently(self, order):
        first, second = order.items
        result = merge_response(
            order,
            _response(
                item_updates=[
                    {"id": first.id, "availability": "BACKORDERED", "trackingNumber": "TRK-1"},
                    {"id": 99999, "availability": "IN_STOCK"},
                    {"id": second.id, "actualDelivery": "2026-03-05T10:00:00Z"},
                ]
            ),
        )
        assert result.skipped_items == [99999]
        assert result.item_fields == {
            first.id: ["availability", "tracking_number"],
            second.id: ["actual_delivery"],
        }
        assert result.count == 3
        assert first.availability == ItemAvailability.BACKORDERED
        assert second.actual_delivery == utc(2026, 3, 5, 10, 0)

    def test_unknown_status_and_availability_are_dropped(self, order):
        first = order.items[0]
        response = _response(
            order_updates={"trackingNumber": "1Z999", "status": "SHIPPED"},
            item_updates=[{"id": first.id, "availability": "on the truck", "trackingNumber": "TRK-9"}],
        )
        assert response.order_updates.status is None
        assert response.item_updates[0].availability is None

        result = merge_response(order, response)

        assert order.tracking_number == "1Z999"
        assert order.status == OrderStatus.PROCESSING
        assert result.item_fields == {first.id: ["tracking_number"]}

    def test_loosely_spelled_status_is_recognised(self):
        response = _response(order_updates={"status": "in transit"}, item_updates=[{"id": 1, "availability": "in-stock"}])
        assert response.order_updates.status == OrderStatus.IN_TRANSIT
        assert response.item_updates[0].availability == ItemAvailability.IN_STOCK

    def test_empty_response_counts_zero(self, order):
        assert merge_response(order, _response()).count == 0


# ── Persistence / audit ─────────────────────────────────────────────


class TestApplyParseResponse:
    def test_changes_are_committed_and_audited(self, db_session, order):
        result = apply_parse_response(
            db_session, order, _response({"status": "IN_TRANSIT", "trackingNumber": "1Z999"}), user_id=None
        )
        assert result.count == 2
        assert order.status == OrderStatus.IN_TRANSIT

        entries = db_session.query(ActivityLog).filter_by(entity_type="order", entity_id=order.id).all()
        assert len(entries) == 1
        assert entries[0].activity_type == activity.ORDER_TRACKING_UPDATED
        assert entries[0].details["update_count"] == 2
        assert entries[0].details["source"] == "manual_sync"

    def test_reapplying_same_response_counts_zero(self, db_session, order):
        response = _response({"status": "IN_TRANSIT", "trackingNumber": "1Z999"})
        apply_parse_response(db_session, order, response)
        again = apply_parse_response(db_session, order, response)

        assert again.count == 0
        assert db_session.query(ActivityLog).filter_by(entity_id=order.id).count() == 1

    def test_zero_changes_write_no_activity(self, db_session, order):
        result = apply_parse_response(db_session, order, _response({"status": "PENDING"}))
        assert result.count == 0
        assert db_session.query(ActivityLog).count() == 0

    def test_cancelled_order_ignores_delivered(self, db_session, test_org, suppliers):
        cancelled = make_order(db_session, test_org, suppliers[1], status=OrderStatus.CANCELLED)
        db_session.commit()
        result = apply_parse_response(db_session, cancelled, _response({"status": "DELIVERED"}))
        assert result.count == 0
        assert cancelled.status == OrderStatus.CANCELLED
