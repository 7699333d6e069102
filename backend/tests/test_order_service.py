# Overview: Pytest coverage for the order workflow; totals, stock and lifecycle.

"""
Order Workflow Tests

Covers:
- Creation: totals, order numbers, stock reservation, credit gate
- DRAFT item edits keeping totals and the stock ledger in step
- Lifecycle transitions, including cancellation giving stock back
- A failed call leaving nothing but a *_FAILED audit event
"""

import re

import pytest

from o2c.errors import (
    CreditExceededError,
    InsufficientStockError,
    InvalidAmountError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from o2c.models import InventoryMovement, Order
from o2c.services import inventory_service, order_service, product_service
from o2c.time_utils import utcnow


class TestCreateOrder:
    def test_totals(self, db_session, draft_order):
        """2 x 100.00 + 1 x 250.00 at 10% tax."""
        assert draft_order.status == "DRAFT"
        assert draft_order.is_active
        assert draft_order.subtotal_cents == 45_000
        assert draft_order.tax_amount_cents == 4_500
        assert draft_order.total_amount_cents == 49_500
        assert [item.line_total_cents for item in draft_order.items] == [20_000, 25_000]
        assert order_service.validate_order(draft_order) == []

    def test_order_number_format(self, db_session, draft_order):
        assert draft_order.order_number == f"ORD-{utcnow().year}-001"
        assert re.match(r"^ORD-\d{4}-\d{3}$", draft_order.order_number)

    def test_order_numbers_increment(self, db_session, customer, widget, draft_order):
        second = order_service.create_order(
            customer_id=customer.id, items=[{"product_id": widget.id, "quantity": 1}]
        )
        assert second.order_number == f"ORD-{utcnow().year}-002"

    def test_stock_reserved(self, db_session, widget, gadget, draft_order):
        assert inventory_service.current_stock(widget.id) == 18
        assert inventory_service.current_stock(gadget.id) == 9

    def test_creation_audited(self, db_session, draft_order, audit_log):
        events = audit_log("ORDER_CREATED", draft_order.id)
        assert len(events) == 1
        assert events[0].severity == "MEDIUM"
        assert events[0].new_values["total_amount_cents"] == 49_500
        assert len(events[0].new_values["items"]) == 2

    def test_price_defaults_to_product_price(self, db_session, customer, gadget):
        order = order_service.create_order(
            customer_id=customer.id, items=[{"product_id": gadget.id, "quantity": 2}]
        )
        assert order.items[0].unit_price_cents == 25_000
        assert order.items[0].description == "Gadget"
        assert order.total_amount_cents == 50_000

    def test_shipping_is_added_to_total(self, db_session, customer, widget):
        order = order_service.create_order(
            customer_id=customer.id,
            items=[{"product_id": widget.id, "quantity": 1}],
            tax_rate_bps=1000,
            shipping_cost_cents=1_500,
        )
        assert order.total_amount_cents == 10_000 + 1_000 + 1_500

    def test_order_at_credit_limit(self, db_session, customer, widget):
        order = order_service.create_order(
            customer_id=customer.id, items=[{"product_id": widget.id, "quantity": 10}]
        )
        assert order.total_amount_cents == customer.credit_limit_cents

    def test_empty_items(self, db_session, customer):
        with pytest.raises(ValidationError):
            order_service.create_order(customer_id=customer.id, items=[])

    def test_missing_customer(self, db_session, widget):
        with pytest.raises(NotFoundError):
            order_service.create_order(customer_id=99999, items=[{"product_id": widget.id, "quantity": 1}])

    def test_inactive_product(self, db_session, customer, widget):
        product_service.deactivate_product(product_id=widget.id)
        with pytest.raises(NotFoundError):
            order_service.create_order(customer_id=customer.id, items=[{"product_id": widget.id, "quantity": 1}])

    def test_zero_total(self, db_session, customer, widget):
        with pytest.raises(InvalidAmountError):
            order_service.create_order(
                customer_id=customer.id,
                items=[{"product_id": widget.id, "quantity": 1, "discount_cents": 10_000}],
            )

    def test_bad_currency(self, db_session, customer, widget):
        with pytest.raises(ValidationError):
            order_service.create_order(
                customer_id=customer.id, items=[{"product_id": widget.id, "quantity": 1}], currency="DOLLARS"
            )


class TestCreateOrderFailures:
    def test_credit_exceeded_leaves_nothing_behind(self, db_session, customer, widget, audit_log):
        """11 x 100.00 against a 1,000.00 limit."""
        with pytest.raises(CreditExceededError):
            order_service.create_order(
                customer_id=customer.id,
                items=[{"product_id": widget.id, "quantity": 11}],
                actor_id="tester",
            )

        assert db_session.query(Order).count() == 0
        assert inventory_service.current_stock(widget.id) == 20

        failures = audit_log("ORDER_CREATE_FAILED")
        assert len(failures) == 1
        assert failures[0].severity == "HIGH"
        assert failures[0].actor_id == "tester"
        assert failures[0].details["error_type"] == "CreditExceeded"
        assert audit_log("ORDER_CREATED") == []

    def test_insufficient_stock_rolls_back(self, db_session, other_customer, widget, gadget):
        """A stock failure on the second item undoes the first item's reservation."""
        with pytest.raises(InsufficientStockError):
            order_service.create_order(
                customer_id=other_customer.id,
                items=[
                    {"product_id": widget.id, "quantity": 5},
                    {"product_id": gadget.id, "quantity": 11},
                ],
            )

        assert db_session.query(Order).count() == 0
        assert db_session.query(InventoryMovement).filter(InventoryMovement.order_id.isnot(None)).count() == 0
        assert inventory_service.current_stock(widget.id) == 20
        assert inventory_service.current_stock(gadget.id) == 10

    def test_failed_create_does_not_consume_order_number(self, db_session, other_customer, widget):
        with pytest.raises(InsufficientStockError):
            order_service.create_order(
                customer_id=other_customer.id, items=[{"product_id": widget.id, "quantity": 21}]
            )

        order = order_service.create_order(
            customer_id=other_customer.id, items=[{"product_id": widget.id, "quantity": 1}]
        )
        assert order.order_number == f"ORD-{utcnow().year}-001"


class TestOrderItems:
    def test_add_item(self, db_session, widget, draft_order, audit_log):
        item = order_service.add_item(
            order_id=draft_order.id, product_id=widget.id, quantity=1, actor_id="tester"
        )
        order = order_service.get_order(draft_order.id)

        assert item.line_total_cents == 10_000
        assert len(order.items) == 3
        assert order.subtotal_cents == 55_000
        assert order.tax_amount_cents == 5_500
        assert order.total_amount_cents == 60_500
        assert inventory_service.current_stock(widget.id) == 17
        assert order_service.validate_order(order) == []

        event = audit_log("ORDER_ITEM_ADDED", draft_order.id)[0]
        assert event.old_values["total_amount_cents"] == 49_500
        assert event.new_values["total_amount_cents"] == 60_500

    def test_add_item_without_stock(self, db_session, gadget, draft_order):
        with pytest.raises(InsufficientStockError):
            order_service.add_item(order_id=draft_order.id, product_id=gadget.id, quantity=10)

        order = order_service.get_order(draft_order.id)
        assert len(order.items) == 2
        assert order.total_amount_cents == 49_500
        assert inventory_service.current_stock(gadget.id) == 9

    def test_increase_quantity(self, db_session, widget, draft_order):
        widget_line = draft_order.items[0]
        order_service.update_item(order_id=draft_order.id, item_id=widget_line.id, quantity=5)

        order = order_service.get_order(draft_order.id)
        assert order.items[0].quantity == 5
        assert order.items[0].line_total_cents == 50_000
        assert order.subtotal_cents == 75_000
        assert order.total_amount_cents == 82_500
        assert inventory_service.current_stock(widget.id) == 15

    def test_decrease_quantity(self, db_session, widget, draft_order, audit_log):
        widget_line = draft_order.items[0]
        order_service.update_item(order_id=draft_order.id, item_id=widget_line.id, quantity=1)

        assert inventory_service.current_stock(widget.id) == 19
        assert order_service.get_order(draft_order.id).total_amount_cents == 38_500
        event = audit_log("ORDER_ITEM_UPDATED", draft_order.id)[0]
        assert event.details["quantity_delta"] == -1

    def test_update_price_and_discount(self, db_session, widget, draft_order):
        widget_line = draft_order.items[0]
        order_service.update_item(
            order_id=draft_order.id, item_id=widget_line.id, unit_price_cents=9_000, discount_cents=1_000
        )
        order = order_service.get_order(draft_order.id)
        assert order.items[0].line_total_cents == 17_000
        assert order.subtotal_cents == 42_000
        assert order.tax_amount_cents == 4_200
        assert inventory_service.current_stock(widget.id) == 18

    def test_discount_above_line_amount(self, db_session, draft_order):
        widget_line = draft_order.items[0]
        with pytest.raises(InvalidAmountError):
            order_service.update_item(order_id=draft_order.id, item_id=widget_line.id, discount_cents=20_001)
        assert order_service.get_order(draft_order.id).total_amount_cents == 49_500

    def test_remove_item(self, db_session, gadget, draft_order, audit_log):
        gadget_line = draft_order.items[1]
        order = order_service.remove_item(order_id=draft_order.id, item_id=gadget_line.id)

        assert len(order.items) == 1
        assert order.subtotal_cents == 20_000
        assert order.total_amount_cents == 22_000
        assert inventory_service.current_stock(gadget.id) == 10
        assert len(audit_log("ORDER_ITEM_REMOVED", draft_order.id)) == 1

    def test_unknown_item(self, db_session, draft_order):
        with pytest.raises(NotFoundError):
            order_service.remove_item(order_id=draft_order.id, item_id=99999)

    def test_items_locked_after_confirmation(self, db_session, widget, draft_order):
        order_service.confirm_order(draft_order.id)
        with pytest.raises(InvalidStateError):
            order_service.add_item(order_id=draft_order.id, product_id=widget.id, quantity=1)
        with pytest.raises(InvalidStateError):
            order_service.remove_item(order_id=draft_order.id, item_id=draft_order.items[0].id)


class TestOrderDetails:
    def test_update_details(self, db_session, draft_order, audit_log):
        order = order_service.update_order_details(
            order_id=draft_order.id, description="Q3 restock", notes="Leave at dock 4"
        )
        assert order.description == "Q3 restock"
        assert order.notes == "Leave at dock 4"
        assert audit_log("ORDER_UPDATED", draft_order.id)[0].severity == "LOW"

    def test_blank_description(self, db_session, draft_order):
        with pytest.raises(ValidationError):
            order_service.update_order_details(order_id=draft_order.id, description="   ")

    def test_details_locked_after_confirmation(self, db_session, draft_order):
        order_service.confirm_order(draft_order.id)
        with pytest.raises(InvalidStateError):
            order_service.update_order_details(order_id=draft_order.id, notes="late change")


class TestOrderLifecycle:
    def test_happy_path(self, db_session, draft_order):
        order = order_service.confirm_order(draft_order.id, actor_id="tester")
        assert order.status == "CONFIRMED"
        assert order.confirmed_at is not None

        order = order_service.ship_order(draft_order.id, tracking_number=" 1Z999 ", actor_id="tester")
        assert order.status == "SHIPPED"
        assert order.shipped_at is not None
        assert order.tracking_number == "1Z999"

        order = order_service.deliver_order(draft_order.id, actor_id="tester")
        assert order.status == "DELIVERED"
        assert order.delivered_at is not None

    def test_ship_before_confirm(self, db_session, widget, draft_order, audit_log):
        with pytest.raises(InvalidTransitionError):
            order_service.ship_order(draft_order.id)

        order = order_service.get_order(draft_order.id)
        assert order.status == "DRAFT"
        assert inventory_service.current_stock(widget.id) == 18
        failures = audit_log("ORDER_STATUS_UPDATE_FAILED", draft_order.id)
        assert len(failures) == 1
        assert failures[0].details["error_type"] == "InvalidTransition"

    def test_delivered_is_terminal(self, db_session, draft_order):
        order_service.confirm_order(draft_order.id)
        order_service.ship_order(draft_order.id)
        order_service.deliver_order(draft_order.id)
        with pytest.raises(InvalidStateError):
            order_service.cancel_order(draft_order.id)

    def test_unknown_status(self, db_session, draft_order):
        with pytest.raises(ValidationError):
            order_service.update_order_status(order_id=draft_order.id, status="ARCHIVED")

    def test_status_change_audited(self, db_session, draft_order, audit_log):
        order_service.confirm_order(draft_order.id, actor_id="tester")
        event = audit_log("ORDER_STATUS_CHANGED", draft_order.id)[0]
        assert event.old_values == {"status": "DRAFT"}
        assert event.new_values == {"status": "CONFIRMED"}
        assert event.severity == "MEDIUM"


class TestCancelOrder:
    def test_cancel_confirmed_order_restores_stock(self, db_session, widget, gadget, draft_order, audit_log):
        order_service.confirm_order(draft_order.id)
        order = order_service.cancel_order(draft_order.id, reason="Customer request", actor_id="tester")

        assert order.status == "CANCELLED"
        assert not order.is_active
        assert order.cancelled_at is not None
        assert order.cancellation_reason == "Customer request"
        assert inventory_service.current_stock(widget.id) == 20
        assert inventory_service.current_stock(gadget.id) == 10
        assert inventory_service.reserved_quantities_for_order(draft_order.id) == {}

        event = audit_log("ORDER_STATUS_CHANGED", draft_order.id)[-1]
        assert event.severity == "HIGH"
        assert event.details["inventory_restored"] is True

    def test_cancel_after_item_edits(self, db_session, widget, gadget, draft_order):
        """Stock comes back to where it started however the items changed."""
        added = order_service.add_item(order_id=draft_order.id, product_id=widget.id, quantity=3)
        order_service.update_item(order_id=draft_order.id, item_id=added.id, quantity=1)
        order_service.remove_item(order_id=draft_order.id, item_id=draft_order.items[1].id)

        order_service.cancel_order(draft_order.id)

        assert inventory_service.current_stock(widget.id) == 20
        assert inventory_service.current_stock(gadget.id) == 10

    def test_cancelled_is_terminal(self, db_session, draft_order):
        order_service.cancel_order(draft_order.id)
        with pytest.raises(InvalidTransitionError):
            order_service.confirm_order(draft_order.id)

    def test_shipped_order_can_not_be_cancelled(self, db_session, widget, draft_order):
        order_service.confirm_order(draft_order.id)
        order_service.ship_order(draft_order.id)
        with pytest.raises(InvalidTransitionError):
            order_service.cancel_order(draft_order.id)
        assert inventory_service.current_stock(widget.id) == 18


class TestOrderReads:
    def test_get_by_number(self, db_session, draft_order):
        assert order_service.get_order_by_number(draft_order.order_number).id == draft_order.id

    def test_list_orders_by_status(self, db_session, customer, widget, draft_order):
        other = order_service.create_order(customer_id=customer.id, items=[{"product_id": widget.id, "quantity": 1}])
        order_service.confirm_order(other.id)

        drafts = order_service.list_orders(status="DRAFT")
        assert [o["id"] for o in drafts["items"]] == [draft_order.id]

    def test_list_orders_sorting(self, db_session, customer, widget, draft_order):
        order_service.create_order(customer_id=customer.id, items=[{"product_id": widget.id, "quantity": 1}])

        by_total = order_service.list_orders(sort_by="total_amount_cents", sort_order="asc")
        assert [o["total_amount_cents"] for o in by_total["items"]] == [10_000, 49_500]

        # Unknown sort columns fall back to created_at
        fallback = order_service.list_orders(sort_by="customer_id; DROP TABLE orders")
        assert fallback["count"] == 2

    def test_validate_order_reports_problems(self, db_session):
        problems = order_service.validate_order(Order())
        assert "Order description is required" in problems
        assert "Customer is required" in problems
        assert "Total amount must be greater than zero" in problems
        assert "Order must have at least one item" in problems

    def test_validate_order_catches_line_mismatch(self, db_session, draft_order):
        draft_order.items[0].line_total_cents = 1
        problems = order_service.validate_order(draft_order)
        db_session.rollback()

        assert any(p.startswith("Item 1: line total") for p in problems)
        assert any(p.startswith("Order total") for p in problems)
