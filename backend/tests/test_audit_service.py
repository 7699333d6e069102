# Overview: Pytest coverage for the audit trail; redaction, failure events and retention.

from datetime import datetime, timedelta

import pytest
from flask import g

from o2c.errors import CreditExceededError
from o2c.models import AuditEvent
from o2c.services import audit_service, maintenance_service, order_service, product_service
from o2c.time_utils import utcnow


class TestRedaction:
    def test_sensitive_keys_redacted(self):
        values = {
            "password": "hunter2",
            "name": "Acme",
            "nested": {
                "apiKey": "k-1",
                "rows": [{"token": "t-1"}, {"qty": 2}],
            },
        }
        assert audit_service.redact(values) == {
            "password": "[REDACTED]",
            "name": "Acme",
            "nested": {
                "apiKey": "[REDACTED]",
                "rows": [{"token": "[REDACTED]"}, {"qty": 2}],
            },
        }

    def test_matching_is_case_insensitive_substring(self):
        redacted = audit_service.redact({"CreditCardNumber": "4111", "customer_ssn": "123"})
        assert redacted == {"CreditCardNumber": "[REDACTED]", "customer_ssn": "[REDACTED]"}

    def test_empty_values_kept(self):
        assert audit_service.redact({"secret": "", "token": None}) == {"secret": "", "token": None}

    def test_input_not_mutated(self):
        values = {"password": "hunter2"}
        audit_service.redact(values)
        assert values == {"password": "hunter2"}

    def test_datetimes_serialized(self):
        assert audit_service.redact({"due_date": datetime(2026, 1, 2, 3, 4, 5)}) == {
            "due_date": "2026-01-02T03:04:05Z"
        }

    def test_none(self):
        assert audit_service.redact(None) is None


class TestRecordEvent:
    def test_events_carry_actor_and_correlation_id(self, db_session, audit_log):
        g.correlation_id = "req-42"
        product = product_service.create_product(sku="COR-1", name="Correlated", actor_id="clerk-7")

        event = audit_log("PRODUCT_CREATED", product.id)[0]
        assert event.actor_id == "clerk-7"
        assert event.correlation_id == "req-42"
        assert event.action == "CREATE"
        assert event.resource_type == "PRODUCT"

    def test_audit_write_failure_does_not_block_business_change(self, db_session, monkeypatch, caplog, audit_log):
        """A broken audit insert is rolled back to its savepoint and logged."""
        def broken_event(**kwargs):
            return AuditEvent(
                event_type=None,
                action=kwargs["action"],
                resource_type=kwargs["resource_type"],
                resource_id=str(kwargs["resource_id"]),
                severity="LOW",
                occurred_at=utcnow(),
            )

        monkeypatch.setattr(audit_service, "_build_event", broken_event)

        product = product_service.create_product(sku="AUD-1", name="Unaudited", actor_id="tester")

        assert product_service.get_product_by_sku("AUD-1").id == product.id
        assert audit_log("PRODUCT_CREATED") == []
        assert "could not be recorded" in caplog.text

    def test_failure_event_survives_rollback(self, db_session, customer, widget, audit_log):
        with pytest.raises(CreditExceededError):
            order_service.create_order(
                customer_id=customer.id,
                items=[{"product_id": widget.id, "quantity": 50}],
                actor_id="tester",
            )

        failure = audit_log("ORDER_CREATE_FAILED")[0]
        assert failure.severity == "HIGH"
        assert failure.resource_id == "unknown"
        assert failure.details["customer_id"] == customer.id
        assert failure.details["item_count"] == 1
        assert "error" in failure.details


class TestAuditQueries:
    def test_events_for_resource(self, db_session, draft_order):
        order_service.confirm_order(draft_order.id)
        events = audit_service.events_for_resource("ORDER", draft_order.id)
        assert [e.event_type for e in events] == ["ORDER_CREATED", "ORDER_STATUS_CHANGED"]

    def test_list_filters(self, db_session, customer, widget):
        result = audit_service.list_audit_events(resource_type="CUSTOMER")
        assert result["count"] == 1
        assert result["items"][0]["event_type"] == "CUSTOMER_CREATED"

        by_actor = audit_service.list_audit_events(actor_id="tester", event_type="STOCK_MOVEMENT_CREATED")
        assert by_actor["count"] == 1

    def test_list_newest_first_with_pagination(self, db_session, customer, widget, gadget):
        result = audit_service.list_audit_events(page=1, per_page=2)
        assert result["count"] == 2
        assert result["pagination"]["total"] == 5
        assert result["items"][0]["event_type"] == "STOCK_MOVEMENT_CREATED"
        assert result["items"][0]["resource_id"] == str(gadget.id)


class TestRetention:
    def _event(self, severity, age_days):
        return AuditEvent(
            event_type="TEST_EVENT",
            action="TEST",
            resource_type="TEST",
            resource_id="1",
            severity=severity,
            occurred_at=utcnow() - timedelta(days=age_days),
        )

    def test_cleanup_removes_only_old_low_and_medium(self, db_session):
        db_session.add_all([
            self._event("LOW", 400),
            self._event("MEDIUM", 400),
            self._event("HIGH", 400),
            self._event("CRITICAL", 400),
            self._event("LOW", 5),
        ])
        db_session.commit()

        deleted = maintenance_service.cleanup_old_events(retention_days=365)

        assert deleted == 2
        remaining = sorted(
            (e.severity, (utcnow() - e.occurred_at).days > 365)
            for e in db_session.query(AuditEvent).all()
        )
        assert remaining == [("CRITICAL", True), ("HIGH", True), ("LOW", False)]

    def test_default_retention_from_config(self, db_session, app):
        assert app.config["AUDIT_RETENTION_DAYS"] == 365
        db_session.add(self._event("LOW", 366))
        db_session.commit()
        assert maintenance_service.cleanup_old_events() == 1

    def test_negative_retention(self, db_session):
        with pytest.raises(ValueError):
            maintenance_service.cleanup_old_events(retention_days=-1)
