# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that one workshop can never read or move another
workshop's ledger.

Verifies that:
1. A lookup code of another workshop resolves to NotFound, same as unknown
2. Payments of another workshop cannot be read or amended
3. The foreign ticket is left untouched
4. Security events are logged for cross-tenant access attempts
"""

from datetime import date

import pytest
from flask import g

from repair_ledger.extensions import db
from repair_ledger.models import SecurityEvent, Ticket
from repair_ledger.services import ledger_service, ticket_service
from repair_ledger.services.errors import ForbiddenError, NotFoundError
from repair_ledger.services.lookup_service import get_payment, get_ticket, resolve_ticket
from repair_ledger.services.security_service import get_security_events
from repair_ledger.services.tenant_service import get_current_workshop_id, require_active_workshop

PAID_AT = date(2026, 3, 1)


def cross_tenant_count(workshop_id: int) -> int:
    return db.session.query(SecurityEvent).filter_by(
        event_type="CROSS_TENANT_ACCESS_DENIED",
        workshop_id=workshop_id,
    ).count()


class TestLookupResolver:
    """resolve_ticket only sees the acting workshop's tickets."""

    def test_resolves_own_ticket(self, workshop_a, ticket_a):
        assert resolve_ticket("A-0001", workshop_a.id).id == ticket_a.id

    def test_foreign_code_not_found(self, workshop_a, ticket_b):
        with pytest.raises(NotFoundError):
            resolve_ticket("B-0001", workshop_a.id)

    def test_foreign_and_unknown_look_the_same(self, workshop_a, ticket_b):
        with pytest.raises(NotFoundError) as foreign:
            resolve_ticket("B-0001", workshop_a.id)
        with pytest.raises(NotFoundError) as unknown:
            resolve_ticket("ZZ-9999", workshop_a.id)

        assert foreign.value.to_dict() == unknown.value.to_dict()

    def test_same_code_in_two_workshops(self, workshop_a, workshop_b):
        """Lookup codes are unique per workshop, not globally."""
        mine = ticket_service.create_ticket(workshop_a.id, "10", lookup_code="SHARED")
        theirs = ticket_service.create_ticket(workshop_b.id, "20", lookup_code="SHARED")

        assert resolve_ticket("SHARED", workshop_a.id).id == mine.id
        assert resolve_ticket("SHARED", workshop_b.id).id == theirs.id

    def test_empty_code_not_found(self, workshop_a):
        with pytest.raises(NotFoundError):
            resolve_ticket("   ", workshop_a.id)

    def test_foreign_ticket_id_not_found(self, workshop_a, ticket_b):
        with pytest.raises(NotFoundError):
            get_ticket(ticket_b.id, workshop_a.id)

    def test_cross_tenant_lookup_logs_security_event(self, app, workshop_a, ticket_b):
        initial = cross_tenant_count(workshop_a.id)

        with app.test_request_context(headers={"User-Agent": "scanner/1.0"}):
            with pytest.raises(NotFoundError):
                resolve_ticket("B-0001", workshop_a.id, action="RECORD_PAYMENT")

        assert cross_tenant_count(workshop_a.id) == initial + 1

        event = get_security_events(workshop_a.id, event_type="CROSS_TENANT_ACCESS_DENIED")[0]
        assert event.success is False
        assert event.resource == "ticket:B-0001"
        assert event.action == "RECORD_PAYMENT"
        assert event.user_agent == "scanner/1.0"

    def test_unknown_code_logs_nothing(self, workshop_a):
        with pytest.raises(NotFoundError):
            resolve_ticket("ZZ-9999", workshop_a.id)
        assert cross_tenant_count(workshop_a.id) == 0


class TestCrossTenantLedger:
    """Ledger operations refuse foreign tickets and payments."""

    def test_record_on_foreign_ticket(self, workshop_a, ticket_b):
        with pytest.raises(NotFoundError):
            ledger_service.record_payment(workshop_a.id, "B-0001", "10", PAID_AT, "cash")

        ticket = db.session.get(Ticket, ticket_b.id)
        db.session.refresh(ticket)
        assert ticket.amount_paid_millimes == 0
        assert cross_tenant_count(workshop_a.id) == 1

    def test_amend_foreign_payment(self, workshop_a, workshop_b, ticket_b):
        recorded = ledger_service.record_payment(workshop_b.id, "B-0001", "30", PAID_AT, "cash")

        with pytest.raises(NotFoundError):
            ledger_service.amend_payment(workshop_a.id, recorded.payment.id, "80", PAID_AT, "cash")

        ticket = db.session.get(Ticket, ticket_b.id)
        db.session.refresh(ticket)
        assert ticket.amount_paid_millimes == 30000
        assert cross_tenant_count(workshop_a.id) == 1

    def test_read_foreign_payment(self, workshop_a, workshop_b, ticket_b):
        recorded = ledger_service.record_payment(workshop_b.id, "B-0001", "30", PAID_AT, "cash")

        with pytest.raises(NotFoundError):
            get_payment(recorded.payment.id, workshop_a.id)
        with pytest.raises(NotFoundError):
            ledger_service.get_payment_events(workshop_a.id, recorded.payment.id)

    def test_verify_foreign_ticket(self, workshop_a, ticket_b):
        with pytest.raises(NotFoundError):
            ledger_service.verify_ticket(workshop_a.id, ticket_b.id)


class TestTenantServiceHelpers:
    """Test tenant_service helper functions."""

    def test_current_workshop_from_g(self, app, workshop_a):
        with app.test_request_context():
            g.workshop_id = workshop_a.id
            assert get_current_workshop_id() == workshop_a.id

    def test_current_workshop_missing(self, app):
        with app.test_request_context():
            g.pop("workshop_id", None)
            with pytest.raises(ForbiddenError):
                get_current_workshop_id()

    def test_require_active_workshop(self, workshop_a):
        assert require_active_workshop(workshop_a.id).id == workshop_a.id

    def test_require_active_workshop_inactive(self, workshop_a):
        workshop_a.is_active = False
        db.session.commit()
        with pytest.raises(ForbiddenError):
            require_active_workshop(workshop_a.id)

    def test_require_active_workshop_unknown(self, db_session):
        with pytest.raises(NotFoundError):
            require_active_workshop(99999)
