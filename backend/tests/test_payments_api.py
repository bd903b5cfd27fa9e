# Overview: Pytest coverage for the ledger HTTP API.

"""
Ledger API Tests

Verifies:
- Requests without a valid workshop token return 401
- Ledger refusals map to their HTTP status and error code
- Amounts are exchanged as 3-decimal strings
- Other workshops' tickets and payments answer 404
"""

import pytest

from repair_ledger.models import SecurityEvent
from repair_ledger.services import subscription_service

from conftest import auth_headers


def record(client, headers, **overrides):
    body = {
        "lookup_code": "A-0001",
        "amount": "40",
        "date": "2026-03-01",
        "method": "cash",
    }
    body.update(overrides)
    return client.post("/api/payments/", json=body, headers=headers)


class TestAuthentication:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/payments/"),
            ("POST", "/api/payments/"),
            ("PUT", "/api/payments/1"),
            ("GET", "/api/payments/1"),
            ("GET", "/api/tickets/"),
            ("POST", "/api/tickets/"),
            ("GET", "/api/tickets/A-0001"),
            ("GET", "/api/workshop"),
        ],
    )
    def test_requires_token(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_token_rejected_and_logged(self, client, db_session):
        resp = client.get("/api/tickets/", headers=auth_headers("bogus"))

        assert resp.status_code == 401
        assert db_session.query(SecurityEvent).filter_by(event_type="TOKEN_REJECTED").count() == 1


class TestRecordPaymentApi:
    def test_record_created(self, client, headers_a, ticket_a):
        resp = record(client, headers_a, amount="40.125", note="deposit")

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["payment"]["amount"] == "40.125"
        assert data["payment"]["date"] == "2026-03-01T00:00:00Z"
        assert data["payment"]["note"] == "deposit"
        assert data["balance"] == {
            "ticket_total": "100.000",
            "ticket_paid": "40.125",
            "remaining": "59.875",
            "status": "unpaid",
        }
        assert data["replayed"] is False

    def test_json_number_amount(self, client, headers_a, ticket_a):
        resp = record(client, headers_a, amount=12.5)
        assert resp.status_code == 201
        assert resp.get_json()["payment"]["amount"] == "12.500"

    def test_replay_returns_200(self, client, headers_a, ticket_a):
        first = record(client, headers_a, idempotency_key="desk-1")
        second = record(client, headers_a, idempotency_key="desk-1")

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["replayed"] is True
        assert second.get_json()["payment"]["id"] == first.get_json()["payment"]["id"]

    def test_overdraw_409(self, client, headers_a, ticket_a):
        record(client, headers_a, amount="80")
        resp = record(client, headers_a, amount="30")

        assert resp.status_code == 409
        data = resp.get_json()
        assert data["code"] == "AMOUNT_EXCEEDS_REMAINING"
        assert data["context"]["remaining"] == "20.000"
        assert data["context"]["ticket_id"] == ticket_a.id

    def test_fully_paid_409(self, client, headers_a, ticket_a):
        record(client, headers_a, amount="100")
        resp = record(client, headers_a, amount="1")

        assert resp.status_code == 409
        assert resp.get_json()["code"] == "FULLY_PAID"

    @pytest.mark.parametrize("amount", ["0", "-1", "abc", "1.2345", "1e30", 1e40])
    def test_invalid_amount_400(self, client, headers_a, ticket_a, amount):
        resp = record(client, headers_a, amount=amount)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_AMOUNT"

    def test_missing_fields_400(self, client, headers_a, ticket_a):
        resp = client.post("/api/payments/", json={"lookup_code": "A-0001"}, headers=headers_a)
        assert resp.status_code == 400

    def test_non_object_body_400(self, client, headers_a, ticket_a):
        resp = client.post("/api/payments/", json=["A-0001"], headers=headers_a)
        assert resp.status_code == 400

    def test_invalid_method_400(self, client, headers_a, ticket_a):
        resp = record(client, headers_a, method="barter")
        assert resp.status_code == 400

    def test_unknown_code_404(self, client, headers_a, ticket_a):
        resp = record(client, headers_a, lookup_code="NOPE")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "NOT_FOUND"

    def test_foreign_code_404(self, client, headers_a, ticket_b):
        resp = record(client, headers_a, lookup_code="B-0001")
        assert resp.status_code == 404

    def test_inactive_subscription_403(self, client, headers_a, workshop_a, ticket_a):
        subscription_service.stop_subscription(workshop_a.id)

        resp = record(client, headers_a)

        assert resp.status_code == 403
        assert resp.get_json()["code"] == "FORBIDDEN"


class TestAmendPaymentApi:
    def test_amend(self, client, headers_a, ticket_a):
        payment = record(client, headers_a).get_json()["payment"]

        resp = client.put(
            f"/api/payments/{payment['id']}",
            json={"amount": "70", "date": "2026-03-02", "method": "card", "version_id": payment["version_id"]},
            headers=headers_a,
        )

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["payment"]["amount"] == "70.000"
        assert data["payment"]["method"] == "card"
        assert data["balance"]["ticket_paid"] == "70.000"

    def test_amend_overdraw_409(self, client, headers_a, ticket_a):
        payment = record(client, headers_a).get_json()["payment"]

        resp = client.put(
            f"/api/payments/{payment['id']}",
            json={"amount": "130", "date": "2026-03-01", "method": "cash"},
            headers=headers_a,
        )

        assert resp.status_code == 409
        assert resp.get_json()["context"]["remaining"] == "100.000"

    def test_amend_stale_version_409(self, client, headers_a, ticket_a):
        payment = record(client, headers_a).get_json()["payment"]
        body = {"amount": "50", "date": "2026-03-01", "method": "cash", "version_id": payment["version_id"]}

        assert client.put(f"/api/payments/{payment['id']}", json=body, headers=headers_a).status_code == 200
        resp = client.put(f"/api/payments/{payment['id']}", json=body, headers=headers_a)

        assert resp.status_code == 409
        assert resp.get_json()["code"] == "CONFLICT"

    def test_amend_bad_version_type_400(self, client, headers_a, ticket_a):
        payment = record(client, headers_a).get_json()["payment"]
        resp = client.put(
            f"/api/payments/{payment['id']}",
            json={"amount": "50", "date": "2026-03-01", "method": "cash", "version_id": "1"},
            headers=headers_a,
        )
        assert resp.status_code == 400

    def test_amend_foreign_payment_404(self, client, headers_a, headers_b, ticket_a, ticket_b):
        payment = record(client, headers_b, lookup_code="B-0001").get_json()["payment"]

        resp = client.put(
            f"/api/payments/{payment['id']}",
            json={"amount": "10", "date": "2026-03-01", "method": "cash"},
            headers=headers_a,
        )
        assert resp.status_code == 404


class TestPaymentQueriesApi:
    def test_list_and_detail(self, client, headers_a, headers_b, ticket_a, ticket_b):
        first = record(client, headers_a, amount="10").get_json()["payment"]
        record(client, headers_a, amount="20", method="card")
        record(client, headers_b, lookup_code="B-0001", amount="5")

        resp = client.get("/api/payments/", headers=headers_a)
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 2

        resp = client.get("/api/payments/?method=card", headers=headers_a)
        assert resp.get_json()["count"] == 1

        resp = client.get(f"/api/payments/{first['id']}", headers=headers_a)
        assert resp.status_code == 200
        assert [e["event_type"] for e in resp.get_json()["events"]] == ["RECORDED"]

    def test_detail_foreign_404(self, client, headers_a, headers_b, ticket_b):
        payment = record(client, headers_b, lookup_code="B-0001").get_json()["payment"]
        resp = client.get(f"/api/payments/{payment['id']}", headers=headers_a)
        assert resp.status_code == 404

    def test_bad_limit_400(self, client, headers_a):
        resp = client.get("/api/payments/?limit=ten", headers=headers_a)
        assert resp.status_code == 400

    @pytest.mark.parametrize("query", ["min_amount=1e40", "max_amount=1E%2B100"])
    def test_huge_amount_filter_400(self, client, headers_a, query):
        resp = client.get(f"/api/payments/?{query}", headers=headers_a)
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "INVALID_AMOUNT"


class TestTicketApi:
    def test_create_and_lookup(self, client, headers_a):
        resp = client.post(
            "/api/tickets/",
            json={"amount_total": "250.5", "lookup_code": "T-77", "client_name": "Amel"},
            headers=headers_a,
        )
        assert resp.status_code == 201
        assert resp.get_json()["ticket"]["amount_total"] == "250.500"

        resp = client.get("/api/tickets/T-77", headers=headers_a)
        assert resp.status_code == 200
        assert resp.get_json()["balance"]["remaining"] == "250.500"

    def test_duplicate_code_409(self, client, headers_a, ticket_a):
        resp = client.post(
            "/api/tickets/", json={"amount_total": "10", "lookup_code": "A-0001"}, headers=headers_a
        )
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "DUPLICATE_LOOKUP_CODE"

    def test_lookup_foreign_404(self, client, headers_a, ticket_b):
        assert client.get("/api/tickets/B-0001", headers=headers_a).status_code == 404

    def test_ticket_payments_and_verify(self, client, headers_a, ticket_a):
        record(client, headers_a, amount="40")
        record(client, headers_a, amount="60")

        resp = client.get("/api/tickets/A-0001/payments", headers=headers_a)
        data = resp.get_json()
        assert len(data["payments"]) == 2
        assert data["balance"]["status"] == "paid"

        resp = client.get("/api/tickets/A-0001/verify", headers=headers_a)
        assert resp.get_json()["consistent"] is True

    def test_list_state_filter(self, client, headers_a, ticket_a):
        assert client.get("/api/tickets/?state=unpaid", headers=headers_a).get_json()["count"] == 1
        assert client.get("/api/tickets/?state=paid", headers=headers_a).get_json()["count"] == 0
        assert client.get("/api/tickets/?state=partial", headers=headers_a).status_code == 400

    def test_totals(self, client, headers_a, ticket_a):
        record(client, headers_a, amount="25")
        data = client.get("/api/tickets/totals", headers=headers_a).get_json()
        assert data["amount_unpaid"] == "75.000"


class TestSystemApi:
    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["database"]["status"] == "healthy"

    def test_workshop_status(self, client, headers_a, workshop_a):
        resp = client.get("/api/workshop", headers=headers_a)
        data = resp.get_json()
        assert data["workshop"]["id"] == workshop_a.id
        assert data["subscription_active"] is True
