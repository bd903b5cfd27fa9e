# Overview: Flask API routes for ledger payments; parses input and returns JSON responses.

"""
Payment Ledger API Routes

DESIGN:
- Record a payment against a ticket found by its lookup code
- Amend a payment (amount, date, method, note)
- List and inspect payments with their audit trail

SECURITY:
- Every route requires a workshop token (@require_workshop)
- The acting workshop comes from the token, never from the body
- Payments and tickets of other workshops answer 404
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_workshop
from ..services import ledger_service
from ..services.errors import LedgerError
from ..validation import ValidationError, parse_int_arg, require_fields, require_json_object


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


# =============================================================================
# PAYMENT CREATION
# =============================================================================

@payments_bp.post("/")
@require_workshop
def record_payment_route():
    """
    Record a payment against a ticket.

    Request body:
    {
        "lookup_code": "482910375521",
        "amount": "40.000",
        "date": "2026-03-01",
        "method": "cash",
        "note": "deposit",                    (optional)
        "idempotency_key": "terminal-3-0042"  (optional)
    }

    METHODS: cash, check, transfer, card, other

    Returns:
        201: Payment recorded, with the ticket balance after it
        200: Idempotent replay of an already recorded payment
        400: Invalid input
        403: Workshop subscription inactive
        404: Unknown lookup code
        409: Ticket fully paid / amount exceeds remaining / conflict
        503: Ticket busy or store unavailable
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        require_fields(data, "lookup_code", "amount", "date", "method")

        result = ledger_service.record_payment(
            workshop_id=g.workshop_id,
            lookup_code=data.get("lookup_code"),
            amount=data.get("amount"),
            paid_at=data.get("date"),
            method=data.get("method"),
            note=data.get("note"),
            idempotency_key=data.get("idempotency_key"),
        )

        return jsonify(result.to_dict()), 200 if result.replayed else 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT AMENDMENT
# =============================================================================

@payments_bp.put("/<int:payment_id>")
@require_workshop
def amend_payment_route(payment_id: int):
    """
    Amend a payment.

    Request body:
    {
        "amount": "70.000",
        "date": "2026-03-02",
        "method": "card",
        "note": "corrected",     (optional)
        "version_id": 1          (optional, rejects if someone amended first)
    }

    The ticket's paid total moves by the difference between the new and
    the stored amount.

    Returns:
        200: Payment amended, with the ticket balance after it
        400: Invalid input
        403: Workshop subscription inactive
        404: Unknown payment
        409: Amount would exceed the ticket total / conflict
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        require_fields(data, "amount", "date", "method")

        expected_version = data.get("version_id")
        if expected_version is not None and (isinstance(expected_version, bool) or not isinstance(expected_version, int)):
            raise ValidationError("version_id must be an integer")

        result = ledger_service.amend_payment(
            workshop_id=g.workshop_id,
            payment_id=payment_id,
            amount=data.get("amount"),
            paid_at=data.get("date"),
            method=data.get("method"),
            note=data.get("note"),
            expected_version=expected_version,
        )

        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to amend payment")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT QUERIES
# =============================================================================

@payments_bp.get("/")
@require_workshop
def list_payments_route():
    """
    List the workshop's payments, newest first.

    Query params:
    - search: matches ticket lookup code, client name or method
    - method: cash, check, transfer, card, other
    - min_amount / max_amount: inclusive amount bounds
    - date_from / date_to: inclusive dates (YYYY-MM-DD)
    - limit / offset: pagination
    """
    try:
        payments = ledger_service.list_payments(
            workshop_id=g.workshop_id,
            search=request.args.get("search"),
            method=request.args.get("method"),
            min_amount=request.args.get("min_amount"),
            max_amount=request.args.get("max_amount"),
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            limit=parse_int_arg(request.args.get("limit"), "limit", default=100),
            offset=parse_int_arg(request.args.get("offset"), "offset", default=0),
        )

        return jsonify({
            "payments": [p.to_dict() for p in payments],
            "count": len(payments),
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list payments")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("/<int:payment_id>")
@require_workshop
def get_payment_route(payment_id: int):
    """
    Get payment details including its audit trail (record + amendments).
    """
    try:
        payment = ledger_service.get_payment(g.workshop_id, payment_id)
        events = ledger_service.get_payment_events(g.workshop_id, payment_id)

        return jsonify({
            "payment": payment.to_dict(),
            "events": [e.to_dict() for e in events],
        }), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load payment")
        return jsonify({"error": "Internal server error"}), 500
