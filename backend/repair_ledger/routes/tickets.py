# Overview: Flask API routes for repair tickets and their balances.

"""
Ticket API Routes

DESIGN:
- Create a ticket owing a total (nothing paid yet)
- Look a ticket up by its scanned code and show its balance
- List tickets by payment state and show workshop totals
- Verify a ticket's paid total against its payments
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_workshop
from ..services import ledger_service, ticket_service
from ..services.balance import STATUS_PAID, STATUS_UNPAID
from ..services.errors import LedgerError
from ..validation import ValidationError, optional_text, require_fields, require_json_object


tickets_bp = Blueprint("tickets", __name__, url_prefix="/api/tickets")


@tickets_bp.post("/")
@require_workshop
def create_ticket_route():
    """
    Create a ticket.

    Request body:
    {
        "amount_total": "100.000",
        "lookup_code": "482910375521",  (optional, generated if omitted)
        "client_name": "Sami",          (optional)
        "device_label": "Phone X"       (optional)
    }

    Returns:
        201: Ticket created
        400: Invalid input
        409: Lookup code already used in this workshop
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        require_fields(data, "amount_total")

        ticket = ticket_service.create_ticket(
            workshop_id=g.workshop_id,
            amount_total=data.get("amount_total"),
            lookup_code=optional_text(data.get("lookup_code"), "lookup_code", 64),
            client_name=optional_text(data.get("client_name"), "client_name", 255),
            device_label=optional_text(data.get("device_label"), "device_label", 255),
        )

        return jsonify({"ticket": ticket.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create ticket")
        return jsonify({"error": "Internal server error"}), 500


@tickets_bp.get("/")
@require_workshop
def list_tickets_route():
    """
    List tickets.

    Query params:
    - state: paid | unpaid (optional)
    """
    state = request.args.get("state")
    if state not in (None, STATUS_PAID, STATUS_UNPAID):
        return jsonify({"error": f"state must be {STATUS_PAID} or {STATUS_UNPAID}"}), 400

    try:
        tickets = ticket_service.list_tickets(g.workshop_id, payment_state=state)
        return jsonify({
            "tickets": [t.to_dict() for t in tickets],
            "count": len(tickets),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list tickets")
        return jsonify({"error": "Internal server error"}), 500


@tickets_bp.get("/totals")
@require_workshop
def workshop_totals_route():
    """Total owed, paid and unpaid across the workshop's tickets."""
    try:
        return jsonify(ticket_service.workshop_totals(g.workshop_id)), 200
    except Exception:
        current_app.logger.exception("Failed to compute workshop totals")
        return jsonify({"error": "Internal server error"}), 500


@tickets_bp.get("/<lookup_code>")
@require_workshop
def get_ticket_route(lookup_code: str):
    """
    Get a ticket and its balance by lookup code.

    Returns:
    - ticket
    - balance: ticket_total, ticket_paid, remaining, status
    """
    try:
        ticket, balance = ticket_service.get_ticket_balance(g.workshop_id, lookup_code)
        return jsonify({
            "ticket": ticket.to_dict(),
            "balance": balance.to_dict(),
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load ticket")
        return jsonify({"error": "Internal server error"}), 500


@tickets_bp.get("/<lookup_code>/payments")
@require_workshop
def get_ticket_payments_route(lookup_code: str):
    """Payments of a ticket, oldest first, with its balance."""
    try:
        ticket, balance = ticket_service.get_ticket_balance(g.workshop_id, lookup_code)
        payments = ledger_service.get_ticket_payments(g.workshop_id, ticket.id)
        return jsonify({
            "ticket_id": ticket.id,
            "payments": [p.to_dict() for p in payments],
            "balance": balance.to_dict(),
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to load ticket payments")
        return jsonify({"error": "Internal server error"}), 500


@tickets_bp.get("/<lookup_code>/verify")
@require_workshop
def verify_ticket_route(lookup_code: str):
    """Check the ticket's paid total against the sum of its payments."""
    try:
        ticket, _ = ticket_service.get_ticket_balance(g.workshop_id, lookup_code)
        return jsonify(ledger_service.verify_ticket(g.workshop_id, ticket.id)), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to verify ticket")
        return jsonify({"error": "Internal server error"}), 500
