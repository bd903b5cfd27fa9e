"""
Multi-Tenant Service: Workshop Validation and Scoping Helpers

WHY: Every ledger call is made on behalf of exactly one workshop, passed
explicitly as workshop_id. Routes obtain it from the request's bearer token
(g.workshop_id); services never read it from ambient state.

SECURITY INVARIANTS:
1. Every authenticated request has g.workshop_id set
2. Rows owned by another workshop are reported as not found
3. Cross-tenant access attempts are logged as security events
"""

from __future__ import annotations

from flask import g

from ..extensions import db
from ..models import Workshop
from .errors import ForbiddenError, NotFoundError
from .security_service import log_security_event


def get_current_workshop_id() -> int:
    """
    Get the acting workshop from Flask g context.

    Only routes call this; it raises ForbiddenError if tenant context was
    never established (no @require_workshop on the route).
    """
    workshop_id = getattr(g, "workshop_id", None)
    if workshop_id is None:
        raise ForbiddenError("Workshop context not established")
    return workshop_id


def require_active_workshop(workshop_id: int) -> Workshop:
    """
    Validate that a workshop exists and is active.

    Raises:
        NotFoundError if the workshop doesn't exist
        ForbiddenError if it has been deactivated
    """
    workshop = db.session.get(Workshop, workshop_id)
    if not workshop:
        raise NotFoundError("Workshop not found", workshop_id=workshop_id)
    if not workshop.is_active:
        raise ForbiddenError("Workshop is not active", workshop_id=workshop_id)
    return workshop


def log_cross_tenant_attempt(
    reason: str,
    workshop_id: int | None,
    resource: str | None = None,
    action: str | None = None,
) -> None:
    """
    Log a cross-tenant access attempt as a security event.

    SECURITY: A lookup code or payment id that exists under another workshop
    is answered with NotFound; this record is the only trace of the probe.
    """
    log_security_event(
        event_type="CROSS_TENANT_ACCESS_DENIED",
        success=False,
        workshop_id=workshop_id,
        resource=resource,
        action=action,
        reason=reason,
    )
