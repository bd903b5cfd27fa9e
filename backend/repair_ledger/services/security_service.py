# Overview: Service-layer operations for the security audit log.

from __future__ import annotations

from flask import has_request_context, request

from ..extensions import db
from ..models import SecurityEvent
from ..time_utils import utcnow


def log_security_event(
    event_type: str,
    success: bool,
    workshop_id: int | None = None,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail with tenant context.

    Client IP and user agent are captured when called inside a request.
    The event is committed immediately so it survives the rollback of the
    operation that was refused.

    event_type examples:
    - CROSS_TENANT_ACCESS_DENIED
    - SUBSCRIPTION_INACTIVE
    - TOKEN_REJECTED
    """
    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = request.headers.get("User-Agent")

    event = SecurityEvent(
        workshop_id=workshop_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_security_events(workshop_id: int, event_type: str | None = None, limit: int = 100) -> list[SecurityEvent]:
    query = db.session.query(SecurityEvent).filter_by(workshop_id=workshop_id)
    if event_type:
        query = query.filter_by(event_type=event_type)
    return query.order_by(SecurityEvent.occurred_at.desc(), SecurityEvent.id.desc()).limit(limit).all()
