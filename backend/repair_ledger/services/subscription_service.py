# Overview: Service-layer operations for workshop subscriptions (ledger gate).

"""
Workshop Subscription Gate

WHY: A workshop whose subscription lapsed may not record or amend
payments. The ledger consults this gate before accepting any call.

ACTIVE WHEN (latest subscription by start_date):
- workshop.is_active
- subscription.is_paid
- start_date <= today <= end_date + SUBSCRIPTION_GRACE_DAYS

Maintenance operations mirror what the back-office does with a
subscription: extend it by whole months (price accumulates per month),
stop it, reactivate it, and flip lapsed subscriptions to unpaid.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta

from flask import current_app

from ..extensions import db
from ..models import Workshop, WorkshopSubscription
from ..money import to_millimes
from ..time_utils import utctoday
from .errors import ForbiddenError, NotFoundError
from .security_service import log_security_event


class SubscriptionError(ValueError):
    """Invalid subscription maintenance request."""


def _grace() -> timedelta:
    return timedelta(days=current_app.config.get("SUBSCRIPTION_GRACE_DAYS", 1))


def add_months(start: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day of the month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def get_current_subscription(workshop_id: int) -> WorkshopSubscription | None:
    return (
        db.session.query(WorkshopSubscription)
        .filter_by(workshop_id=workshop_id)
        .order_by(WorkshopSubscription.start_date.desc(), WorkshopSubscription.id.desc())
        .first()
    )


def is_subscription_active(workshop_id: int, at: date | None = None) -> bool:
    at = at or utctoday()

    workshop = db.session.get(Workshop, workshop_id)
    if not workshop or not workshop.is_active:
        return False

    subscription = get_current_subscription(workshop_id)
    if not subscription or not subscription.is_paid:
        return False

    return subscription.start_date <= at <= subscription.end_date + _grace()


def require_active_subscription(workshop_id: int, *, action: str | None = None) -> None:
    """
    Ledger precondition: raise ForbiddenError unless the workshop is active.

    Skipped entirely when SUBSCRIPTION_GATE_ENABLED is False.
    """
    if not current_app.config.get("SUBSCRIPTION_GATE_ENABLED", True):
        return

    if is_subscription_active(workshop_id):
        return

    current_app.logger.info("Workshop %s refused: subscription inactive", workshop_id)
    log_security_event(
        event_type="SUBSCRIPTION_INACTIVE",
        success=False,
        workshop_id=workshop_id,
        action=action,
        reason="Workshop subscription is not active",
    )
    raise ForbiddenError("Workshop subscription is not active", workshop_id=workshop_id)


def create_subscription(
    workshop_id: int,
    start_date: date,
    months: int,
    price_per_month=0,
) -> WorkshopSubscription:
    if months <= 0:
        raise SubscriptionError("months must be positive")

    workshop = db.session.get(Workshop, workshop_id)
    if not workshop:
        raise NotFoundError("Workshop not found", workshop_id=workshop_id)

    subscription = WorkshopSubscription(
        workshop_id=workshop_id,
        start_date=start_date,
        end_date=add_months(start_date, months),
        is_paid=True,
        price_paid_millimes=to_millimes(price_per_month, field="price_per_month") * months,
    )
    db.session.add(subscription)
    db.session.commit()
    return subscription


def extend_subscription(workshop_id: int, months: int, end_date: date | None = None) -> WorkshopSubscription:
    """
    Extend the current subscription by whole months and mark it paid.

    The stored price grows by one base-price per added month, the base price
    being what was paid so far.
    """
    if months <= 0:
        raise SubscriptionError("months must be positive")

    subscription = get_current_subscription(workshop_id)
    if not subscription:
        raise NotFoundError("Workshop has no subscription", workshop_id=workshop_id)

    subscription.end_date = end_date or add_months(subscription.end_date, months)
    subscription.price_paid_millimes = subscription.price_paid_millimes * (1 + months)
    subscription.is_paid = True
    db.session.commit()
    return subscription


def stop_subscription(workshop_id: int) -> WorkshopSubscription:
    subscription = get_current_subscription(workshop_id)
    if not subscription:
        raise NotFoundError("Workshop has no subscription", workshop_id=workshop_id)
    subscription.is_paid = False
    db.session.commit()
    return subscription


def reactivate_subscription(workshop_id: int) -> WorkshopSubscription:
    subscription = get_current_subscription(workshop_id)
    if not subscription:
        raise NotFoundError("Workshop has no subscription", workshop_id=workshop_id)
    subscription.is_paid = True
    db.session.commit()
    return subscription


def expire_lapsed_subscriptions(at: date | None = None) -> int:
    """
    Mark paid subscriptions whose window (plus grace) has passed as unpaid.

    Returns the number of subscriptions expired.
    """
    at = at or utctoday()
    cutoff = at - _grace()

    lapsed = (
        db.session.query(WorkshopSubscription)
        .filter(WorkshopSubscription.is_paid.is_(True))
        .filter(WorkshopSubscription.end_date < cutoff)
        .all()
    )
    for subscription in lapsed:
        subscription.is_paid = False

    db.session.commit()
    if lapsed:
        current_app.logger.info("Expired %s lapsed subscription(s)", len(lapsed))
    return len(lapsed)
