# Overview: Service-layer operations for workshop API tokens.

"""
Workshop API Tokens

WHY: Every API request acts on behalf of one workshop. The token a
terminal presents is what establishes that workshop; nothing in the
request body can change it.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Revocable; a deactivated workshop's tokens stop resolving
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass

from ..extensions import db
from ..models import Workshop, WorkshopApiToken
from ..time_utils import utcnow


@dataclass
class WorkshopContext:
    """Tenant context resolved from a bearer token."""
    workshop: Workshop
    token: WorkshopApiToken

    @property
    def workshop_id(self) -> int:
        return self.workshop.id


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy); never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are already high-entropy, so a fast hash is sufficient.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(workshop_id: int, label: str | None = None) -> tuple[WorkshopApiToken, str]:
    """
    Create a new API token for a workshop.

    Returns (token_record, plaintext_token). Only the hash is persisted.

    Raises ValueError if the workshop doesn't exist or is inactive.
    """
    workshop = db.session.get(Workshop, workshop_id)
    if not workshop or not workshop.is_active:
        raise ValueError("Workshop is not active")

    plaintext_token = generate_token()
    record = WorkshopApiToken(
        workshop_id=workshop_id,
        token_hash=hash_token(plaintext_token),
        label=label,
        created_at=utcnow(),
    )
    db.session.add(record)
    db.session.commit()

    return record, plaintext_token


def resolve_token(token: str) -> WorkshopContext | None:
    """
    Resolve a plaintext token to its workshop.

    Returns None if the token is unknown, revoked, or its workshop inactive.
    """
    if not token:
        return None

    record = db.session.query(WorkshopApiToken).filter_by(token_hash=hash_token(token)).first()
    if not record or record.is_revoked:
        return None

    workshop = db.session.get(Workshop, record.workshop_id)
    if not workshop or not workshop.is_active:
        return None

    record.last_used_at = utcnow()
    db.session.commit()

    return WorkshopContext(workshop=workshop, token=record)


def revoke_token(token: str) -> bool:
    record = db.session.query(WorkshopApiToken).filter_by(token_hash=hash_token(token)).first()
    if not record or record.is_revoked:
        return False
    record.revoked_at = utcnow()
    db.session.commit()
    return True
