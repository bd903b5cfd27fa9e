# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import token_service
from .services.security_service import log_security_event


def require_workshop(f):
    """
    Require a workshop API token and establish tenant context.

    Sets the following Flask g attributes:
    - g.workshop_id: The acting workshop (tenant context)
    - g.workshop_context: The full WorkshopContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Unknown or revoked token
    - Workshop deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1].strip()

        context = token_service.resolve_token(token)

        if not context:
            log_security_event(
                event_type="TOKEN_REJECTED",
                success=False,
                resource=request.path,
                action=request.method,
                reason="Unknown, revoked or inactive workshop token",
            )
            return jsonify({"error": "Invalid or revoked token"}), 401

        g.workshop_id = context.workshop_id
        g.workshop_context = context

        return f(*args, **kwargs)

    return decorated_function
