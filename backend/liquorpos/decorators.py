# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service
from .services.auth_service import Actor, require_role as require_registered_role
from .services.errors import NotAuthenticatedError, NotAuthorizedError


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'actor')


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def require_auth(f):
    """
    Require a valid session token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.actor: Actor snapshot handed to the sale/void services
    - g.session_context: The full SessionContext object

    Returns 401 if:
    - No Authorization header
    - Invalid or expired token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.actor = Actor.from_user(context.user)
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_role(role: str):
    """Require the authenticated user to hold role in the users table."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                require_registered_role(g.actor, role)
            except (NotAuthenticatedError, NotAuthorizedError) as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_role": role,
                    "message": str(e),
                }), e.status_code

            return f(*args, **kwargs)

        return decorated_function
    return decorator
