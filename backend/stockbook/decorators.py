# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, g, current_app

from .errors import IdentityError
from .responses import fail
from .services.identity_service import verify_access_token


def require_identity(f):
    """
    Require a verified identity from the hosted auth provider.

    Sets the following Flask g attributes:
    - g.identity: the verified Identity (None in local mode)
    - g.user_id: stable user id from the token's "sub" claim (None in local mode)

    With AUTH_REQUIRED off (single-user desktop mode) the request proceeds
    without an identity. Otherwise a missing or invalid token is a 401
    envelope.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.identity = None
        g.user_id = None

        auth_header = request.headers.get("Authorization")
        if not current_app.config.get("AUTH_REQUIRED", True) and not auth_header:
            return f(*args, **kwargs)

        if not auth_header or not auth_header.startswith("Bearer "):
            return fail(IdentityError("Authentication required"))

        token = auth_header.split(" ", 1)[1].strip()
        try:
            identity = verify_access_token(
                token,
                secret=current_app.config.get("AUTH_JWT_SECRET", ""),
                audience=current_app.config.get("AUTH_JWT_AUDIENCE") or None,
            )
        except IdentityError as exc:
            current_app.logger.info("Rejected token for %s %s: %s", request.method, request.path, exc.message)
            return fail(exc)

        g.identity = identity
        g.user_id = identity.user_id
        return f(*args, **kwargs)

    return decorated_function
