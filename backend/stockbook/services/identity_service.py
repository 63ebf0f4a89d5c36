# Overview: Verification of access tokens issued by the hosted auth provider.

"""
Identity

Sign-in happens at the hosted auth provider. The desktop client sends the
provider's access token as "Authorization: Bearer <jwt>"; we only verify the
signature, expiry and audience and read the stable user id from "sub".

Tokens are HS256 JWTs signed with the project's JWT secret
(AUTH_JWT_SECRET), audience "authenticated" by default.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

from jose import ExpiredSignatureError, JWTError, jwt

from ..errors import IdentityError
from stockbook.time_utils import utcnow

ALGORITHM = "HS256"


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str | None = None
    role: str | None = None
    claims: dict = field(default_factory=dict)


def verify_access_token(token: str, *, secret: str, audience: str | None) -> Identity:
    if not secret:
        raise IdentityError("Identity verification is not configured")
    if not token:
        raise IdentityError("Authentication required")

    options = {"verify_aud": audience is not None}
    try:
        claims = jwt.decode(token, secret, algorithms=[ALGORITHM], audience=audience, options=options)
    except ExpiredSignatureError as exc:
        raise IdentityError("Token has expired") from exc
    except JWTError as exc:
        raise IdentityError("Invalid token") from exc

    user_id = claims.get("sub")
    if not user_id:
        raise IdentityError("Token has no subject")

    return Identity(
        user_id=str(user_id),
        email=claims.get("email"),
        role=claims.get("role"),
        claims=claims,
    )


def issue_access_token(
    user_id: str,
    *,
    secret: str,
    audience: str | None = "authenticated",
    email: str | None = None,
    expires_in: timedelta = timedelta(hours=1),
) -> str:
    """
    Mint a token the way the provider does. Local development and tests only;
    production tokens come from the provider.
    """
    now = utcnow()
    claims = {
        "sub": user_id,
        "role": "authenticated",
        "iat": now,
        "exp": now + expires_in,
    }
    if audience is not None:
        claims["aud"] = audience
    if email is not None:
        claims["email"] = email
    return jwt.encode(claims, secret, algorithm=ALGORITHM)
