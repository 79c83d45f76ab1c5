"""Auth service — JWT issuance and decoding for administrator identities.

Sign-in itself happens at the identity provider; this module only mints
tokens (CLI, tests) and turns a verified token into an ``AdminPrincipal``.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from leave_ledger.auth.schemas import AdminPrincipal
from leave_ledger.common.constants import UserRole
from leave_ledger.config import settings


class TokenError(Exception):
    """The bearer token is missing, malformed, expired, or of the wrong type."""


def create_access_token(
    admin_id: uuid.UUID,
    *,
    email: Optional[str] = None,
    role: UserRole = UserRole.admin,
    expires_in: Optional[timedelta] = None,
) -> str:
    """Sign an access token for *admin_id*."""
    exp = datetime.now(timezone.utc) + (
        expires_in if expires_in is not None
        else timedelta(hours=settings.JWT_EXPIRY_HOURS)
    )
    payload: dict[str, Any] = {
        "sub": str(admin_id),
        "role": role.value,
        "type": "access",
        "exp": exp,
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> AdminPrincipal:
    """Validate *token* and return the principal it identifies."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError as exc:
        raise TokenError("Token has expired.") from exc
    except JWTError as exc:
        raise TokenError("Invalid token.") from exc

    if payload.get("type") != "access":
        raise TokenError("Invalid token type.")

    try:
        admin_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError) as exc:
        raise TokenError("Invalid token subject.") from exc

    try:
        role = UserRole(payload.get("role", UserRole.viewer.value))
    except ValueError:
        role = UserRole.viewer

    return AdminPrincipal(id=admin_id, email=payload.get("email"), role=role)
