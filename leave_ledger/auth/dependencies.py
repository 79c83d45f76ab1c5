"""Auth dependencies — JWT validation, admin enforcement."""

from __future__ import annotations

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException

from leave_ledger.auth.schemas import AdminPrincipal
from leave_ledger.auth.service import TokenError, decode_access_token
from leave_ledger.common.exceptions import ForbiddenException


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(request: Request) -> AdminPrincipal:
    """Validate the JWT and return the authenticated principal."""
    token = _extract_bearer(request)
    try:
        principal = decode_access_token(token)
    except TokenError as exc:
        raise HTTPException(status_code=401, detail=str(exc))

    request.state.user_role = principal.role
    return principal


# ── Admin-only dependency ───────────────────────────────────────────

async def require_admin(
    principal: AdminPrincipal = Depends(get_current_user),
) -> AdminPrincipal:
    """Only administrators may mutate balances or the leave year."""
    if not principal.is_admin:
        raise ForbiddenException(
            detail=f"Role '{principal.role.value}' is not permitted. Required: ['admin'].",
        )
    return principal
