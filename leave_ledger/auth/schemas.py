"""Auth Pydantic schemas."""


import uuid
from typing import Optional

from pydantic import BaseModel

from leave_ledger.common.constants import UserRole


class AdminPrincipal(BaseModel):
    """The authenticated operator stamped onto every ledger entry."""

    id: uuid.UUID
    email: Optional[str] = None
    role: UserRole = UserRole.viewer

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin
