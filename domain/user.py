"""
Domain: User accounts (read-only view).

Accounts are managed by the auth/registration layer. This platform only reads
them: to resolve transfer recipients, to address notifications, and to check
organizer/admin rights.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from .ticket import RecipientInfo, RecipientType


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class User:
    user_id: UUID
    name: Optional[str] = None
    email: Optional[str] = None
    mobile_number: Optional[str] = None
    role: UserRole = UserRole.USER

    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN

    def contact(self) -> RecipientInfo:
        """The purchaser's own contact, used when a ticket has no explicit recipient."""

        if self.email:
            return RecipientInfo(type=RecipientType.EMAIL, value=self.email, name=self.name)
        return RecipientInfo(type=RecipientType.MOBILE, value=self.mobile_number, name=self.name)

    def owns_contact(self, recipient: RecipientInfo) -> bool:
        return recipient.matches(self.email, self.mobile_number)
