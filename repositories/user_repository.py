"""
User repository for looking up accounts.

Read-only: registration and profile edits belong to the auth service.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional
from uuid import UUID

from supabase import Client  # type: ignore[import-not-found]

from domain.ticket import RecipientInfo, RecipientType, phone_number_variants
from domain.user import User, UserRole
from repositories.client import raise_for_error, response_rows

_USERS_TABLE: str = "users"


def _row_to_user(row: Mapping[str, Any]) -> User:
    return User(
        user_id=UUID(str(row["user_id"])),
        name=row.get("name"),
        email=row.get("email"),
        mobile_number=row.get("mobile_number"),
        role=UserRole(str(row.get("role") or UserRole.USER.value)),
    )


class UserRepository:
    def __init__(self, client: Client):
        self._client = client

    def get_by_id(self, user_id: UUID) -> Optional[User]:
        """
        Get a user by their ID.

        Returns:
            User domain model or None if not found
        """

        response = (
            self._client.table(_USERS_TABLE)
            .select("*")
            .eq("user_id", str(user_id))
            .limit(1)
            .execute()
        )
        raise_for_error(response, "fetch user")
        rows = response_rows(response)
        return _row_to_user(rows[0]) if rows else None

    def find_by_contact(self, recipient: RecipientInfo) -> Optional[User]:
        """Resolve a transfer recipient to a registered account by email or mobile number."""

        if not recipient.value:
            return None

        query = self._client.table(_USERS_TABLE).select("*")
        if recipient.type is RecipientType.EMAIL:
            query = query.ilike("email", recipient.value.strip())
        else:
            try:
                spellings = phone_number_variants(recipient.value)
            except ValueError:
                return None
            query = query.in_("mobile_number", list(spellings))

        response = query.limit(1).execute()
        raise_for_error(response, "find user by contact")
        rows = response_rows(response)
        return _row_to_user(rows[0]) if rows else None


__all__ = ["UserRepository"]
