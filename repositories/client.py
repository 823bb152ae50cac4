"""
Supabase client construction.

This module contains *only* the database connection setup. The client is built
from explicit Settings and handed to repository constructors; there is no
import-time singleton.
"""

from __future__ import annotations

from typing import Any

# The dependency is `supabase` (supabase-py). If your editor can't resolve it,
# install it in your environment: `pip install supabase`.
from supabase import Client, create_client  # type: ignore[import-not-found]

from config import Settings


def create_supabase_client(settings: Settings) -> Client:
    """Create the official Supabase Python client for the configured project."""

    return create_client(settings.supabase_url, settings.supabase_key)


def raise_for_error(response: Any, action: str) -> None:
    """Surface a Supabase response error as RuntimeError("Failed to <action>: ...")."""

    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")


def response_rows(response: Any) -> list[dict[str, Any]]:
    return getattr(response, "data", None) or []


# PostgreSQL SQLSTATE for unique_violation.
UNIQUE_VIOLATION: str = "23505"


class DuplicateRecordError(RuntimeError):
    """An insert hit a UNIQUE constraint."""


__all__ = [
    "DuplicateRecordError",
    "UNIQUE_VIOLATION",
    "create_supabase_client",
    "raise_for_error",
    "response_rows",
]
