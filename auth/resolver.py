"""
auth/resolver.py -- Load the live principal behind a verified token.

Tokens are stateless, but authorization state is not: every request
re-fetches the principal from the store instead of trusting anything in the
token beyond its subject. A role reassignment or deactivation therefore takes
effect on the principal's very next request, at the cost of one lookup per
authenticated request. There is no cache here.

Store errors are not caught. No retry is attempted; the store's own
connection pool and timeouts govern the lookup.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.models import Principal
    from auth.store import UserStore


class PrincipalResolver:
    def __init__(self, store: UserStore) -> None:
        self._store = store

    def resolve_by_id(self, principal_id: str) -> Principal | None:
        """Fetch the current state of a principal. None if it no longer exists."""
        return self._store.get_by_id(principal_id)

    def resolve_by_email(self, email: str) -> Principal | None:
        return self._store.get_by_email(email)
