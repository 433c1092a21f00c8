"""
auth/engine.py -- The authorization decision engine.

Composes CredentialVerifier (token -> claims), PrincipalResolver (claims ->
live principal) and RoleCatalog (role name -> level / capabilities) to answer:

  authenticate(header)            is this bearer token valid, and for whom?
  optional_authenticate(header)   same, but failures mean "anonymous"
  authorize(principal, policy)    does this principal satisfy the policy?

Per request the engine walks Unauthenticated -> TokenVerified ->
PrincipalLoaded -> PolicyEvaluated. Any failed step returns a denied Verdict
immediately; nothing is retried, because authorization failures are not
transient.

Store errors (database down, broken schema) are NOT verdicts. They propagate
as exceptions so the API returns a generic 500 and operators can alert on
them, while denials stay ordinary 401/403 business outcomes.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from auth.models import Principal, Role, TokenKind
from auth.policies import Policy, evaluate, needs_role
from auth.tokens import VerifyError
from auth.verdicts import Authentication, DenyReason, Verdict

if TYPE_CHECKING:
    from auth.resolver import PrincipalResolver
    from auth.roles import RoleCatalog
    from auth.store import UserStore
    from auth.tokens import CredentialVerifier

logger = logging.getLogger("devguild.auth")

_BEARER_PREFIX = "bearer "

_VERIFY_ERROR_REASONS: dict[VerifyError, DenyReason] = {
    VerifyError.malformed: DenyReason.invalid_token,
    VerifyError.signature_invalid: DenyReason.invalid_token,
    VerifyError.expired: DenyReason.token_expired,
}


def extract_bearer_token(header_value: str | None) -> str | None:
    """Return the token from an "Authorization: Bearer <token>" value.

    None when the header is missing, blank, uses another scheme, or carries
    no token after the scheme.
    """
    if not header_value:
        return None
    value = header_value.strip()
    if not value.lower().startswith(_BEARER_PREFIX):
        return None
    token = value[len(_BEARER_PREFIX) :].strip()
    return token or None


class AuthorizationEngine:
    """Request-scoped authorization decisions over injected collaborators.

    One instance is built per process in the API lifespan. It holds no
    mutable state, so concurrent requests share it freely.
    """

    def __init__(
        self,
        verifier: CredentialVerifier,
        resolver: PrincipalResolver,
        role_store: UserStore,
        catalog: RoleCatalog,
    ) -> None:
        self.verifier = verifier
        self.resolver = resolver
        self.role_store = role_store
        self.catalog = catalog

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, header_value: str | None) -> Authentication:
        token = extract_bearer_token(header_value)
        if token is None:
            return Authentication(Verdict.deny(DenyReason.no_token))

        result = self.verifier.verify(token, TokenKind.access)
        if not result.ok:
            logger.warning("Rejected bearer token: %s", result.error.value)
            return Authentication(Verdict.deny(_VERIFY_ERROR_REASONS[result.error]))

        principal = self.resolver.resolve_by_id(result.claims.principal_id)
        if principal is None:
            logger.warning("Valid token for unknown principal %s", result.claims.principal_id)
            return Authentication(Verdict.deny(DenyReason.principal_not_found))
        if not principal.is_active:
            logger.warning("Valid token for deactivated principal %s", principal.id)
            return Authentication(Verdict.deny(DenyReason.principal_inactive))

        return Authentication(Verdict.allow(), principal=principal)

    def optional_authenticate(self, header_value: str | None) -> Authentication:
        """Authenticate when possible; any credential failure yields anonymous.

        Downstream handlers decide whether anonymous access is acceptable.
        Store errors still propagate.
        """
        outcome = self.authenticate(header_value)
        if outcome.is_authenticated:
            return outcome
        return Authentication(Verdict.allow())

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def current_role(self, principal: Principal) -> Role | None:
        """Resolve the principal's role; None if unassigned or deleted."""
        if principal.role_id is None:
            return None
        return self.role_store.get_role_by_id(principal.role_id)

    def authorize(self, principal: Principal, policy: Policy) -> Verdict:
        role = self.current_role(principal) if needs_role(policy, principal) else None
        verdict = evaluate(principal, role, self.catalog, policy)
        if not verdict.allowed:
            logger.info(
                "Denied %s for principal %s: %s",
                type(policy).__name__,
                principal.id,
                verdict.reason.value,
            )
        return verdict

    def role_level(self, principal: Principal) -> tuple[Role | None, int]:
        """Current role and its numeric level (0 when unassigned or deleted)."""
        role = self.current_role(principal)
        return role, self.catalog.level_of(role.name if role else None)
