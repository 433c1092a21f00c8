"""
auth/tokens.py -- Credential verification, token issuance and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Two token kinds with independent secrets and
       expiry windows: access (short-lived, default 4h) and refresh (long-lived,
       default 7d). The "type" claim records the kind; a token is only ever
       verified against the secret of the kind the caller asks for, so trust in
       one kind never depends on the other.

  Verification order: the expiry check runs on the unverified claims BEFORE
       the signature check. An expired token reports Expired whatever its
       signature, which keeps client handling simple (re-login) and means the
       signature is only checked for tokens that could otherwise be accepted.

  No revocation: tokens are self-contained and never blacklisted. Role changes
       and deactivation still take effect on the next request because the
       engine re-fetches the principal (see auth/resolver.py).

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_principal() so response time
       does not reveal whether an email is registered [C1].

  Secrets: sourced from core.config.get_settings() once, in
       CredentialVerifier.from_settings(). The Settings validator refuses short
       or missing secrets in production [M6] [M7].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.models import Claims, TokenKind
from core.config import Settings

if TYPE_CHECKING:
    from auth.models import Principal
    from auth.store import UserStore

logger = logging.getLogger("devguild.auth")

_ALGORITHM = "HS256"

# bcrypt only reads the first 72 bytes, and bcrypt>=5 refuses longer input.
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Callers must keep the UTF-8 encoding within MAX_PASSWORD_BYTES; the API
    models and the CLI reject longer passwords before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Corrupt or non-bcrypt hash in the store.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones [C1].
_DUMMY_HASH: str = hash_password("devguild_timing_dummy")


def authenticate_principal(store: UserStore, email: str, password: str) -> Principal | None:
    """Check an email/password login with timing equalization [C1].

    bcrypt runs whether or not the email exists, so an attacker cannot tell
    registered addresses apart by response time. Deactivated principals fail
    like a wrong password.

    Returns the Principal on success, None on any failure.
    """
    principal = store.get_by_email(email)
    if principal is None or principal.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, principal.hashed_password):
        return None
    if not principal.is_active:
        return None
    return principal


# ---------------------------------------------------------------------------
# Token verification results
# ---------------------------------------------------------------------------


class VerifyError(str, Enum):
    malformed = "malformed"
    signature_invalid = "signature_invalid"
    expired = "expired"


@dataclass(frozen=True)
class VerifyResult:
    """Either verified claims or the reason verification failed. Never both."""

    claims: Claims | None = None
    error: VerifyError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class TokenConfig:
    secret: str
    expire_seconds: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# CredentialVerifier
# ---------------------------------------------------------------------------


class CredentialVerifier:
    """Issue and verify signed bearer tokens. Stateless and side-effect free.

    Usage:
        verifier = CredentialVerifier.from_settings(get_settings())
        token = verifier.issue(principal.id, principal.email, principal.role_id)
        result = verifier.verify(token)
        if result.ok:
            principal_id = result.claims.principal_id
    """

    def __init__(
        self,
        access: TokenConfig,
        refresh: TokenConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._configs = {TokenKind.access: access, TokenKind.refresh: refresh}
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> CredentialVerifier:
        return cls(
            access=TokenConfig(settings.jwt_secret, settings.jwt_expire_seconds),
            refresh=TokenConfig(settings.jwt_refresh_secret, settings.jwt_refresh_expire_seconds),
            clock=clock,
        )

    def expires_in(self, kind: TokenKind = TokenKind.access) -> int:
        """Lifetime in seconds of newly issued tokens of this kind."""
        return self._configs[kind].expire_seconds

    def issue(
        self,
        principal_id: str,
        email: str,
        role_id: str | None = None,
        kind: TokenKind = TokenKind.access,
    ) -> str:
        """Sign a token for the principal. iat is now, exp is now + the kind's expiry."""
        config = self._configs[kind]
        issued_at = int(self._clock().timestamp())
        payload = {
            "sub": str(principal_id),
            "email": email,
            "type": kind.value,
            "iat": issued_at,
            "exp": issued_at + config.expire_seconds,
        }
        if role_id is not None:
            payload["role_id"] = role_id
        return jwt.encode(payload, config.secret, algorithm=_ALGORITHM)

    def verify(self, raw_token: str, kind: TokenKind = TokenKind.access) -> VerifyResult:
        """Verify a token of the given kind. Never raises for bad input.

        Checks, in order:
          1. The token parses as a JWT               -> else malformed
          2. sub, email, iat, exp are present        -> else malformed
          3. now <= exp                              -> else expired
          4. Signature matches the kind's secret     -> else signature_invalid
          5. The type claim matches the kind         -> else malformed
        """
        try:
            unverified = jwt.get_unverified_claims(raw_token)
        except JWTError:
            return VerifyResult(error=VerifyError.malformed)

        claims = _claims_from_payload(unverified)
        if claims is None:
            return VerifyResult(error=VerifyError.malformed)

        if self._clock().timestamp() > claims.expires_at:
            return VerifyResult(error=VerifyError.expired)

        try:
            # Expiry already enforced above against the injected clock.
            jwt.decode(
                raw_token,
                self._configs[kind].secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError:
            return VerifyResult(error=VerifyError.signature_invalid)

        if claims.kind is not kind:
            return VerifyResult(error=VerifyError.malformed)
        return VerifyResult(claims=claims)


def _claims_from_payload(payload: dict) -> Claims | None:
    sub = payload.get("sub")
    email = payload.get("email")
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub or not isinstance(email, str):
        return None
    if not isinstance(iat, (int, float)) or not isinstance(exp, (int, float)):
        return None
    if isinstance(iat, bool) or isinstance(exp, bool):
        return None
    # JSON allows Infinity and NaN, which int() cannot convert.
    if any(isinstance(v, float) and not math.isfinite(v) for v in (iat, exp)):
        return None
    try:
        kind = TokenKind(payload.get("type", TokenKind.access.value))
    except ValueError:
        return None
    role_id = payload.get("role_id")
    return Claims(
        principal_id=sub,
        email=email,
        issued_at=int(iat),
        expires_at=int(exp),
        kind=kind,
        role_id=role_id if isinstance(role_id, str) else None,
    )
