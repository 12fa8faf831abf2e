"""Credential to tenant resolution with a short-lived cache."""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from rag_gateway.adapters.supabase_store import BackingStoreError, SupabaseRestStore
from rag_gateway.infra.background import BackgroundTaskSet
from rag_gateway.infra.cache import TTLCache
from rag_gateway.infra.metrics import GatewayMetrics

logger = logging.getLogger(__name__)

# Backing store session tokens are JWTs: three base64url segments, header starts with '{"' -> "eyJ"
_JWT_PATTERN = re.compile(r"^eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$")


class AuthBackendError(Exception):
    """The credential could not be checked because the backing store failed."""


@dataclass(frozen=True)
class AuthResult:
    """Outcome of resolving a credential."""
    tenant_id: Optional[str]
    valid: bool

    @classmethod
    def invalid(cls) -> "AuthResult":
        return cls(tenant_id=None, valid=False)


def looks_like_foreign_token(credential: str) -> bool:
    """True for backing store session tokens, which are never gateway keys."""
    return bool(_JWT_PATTERN.match(credential))


def mask_credential(credential: Optional[str]) -> str:
    """Short display form of a credential for status output."""
    if not credential:
        return ""
    if len(credential) <= 10:
        return credential[:3] + "..."
    return f"{credential[:6]}...{credential[-4:]}"


class AuthResolver:
    """
    Maps bearer credentials to tenant ids.

    Valid lookups are cached for `ttl_seconds`; invalid ones are not, so a
    key activated a moment ago works on the next attempt.
    """

    def __init__(
        self,
        data_store: Optional[SupabaseRestStore],
        background: BackgroundTaskSet,
        ttl_seconds: float = 30.0,
        metrics: Optional[GatewayMetrics] = None,
        cache: Optional[TTLCache] = None,
    ):
        self.data_store = data_store
        self.background = background
        self.cache: TTLCache = cache or TTLCache(ttl_seconds)
        self.metrics = metrics

    @property
    def open_mode(self) -> bool:
        """True when there is no backing store, so no tenant scoping exists."""
        return self.data_store is None

    async def resolve(self, credential: Optional[str]) -> AuthResult:
        """
        Resolve a credential to a tenant.

        Args:
            credential: Raw bearer credential (may be empty)

        Returns:
            AuthResult; tenant_id is None with valid=True in open mode

        Raises:
            AuthBackendError: If the backing store lookup fails
        """
        if not credential:
            return AuthResult.invalid()

        if looks_like_foreign_token(credential):
            logger.info("Rejected backing-store session token presented as gateway key")
            return AuthResult.invalid()

        if self.open_mode:
            return AuthResult(tenant_id=None, valid=True)

        tenant_id = self.cache.get(credential)
        if tenant_id is not None:
            self._record_lookup("hit")
            return AuthResult(tenant_id=tenant_id, valid=True)
        self._record_lookup("miss")

        try:
            row = await self.data_store.find_api_key(credential)
        except BackingStoreError as e:
            logger.error(f"API key lookup failed: {e}")
            raise AuthBackendError(str(e)) from e

        if not row or not row.get("user_id"):
            return AuthResult.invalid()

        tenant_id = str(row["user_id"])
        self.cache.set(credential, tenant_id)
        if row.get("id") is not None:
            self.background.spawn(self.data_store.touch_api_key(row["id"]), name="touch_api_key")
        return AuthResult(tenant_id=tenant_id, valid=True)

    def _record_lookup(self, result: str) -> None:
        if self.metrics:
            self.metrics.cache_lookups.labels(cache="auth", result=result).inc()
