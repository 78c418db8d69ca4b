"""Protected-entity guard.

Principals whose email is listed in ``PROTECTED_EMAILS`` (or that match an
extra predicate) can never be deleted. The guard is consulted before any
statement is issued and again before the finalizer's fallback delete.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass

import structlog

from safe_delete.core.config import settings
from safe_delete.deletion.errors import ProtectedEntityError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PrincipalSnapshot:
    """Fields of a principal row the guard and seed keys need."""

    id: str
    email: str | None = None
    phone: str | None = None
    role: str | None = None


ProtectionPredicate = Callable[[PrincipalSnapshot], bool]


def normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    normalized = email.strip().casefold()
    return normalized or None


class ProtectedEntityGuard:
    """Decides whether a principal may be deleted."""

    def __init__(
        self,
        protected_emails: Iterable[str] = (),
        predicates: Iterable[ProtectionPredicate] = (),
    ) -> None:
        self._protected_emails = frozenset(
            email for email in (normalize_email(e) for e in protected_emails) if email is not None
        )
        self._predicates = tuple(predicates)

    @classmethod
    def from_settings(cls, predicates: Iterable[ProtectionPredicate] = ()) -> "ProtectedEntityGuard":
        """Build a guard from ``settings.PROTECTED_EMAILS``."""
        return cls(settings.PROTECTED_EMAILS, predicates)

    def protection_reason(self, principal: PrincipalSnapshot) -> str | None:
        """Return why ``principal`` is protected, or None if it may be deleted."""
        email = normalize_email(principal.email)
        if email is not None and email in self._protected_emails:
            return "email is on the protected list"
        for predicate in self._predicates:
            if predicate(principal):
                return f"matched protection rule {getattr(predicate, '__name__', repr(predicate))}"
        return None

    def is_protected(self, principal: PrincipalSnapshot) -> bool:
        return self.protection_reason(principal) is not None

    def ensure_deletable(self, principal: PrincipalSnapshot) -> None:
        """
        Raise if ``principal`` must not be deleted.

        Raises:
            ProtectedEntityError: If the principal is protected
        """
        reason = self.protection_reason(principal)
        if reason is not None:
            logger.warning("protected_principal_deletion_refused", principal_id=principal.id, reason=reason)
            raise ProtectedEntityError(principal.id, reason)
