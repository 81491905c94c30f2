"""Authorization policies for ledger mutations.

A policy is a plain capability predicate over the calling :class:`Actor`. The
ledger only asks "may this actor write prices?"; who the designated operators
are is configuration, not code.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

OPERATORS_ENV_VAR = "FUEL_LEDGER_OPERATORS"
ROLES_ENV_VAR = "FUEL_LEDGER_ROLES"
DEFAULT_WRITER_ROLE = "price-admin"


@dataclass(frozen=True, slots=True)
class Actor:
    """The identity performing a ledger operation (recorded in the edit log)."""

    id: str
    email: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)


type AccessPolicy = Callable[[Actor], bool]


def _split_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [p.strip() for p in raw.split(",") if p.strip()]


def allow_identities(identities: Iterable[str]) -> AccessPolicy:
    """Allow actors whose id or email (case-insensitive) is in ``identities``."""

    allowed = frozenset(i.strip().lower() for i in identities if i and i.strip())

    def _policy(actor: Actor) -> bool:
        if actor.id.strip().lower() in allowed:
            return True
        return bool(actor.email) and actor.email.strip().lower() in allowed

    return _policy


def require_roles(*roles: str) -> AccessPolicy:
    """Allow actors holding at least one of ``roles``."""

    wanted = frozenset(roles)

    def _policy(actor: Actor) -> bool:
        return bool(wanted & actor.roles)

    return _policy


def any_of(*policies: AccessPolicy) -> AccessPolicy:
    def _policy(actor: Actor) -> bool:
        return any(p(actor) for p in policies)

    return _policy


def deny_all(actor: Actor) -> bool:
    return False


def policy_from_env() -> AccessPolicy:
    """Build the write policy from ``FUEL_LEDGER_OPERATORS`` / ``FUEL_LEDGER_ROLES``.

    Operators listed by id or email are always allowed; otherwise the actor
    needs one of the configured roles (``price-admin`` when unset).
    """

    operators = _split_csv(os.getenv(OPERATORS_ENV_VAR))
    roles = _split_csv(os.getenv(ROLES_ENV_VAR)) or [DEFAULT_WRITER_ROLE]
    return any_of(allow_identities(operators), require_roles(*roles))


__all__ = [
    "Actor",
    "AccessPolicy",
    "allow_identities",
    "require_roles",
    "any_of",
    "deny_all",
    "policy_from_env",
]
