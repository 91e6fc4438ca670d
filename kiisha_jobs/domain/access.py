"""
kiisha_jobs.domain.access -- Caller identity and ownership predicate.

The kernel does not authenticate anyone.  The identity/role provider in the
outer layer builds a ``Caller`` and hands it to the access guard; this module
only decides visibility.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class Caller:
    """Authenticated caller as supplied by the identity provider."""

    user_id: UUID
    is_admin: bool = False


def can_access(caller: Caller, owner_user_id: UUID | None) -> bool:
    """True when the caller may see or operate on a job with this owner.

    Admins are unrestricted.  Everyone else needs an exact owner match, so
    an ownerless (system) job is admin-only.
    """
    if caller.is_admin:
        return True
    return owner_user_id is not None and owner_user_id == caller.user_id
