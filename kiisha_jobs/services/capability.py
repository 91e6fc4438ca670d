"""
Capability gate consulted by the cron scheduler before every run.

Contract:
    ``CapabilityRegistry.check(organization_id, actor_id, capability_id)``
    returns a ``CapabilityDecision``.  The registry itself (definitions,
    per-organization enablement, role restrictions) lives outside this
    package; ``StaticCapabilityRegistry`` is an in-memory implementation
    for tests and single-process deployments.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Protocol, runtime_checkable
from uuid import UUID


@dataclass(frozen=True)
class CapabilityDecision:
    """Outcome of a capability check.  ``reason`` explains a denial."""

    allowed: bool
    reason: str = ""


@runtime_checkable
class CapabilityRegistry(Protocol):
    """Authorizes an actor to run a capability for an organization."""

    def check(
        self,
        organization_id: UUID,
        actor_id: UUID,
        capability_id: str,
    ) -> CapabilityDecision:
        ...


class StaticCapabilityRegistry:
    """In-memory capability registry.

    A capability must be registered and active, and granted to the
    organization.  A grant may be restricted to a set of actors; an
    unrestricted grant allows any actor in the organization.
    """

    def __init__(self) -> None:
        self._active: dict[str, bool] = {}
        self._grants: dict[tuple[UUID, str], frozenset[UUID] | None] = {}

    def register(self, capability_id: str, *, active: bool = True) -> None:
        self._active[capability_id] = active

    def disable(self, capability_id: str) -> None:
        if capability_id in self._active:
            self._active[capability_id] = False

    def grant(
        self,
        organization_id: UUID,
        capability_id: str,
        actors: Iterable[UUID] | None = None,
    ) -> None:
        self._grants[(organization_id, capability_id)] = (
            frozenset(actors) if actors is not None else None
        )

    def revoke(self, organization_id: UUID, capability_id: str) -> None:
        self._grants.pop((organization_id, capability_id), None)

    def check(
        self,
        organization_id: UUID,
        actor_id: UUID,
        capability_id: str,
    ) -> CapabilityDecision:
        if capability_id not in self._active:
            return CapabilityDecision(False, "Capability not found")
        if not self._active[capability_id]:
            return CapabilityDecision(False, "Capability is disabled system-wide")

        key = (organization_id, capability_id)
        if key not in self._grants:
            return CapabilityDecision(False, "Capability not enabled for organization")

        actors = self._grants[key]
        if actors is not None and actor_id not in actors:
            return CapabilityDecision(False, "User not permitted to use this capability")
        return CapabilityDecision(True)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> StaticCapabilityRegistry:
        """Build a registry from a parsed YAML/JSON document::

            capabilities:
              send_digest:
                active: true
                grants:
                  - organization_id: 6f1c...
                    actors: [2b9e...]   # omit for any actor
        """
        registry = cls()
        capabilities = data.get("capabilities") or {}
        if not isinstance(capabilities, Mapping):
            raise ValueError("'capabilities' must be a mapping")
        for capability_id, spec in capabilities.items():
            spec = spec or {}
            registry.register(str(capability_id), active=bool(spec.get("active", True)))
            for grant in spec.get("grants") or ():
                actors = grant.get("actors")
                registry.grant(
                    UUID(str(grant["organization_id"])),
                    str(capability_id),
                    [UUID(str(a)) for a in actors] if actors is not None else None,
                )
        return registry
