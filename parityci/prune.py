"""
Prune planning.

select_prune_candidates is a generic keep-N-newest / max-age evaluator over
named, timestamped resources. plan_prune_volumes applies it to managed cache
volumes grouped by namespace: a namespace's timestamp is the newest creation
time among its volumes, and a pruned namespace loses all of its volumes.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from parityci.errors import ConfigurationError
from parityci.volumes import ManagedVolume


@dataclass(frozen=True)
class Resource:
    """A named resource with a creation time."""
    name: str
    created: datetime


@dataclass(frozen=True)
class PrunePolicy:
    """
    Keep the `keep` newest resources; of the rest, prune only those older
    than `older_than_days` when it is set.
    """
    keep: int
    older_than_days: Optional[int] = None

    def __post_init__(self):
        if self.keep < 0:
            raise ConfigurationError("keep must be >= 0")
        if self.older_than_days is not None and self.older_than_days < 0:
            raise ConfigurationError("older_than_days must be >= 0")


@dataclass(frozen=True)
class PrunePlan:
    """Namespaces selected for pruning and the volumes that would be deleted."""
    candidates: list[Resource]
    volumes: list[str]

    @property
    def empty(self) -> bool:
        return not self.volumes


def select_prune_candidates(
    resources: list[Resource],
    policy: PrunePolicy,
    now: Optional[datetime] = None,
) -> list[Resource]:
    """
    Select resources outside the newest-N set (and past the age cutoff, if set).

    Input order does not matter; resources are ranked newest first.
    """
    now = now or datetime.now(timezone.utc)
    ranked = sorted(resources, key=lambda r: (r.created, r.name), reverse=True)

    cutoff = None
    if policy.older_than_days is not None:
        cutoff = now - timedelta(days=policy.older_than_days)

    candidates = []
    for idx, resource in enumerate(ranked):
        if idx < policy.keep:
            continue
        if cutoff is not None and resource.created >= cutoff:
            continue
        candidates.append(resource)
    return candidates


def plan_prune_volumes(
    volumes: list[ManagedVolume],
    policy: PrunePolicy,
    now: Optional[datetime] = None,
) -> PrunePlan:
    """
    Plan which managed volumes to delete.

    A namespace none of whose volumes reports a creation time is treated as
    created now, so it is never ranked oldest.
    """
    now = now or datetime.now(timezone.utc)

    by_namespace: dict[str, list[ManagedVolume]] = defaultdict(list)
    for volume in volumes:
        by_namespace[volume.namespace].append(volume)

    bases = []
    for namespace, members in sorted(by_namespace.items()):
        times = [m.created_at for m in members if m.created_at is not None]
        bases.append(Resource(name=namespace, created=max(times) if times else now))

    candidates = select_prune_candidates(bases, policy, now=now)

    to_delete = set()
    for candidate in candidates:
        to_delete.update(m.name for m in by_namespace[candidate.name])

    return PrunePlan(candidates=candidates, volumes=sorted(to_delete))
