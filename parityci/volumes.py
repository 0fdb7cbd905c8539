"""
Cache volume lifecycle.

Every run mounts three cache volumes named after its namespace. Volumes
parityci creates carry an ownership label set; only labeled volumes are ever
considered for pruning. A pre-existing volume without labels is still used,
with a warning, but stays ineligible for pruning.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from parityci.engine import ContainerEngine
from parityci.errors import EngineError

logger = logging.getLogger(__name__)

LABEL_MANAGED = "parityci.managed"
LABEL_NAMESPACE = "parityci.namespace"
LABEL_ENV_ID = "parityci.env_id"
LABEL_VOLUME_KIND = "parityci.volume_kind"

KIND_REGISTRY = "registry"
KIND_VCS_CACHE = "vcs-cache"
KIND_BUILD_OUTPUT = "build-output"


@dataclass(frozen=True)
class CacheVolumes:
    """Names of the three cache volumes belonging to one namespace."""
    registry: str
    vcs_cache: str
    build_output: str

    @classmethod
    def for_namespace(cls, namespace: str) -> "CacheVolumes":
        return cls(
            registry=f"{namespace}_registry",
            vcs_cache=f"{namespace}_vcs_cache",
            build_output=f"{namespace}_build_output",
        )

    def with_kinds(self) -> list[tuple[str, str]]:
        return [
            (self.registry, KIND_REGISTRY),
            (self.vcs_cache, KIND_VCS_CACHE),
            (self.build_output, KIND_BUILD_OUTPUT),
        ]


@dataclass(frozen=True)
class ManagedVolume:
    """A labeled volume as seen by the prune planner."""
    name: str
    namespace: str
    created_at: Optional[datetime]


def ownership_labels(namespace: str, env_id: str, kind: str) -> dict[str, str]:
    return {
        LABEL_MANAGED: "true",
        LABEL_NAMESPACE: namespace,
        LABEL_ENV_ID: env_id,
        LABEL_VOLUME_KIND: kind,
    }


class VolumeManager:
    """Create, inspect and list parityci cache volumes through the engine."""

    def __init__(self, engine: ContainerEngine):
        self.engine = engine

    def ensure_cache_volumes(self, namespace: str, env_id: str) -> CacheVolumes:
        """
        Make sure the namespace's cache volumes exist.

        Missing volumes are created with ownership labels. Existing volumes are
        reused as-is; when they lack the managed label, or cannot be inspected,
        a warning is logged.

        Raises:
            EngineError: If creation fails
        """
        volumes = CacheVolumes.for_namespace(namespace)
        for name, kind in volumes.with_kinds():
            if not self.engine.volume_exists(name):
                self._create(name, ownership_labels(namespace, env_id, kind))
                continue

            try:
                info = self.engine.volume_inspect(name)
            except EngineError as e:
                logger.warning(
                    f"Could not inspect existing volume {name}: {e}",
                    extra={"event": "volume_inspect_failed", "metadata": {"volume": name, "kind": e.kind.value}},
                )
                continue
            if info.labels.get(LABEL_MANAGED) != "true":
                logger.warning(
                    f"Volume {name} exists without parityci labels; it will not be pruned",
                    extra={"event": "volume_missing_labels", "metadata": {"volume": name}},
                )
        return volumes

    def _create(self, name: str, labels: dict[str, str]) -> None:
        try:
            self.engine.volume_create(name, labels)
        except EngineError:
            # Another run may have created it between the check and the create
            if self.engine.volume_exists(name):
                logger.info(
                    f"Volume {name} was created concurrently",
                    extra={"event": "volume_created", "metadata": {"volume": name, "concurrent": True}},
                )
                return
            raise
        logger.info(
            f"Created volume {name}",
            extra={"event": "volume_created", "metadata": {"volume": name, "labels": labels}},
        )

    def list_managed(self) -> list[ManagedVolume]:
        """
        List volumes bearing the managed label and a namespace label.

        Volumes without a namespace label are excluded entirely.
        """
        managed = []
        for name in self.engine.volume_list(label=(LABEL_MANAGED, "true")):
            info = self.engine.volume_inspect(name)
            namespace = info.labels.get(LABEL_NAMESPACE)
            if not namespace:
                continue
            managed.append(ManagedVolume(name=name, namespace=namespace, created_at=info.created_at))
        return managed

    def remove(self, name: str) -> None:
        self.engine.volume_remove(name, force=True)
        logger.info(
            f"Removed volume {name}",
            extra={"event": "prune_delete", "metadata": {"volume": name}},
        )
