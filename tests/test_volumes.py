"""Tests for cache volume lifecycle."""

from datetime import datetime, timezone

import pytest

from parityci.engine import VolumeInfo
from parityci.errors import EngineError, ErrorKind
from parityci.volumes import (
    LABEL_ENV_ID,
    LABEL_MANAGED,
    LABEL_NAMESPACE,
    LABEL_VOLUME_KIND,
    CacheVolumes,
    ManagedVolume,
    VolumeManager,
    ownership_labels,
)

NS = "parityci_x_default_0123456789ab"


@pytest.fixture
def manager(mock_engine):
    return VolumeManager(mock_engine)


class TestCacheVolumes:
    """Tests for CacheVolumes naming."""

    def test_names(self):
        volumes = CacheVolumes.for_namespace(NS)
        assert volumes.registry == f"{NS}_registry"
        assert volumes.vcs_cache == f"{NS}_vcs_cache"
        assert volumes.build_output == f"{NS}_build_output"

    def test_kinds(self):
        kinds = [k for _, k in CacheVolumes.for_namespace(NS).with_kinds()]
        assert kinds == ["registry", "vcs-cache", "build-output"]


class TestEnsureCacheVolumes:
    """Tests for VolumeManager.ensure_cache_volumes."""

    def test_creates_missing_with_labels(self, manager, mock_engine):
        mock_engine.volume_exists.return_value = False
        manager.ensure_cache_volumes(NS, "envid")

        assert mock_engine.volume_create.call_count == 3
        name, labels = mock_engine.volume_create.call_args_list[0].args
        assert name == f"{NS}_registry"
        assert labels == {
            LABEL_MANAGED: "true",
            LABEL_NAMESPACE: NS,
            LABEL_ENV_ID: "envid",
            LABEL_VOLUME_KIND: "registry",
        }

    def test_existing_labeled_volume_reused(self, manager, mock_engine):
        mock_engine.volume_exists.return_value = True
        mock_engine.volume_inspect.return_value = VolumeInfo(
            name="v", labels=ownership_labels(NS, "envid", "registry")
        )
        manager.ensure_cache_volumes(NS, "envid")
        mock_engine.volume_create.assert_not_called()

    def test_existing_unlabeled_volume_warns(self, manager, mock_engine, caplog):
        """Unlabeled volumes are used, with a warning."""
        mock_engine.volume_exists.return_value = True
        mock_engine.volume_inspect.return_value = VolumeInfo(name="v", labels={})
        with caplog.at_level("WARNING", logger="parityci.volumes"):
            volumes = manager.ensure_cache_volumes(NS, "envid")
        assert volumes == CacheVolumes.for_namespace(NS)
        warnings = [r for r in caplog.records if getattr(r, "event", None) == "volume_missing_labels"]
        assert len(warnings) == 3

    def test_concurrent_creation_tolerated(self, manager, mock_engine):
        """Losing a creation race to another run is not an error."""
        mock_engine.volume_exists.side_effect = [False, True, True, True, True, True]
        mock_engine.volume_create.side_effect = EngineError(ErrorKind.COMMAND_FAILED, "podman volume create")
        mock_engine.volume_inspect.return_value = VolumeInfo(
            name="v", labels=ownership_labels(NS, "envid", "x")
        )
        manager.ensure_cache_volumes(NS, "envid")

    def test_creation_failure_propagates(self, manager, mock_engine):
        mock_engine.volume_exists.return_value = False
        mock_engine.volume_create.side_effect = EngineError(ErrorKind.STORAGE_ERROR, "podman volume create")
        with pytest.raises(EngineError) as exc_info:
            manager.ensure_cache_volumes(NS, "envid")
        assert exc_info.value.kind == ErrorKind.STORAGE_ERROR

    def test_inspection_failure_warns(self, manager, mock_engine, caplog):
        """An existing volume that cannot be inspected is still used."""
        mock_engine.volume_exists.return_value = True
        mock_engine.volume_inspect.side_effect = EngineError(ErrorKind.UNKNOWN, "podman volume inspect")
        with caplog.at_level("WARNING", logger="parityci.volumes"):
            volumes = manager.ensure_cache_volumes(NS, "envid")
        assert volumes == CacheVolumes.for_namespace(NS)
        mock_engine.volume_create.assert_not_called()
        warnings = [r for r in caplog.records if getattr(r, "event", None) == "volume_inspect_failed"]
        assert len(warnings) == 3


class TestListManaged:
    """Tests for VolumeManager.list_managed."""

    def test_filters_by_managed_label_and_skips_unowned(self, manager, mock_engine):
        created = datetime(2026, 1, 1, tzinfo=timezone.utc)
        mock_engine.volume_list.return_value = ["a", "b"]
        mock_engine.volume_inspect.side_effect = [
            VolumeInfo(name="a", created_at=created, labels={LABEL_MANAGED: "true", LABEL_NAMESPACE: "ns1"}),
            VolumeInfo(name="b", created_at=created, labels={LABEL_MANAGED: "true"}),
        ]

        assert manager.list_managed() == [ManagedVolume(name="a", namespace="ns1", created_at=created)]
        mock_engine.volume_list.assert_called_once_with(label=(LABEL_MANAGED, "true"))

    def test_remove_forces(self, manager, mock_engine):
        manager.remove("a")
        mock_engine.volume_remove.assert_called_once_with("a", force=True)
