"""Tests for parityci schemas.

Tests cover:
- ProjectDef structural validation (versions, orphans, duplicates, argv)
- Lookups of unknown jobs/profiles
- Manifest serialization and step-order invariant
"""

import copy

import pytest

from parityci.errors import ConfigurationError
from parityci.schemas import (
    MANIFEST_SCHEMA,
    DigestStatus,
    Manifest,
    ManifestResult,
    ManifestStep,
    ProjectDef,
    StepDef,
    StepStatus,
)


# =============================================================================
# PROJECT DEFINITION
# =============================================================================


class TestProjectDef:
    """Tests for ProjectDef validation."""

    def test_valid_project(self, project):
        """A well-formed definition loads."""
        assert project.project == "x"
        assert project.job("default").step_order == ("fmt", "test")
        assert project.job("default").steps["test"].workdir == "crates"

    def test_roundtrip_dict(self, project_dict):
        """to_dict/from_dict preserve the definition."""
        project = ProjectDef.from_dict(project_dict)
        assert ProjectDef.from_dict(project.to_dict()) == project

    def test_unsupported_version(self, project_dict):
        """Only version 1 is accepted."""
        project_dict["version"] = 2
        with pytest.raises(ConfigurationError, match="unsupported config version 2"):
            ProjectDef.from_dict(project_dict)

    def test_empty_project_name(self, project_dict):
        """Project name must be non-empty."""
        project_dict["project"] = "  "
        with pytest.raises(ConfigurationError, match="project must be non-empty"):
            ProjectDef.from_dict(project_dict)

    def test_missing_profile_reference(self, project_dict):
        """Jobs must reference an existing profile."""
        project_dict["jobs"]["default"]["profile"] = "nope"
        with pytest.raises(ConfigurationError, match="missing profile 'nope'"):
            ProjectDef.from_dict(project_dict)

    def test_duplicate_step_in_order(self, project_dict):
        """step_order cannot repeat a step."""
        project_dict["jobs"]["default"]["step_order"] = ["fmt", "fmt", "test"]
        with pytest.raises(ConfigurationError, match="duplicate step 'fmt'"):
            ProjectDef.from_dict(project_dict)

    def test_order_references_missing_step(self, project_dict):
        """Every ordered step must be defined."""
        project_dict["jobs"]["default"]["step_order"] = ["fmt", "test", "lint"]
        with pytest.raises(ConfigurationError, match="missing step 'lint'"):
            ProjectDef.from_dict(project_dict)

    def test_step_not_in_order(self, project_dict):
        """Every defined step must be ordered."""
        project_dict["jobs"]["default"]["step_order"] = ["fmt"]
        with pytest.raises(ConfigurationError, match="not listed in step_order"):
            ProjectDef.from_dict(project_dict)

    def test_empty_argv(self, project_dict):
        """A step's run list cannot be empty."""
        project_dict["jobs"]["default"]["steps"]["fmt"]["run"] = []
        with pytest.raises(ConfigurationError, match="non-empty 'run'"):
            ProjectDef.from_dict(project_dict)

    def test_unknown_keys_rejected(self, project_dict):
        """Typos in keys are errors, not silently ignored."""
        project_dict["jobs"]["default"]["steps"]["fmt"]["wrokdir"] = "x"
        with pytest.raises(ConfigurationError, match="unknown keys"):
            ProjectDef.from_dict(project_dict)

    def test_unknown_job_lookup(self, project):
        """Unknown jobs raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match="unknown job 'release'"):
            project.job("release")

    def test_unknown_profile_lookup(self, project):
        """Unknown profiles raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match="unknown profile 'prod'"):
            project.profile("prod")

    def test_env_values_are_strings(self, project_dict):
        """Environment values are normalized to strings."""
        project_dict["profiles"]["dev"]["env"]["THREADS"] = 4
        project = ProjectDef.from_dict(project_dict)
        assert project.profile("dev").env["THREADS"] == "4"


class TestStepDef:
    """Tests for StepDef serialization."""

    def test_to_dict_omits_defaults(self):
        """Optional fields are only emitted when set."""
        assert StepDef(run=("make",)).to_dict() == {"run": ["make"]}


# =============================================================================
# MANIFEST
# =============================================================================


def _manifest(**overrides) -> Manifest:
    fields = dict(
        tool_version="0.1.0",
        timestamp="2026-01-02T03:04:05Z",
        project="x",
        job="default",
        profile="dev",
        namespace="parityci_x_default_0123456789ab",
        env_id="0123456789abcdef",
        base_image_digest="sha256:abc",
        base_image_digest_status=DigestStatus.PRESENT,
        steps=(
            ManifestStep("fmt", ("cargo", "fmt"), 12, 0, "logs/fmt.stdout", "logs/fmt.stderr"),
        ),
        result=ManifestResult(ok=True, exit_code=0),
    )
    fields.update(overrides)
    return Manifest(**fields)


class TestManifest:
    """Tests for the Manifest schema."""

    def test_to_dict_shape(self):
        """Serialized manifests carry every documented field."""
        data = _manifest().to_dict()
        assert data["schema"] == MANIFEST_SCHEMA
        assert set(data) == {
            "schema", "tool_version", "timestamp", "project", "job", "profile",
            "namespace", "env_id", "base_image_digest", "base_image_digest_status",
            "steps", "result",
        }
        assert data["steps"][0] == {
            "name": "fmt",
            "argv": ["cargo", "fmt"],
            "duration_ms": 12,
            "exit_code": 0,
            "stdout_path": "logs/fmt.stdout",
            "stderr_path": "logs/fmt.stderr",
        }
        assert data["result"] == {"ok": True, "exit_code": 0, "error": None}

    def test_from_dict_roundtrip(self):
        """from_dict(to_dict(m)) == m."""
        manifest = _manifest()
        assert Manifest.from_dict(copy.deepcopy(manifest.to_dict())) == manifest

    def test_rejects_unknown_schema(self):
        """Manifests from another schema version are rejected."""
        data = _manifest().to_dict()
        data["schema"] = "parityci-manifest.v0"
        with pytest.raises(ValueError, match="unsupported manifest schema"):
            Manifest.from_dict(data)

    def test_failed_step_must_be_last(self):
        """No step record may follow a failed step."""
        steps = (
            ManifestStep("a", ("false",), 1, 1),
            ManifestStep("b", ("true",), 1, 0),
        )
        with pytest.raises(ValueError, match="followed by further step records"):
            _manifest(steps=steps)


class TestStepStatus:
    """Tests for StepStatus values."""

    def test_values(self):
        assert [s.value for s in StepStatus] == [
            "pending", "running", "succeeded", "failed", "skipped",
        ]
