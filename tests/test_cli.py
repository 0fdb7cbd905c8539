"""Tests for parityci CLI commands."""

import json
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from parityci import __version__
from parityci.cli import main
from parityci.doctor import Check, CheckStatus
from parityci.engine import ExecResult
from parityci.errors import EngineNotFoundError
from parityci.run_store import FileManifestStore
from parityci.volumes import ManagedVolume, VolumeManager


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def project_file(repo_root, project_dict):
    path = repo_root / "parityci.yaml"
    path.write_text(yaml.safe_dump(project_dict))
    return path


class TestRunCommand:
    """Tests for `parityci run`."""

    def test_dry_run(self, runner, project_file):
        """Dry-run echoes commands and writes a manifest without an engine."""
        with patch("parityci.cli.ContainerEngine.detect") as detect:
            result = runner.invoke(main, ["run", "-c", str(project_file), "--dry-run"])
            detect.assert_not_called()

        assert result.exit_code == 0, result.output
        assert "+ cargo fmt --check" in result.output
        assert "+ cargo test" in result.output
        assert "manifest: " in result.output
        assert "succeeded" in result.output

    def test_dry_run_manifest_visible_to_show(self, runner, project_file):
        runner.invoke(main, ["run", "-c", str(project_file), "--dry-run"])
        result = runner.invoke(main, ["manifest", "show", "--latest"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["project"] == "x"
        assert [s["name"] for s in data["steps"]] == ["fmt", "test"]
        assert data["base_image_digest_status"] == "unknown"

    def test_engine_missing_prints_hint(self, runner, project_file):
        with patch("parityci.cli.ContainerEngine.detect", side_effect=EngineNotFoundError("podman")):
            result = runner.invoke(main, ["run", "-c", str(project_file)])

        assert result.exit_code == 1
        assert "error: podman not found on PATH" in result.output
        assert "hint: the container engine is not installed" in result.output

    def test_jsonl_suppresses_hint(self, runner, project_file):
        with patch("parityci.cli.ContainerEngine.detect", side_effect=EngineNotFoundError("podman")):
            result = runner.invoke(main, ["--log-format", "jsonl", "run", "-c", str(project_file)])

        assert result.exit_code == 1
        assert "error: podman not found on PATH" in result.output
        assert "hint:" not in result.output

    def test_successful_run(self, runner, project_file, mock_engine):
        with patch("parityci.cli.ContainerEngine.detect", return_value=mock_engine):
            result = runner.invoke(main, ["run", "-c", str(project_file)])

        assert result.exit_code == 0, result.output
        assert "manifest: " in result.output
        assert mock_engine.run_capture_allow_failure.call_count == 2

    def test_failed_step_exits_nonzero(self, runner, project_file, mock_engine):
        mock_engine.run_capture_allow_failure.return_value = ExecResult(
            exit_code=101, duration_ms=1, stdout=b"", stderr=b"test failed"
        )
        with patch("parityci.cli.ContainerEngine.detect", return_value=mock_engine):
            result = runner.invoke(main, ["run", "-c", str(project_file)])

        assert result.exit_code == 1
        assert "manifest: " in result.output
        assert "error: step 'fmt' failed" in result.output
        assert "hint: the container step failed" in result.output

    def test_unknown_job(self, runner, project_file):
        result = runner.invoke(main, ["run", "-c", str(project_file), "--job", "nope", "--dry-run"])
        assert result.exit_code == 1
        assert "unknown job 'nope'" in result.output
        assert "hint:" not in result.output

    def test_missing_project_file(self, runner, tmp_path):
        result = runner.invoke(main, ["run", "-c", str(tmp_path / "absent.yaml"), "--dry-run"])
        assert result.exit_code == 1
        assert "project file not found" in result.output

    def test_broken_tool_config(self, runner, project_file, tmp_path):
        home = tmp_path / "home"
        home.mkdir()
        (home / "config.yaml").write_text("bogus: 1\n")
        result = runner.invoke(main, ["run", "-c", str(project_file), "--dry-run"])
        assert result.exit_code == 1
        assert "config not loaded" in result.output

    def test_unwritable_state_dir(self, runner, project_file):
        """Filesystem errors while recording the run print an error line, not a traceback."""
        with patch.object(FileManifestStore, "write", side_effect=PermissionError("read-only file system")):
            result = runner.invoke(main, ["run", "-c", str(project_file), "--dry-run"])

        assert result.exit_code == 1
        assert "error: read-only file system" in result.output
        assert not isinstance(result.exception, PermissionError)


class TestManifestCommands:
    """Tests for `parityci manifest`."""

    def test_show_requires_selector(self, runner):
        result = runner.invoke(main, ["manifest", "show"])
        assert result.exit_code == 2
        assert "--latest" in result.output

    def test_show_without_runs(self, runner):
        result = runner.invoke(main, ["manifest", "show", "--latest"])
        assert result.exit_code == 1
        assert "no manifest found" in result.output

    def test_list(self, runner, project_file):
        assert "No runs recorded." in runner.invoke(main, ["manifest", "list"]).output

        runner.invoke(main, ["run", "-c", str(project_file), "--dry-run"])
        result = runner.invoke(main, ["manifest", "list"])
        assert result.exit_code == 0
        assert "x/default  ok" in result.output


class TestPruneCommand:
    """Tests for `parityci prune`."""

    @pytest.fixture
    def volumes(self):
        old = datetime(2026, 1, 1, tzinfo=timezone.utc)
        new = datetime(2026, 6, 1, tzinfo=timezone.utc)
        return [
            ManagedVolume("old_registry", "old", old),
            ManagedVolume("old_vcs_cache", "old", old),
            ManagedVolume("new_registry", "new", new),
        ]

    def test_plan_is_dry_run_by_default(self, runner, mock_engine, volumes):
        with patch("parityci.cli.ContainerEngine.detect", return_value=mock_engine), \
                patch.object(VolumeManager, "list_managed", return_value=volumes):
            result = runner.invoke(main, ["prune", "--keep", "1"])

        assert result.exit_code == 0, result.output
        assert "prune plan: delete 2 volumes across 1 namespaces" in result.output
        assert "  - old_registry" in result.output
        assert "dry-run only" in result.output
        mock_engine.volume_remove.assert_not_called()

    def test_apply(self, runner, mock_engine, volumes):
        with patch("parityci.cli.ContainerEngine.detect", return_value=mock_engine), \
                patch.object(VolumeManager, "list_managed", return_value=volumes):
            result = runner.invoke(main, ["prune", "--keep", "1", "--yes"])

        assert result.exit_code == 0, result.output
        assert "removed old_vcs_cache" in result.output
        assert mock_engine.volume_remove.call_count == 2
        assert "prune complete" in result.output

    def test_nothing_managed(self, runner, mock_engine):
        with patch("parityci.cli.ContainerEngine.detect", return_value=mock_engine), \
                patch.object(VolumeManager, "list_managed", return_value=[]):
            result = runner.invoke(main, ["prune"])
        assert "no parityci-managed volumes" in result.output

    def test_within_policy(self, runner, mock_engine, volumes):
        with patch("parityci.cli.ContainerEngine.detect", return_value=mock_engine), \
                patch.object(VolumeManager, "list_managed", return_value=volumes):
            result = runner.invoke(main, ["prune"])
        assert "keep=3" in result.output
        assert "nothing to prune" in result.output

    def test_negative_keep_rejected(self, runner):
        result = runner.invoke(main, ["prune", "--keep", "-1"])
        assert result.exit_code == 2


class TestTemplatesCommands:
    """Tests for `parityci templates` and the global --templates-dir."""

    @pytest.fixture
    def templates_dir(self, tmp_path):
        root = tmp_path / "templates"
        (root / "zig").mkdir(parents=True)
        (root / "zig" / "Containerfile").write_text("FROM zig\n")
        (root / "rust-debian").mkdir()
        (root / "rust-debian" / "Containerfile").write_text("FROM custom\n")
        return root

    def test_list_builtin(self, runner):
        result = runner.invoke(main, ["templates", "list"])
        assert result.exit_code == 0
        assert "rust-debian  builtin" in result.output
        assert "python-debian  builtin" in result.output

    def test_list_with_templates_dir(self, runner, templates_dir):
        result = runner.invoke(main, ["--templates-dir", str(templates_dir), "templates", "list"])
        assert result.exit_code == 0
        assert f"zig  {templates_dir / 'zig'}" in result.output
        assert f"rust-debian  {templates_dir / 'rust-debian'}" in result.output
        assert "cpp-debian  builtin" in result.output

    def test_where(self, runner, templates_dir):
        assert runner.invoke(main, ["templates", "where", "rust-debian"]).output.strip() == "builtin"

        result = runner.invoke(main, ["--templates-dir", str(templates_dir), "templates", "where", "zig"])
        assert result.output.strip() == str(templates_dir / "zig")

    def test_where_unknown(self, runner):
        result = runner.invoke(main, ["templates", "where", "nope"])
        assert result.exit_code == 1
        assert "unknown container template 'nope'" in result.output

    def test_templates_dir_flag_overrides_environment(self, runner, templates_dir, tmp_path, monkeypatch):
        monkeypatch.setenv("PARITYCI_TEMPLATES_DIR", str(tmp_path / "elsewhere"))
        result = runner.invoke(main, ["--templates-dir", str(templates_dir), "templates", "where", "zig"])
        assert result.exit_code == 0
        assert result.output.strip() == str(templates_dir / "zig")

    def test_templates_dir_used_by_run(self, runner, project_dict, repo_root, templates_dir):
        """A template that only exists in --templates-dir is accepted by run."""
        project_dict["profiles"]["dev"]["container"] = "zig"
        path = repo_root / "parityci.yaml"
        path.write_text(yaml.safe_dump(project_dict))

        result = runner.invoke(main, ["--templates-dir", str(templates_dir), "run", "-c", str(path), "--dry-run"])
        assert result.exit_code == 0, result.output


class TestMiscCommands:
    """Tests for doctor, version and init-config."""

    def test_version(self, runner):
        result = runner.invoke(main, ["version"])
        assert result.output.strip() == f"parityci {__version__}"

    def test_version_option(self, runner):
        assert __version__ in runner.invoke(main, ["--version"]).output

    def test_init_config(self, runner, tmp_path):
        result = runner.invoke(main, ["init-config"])
        assert result.exit_code == 0
        assert (tmp_path / "home" / "config.yaml").exists()

        again = runner.invoke(main, ["init-config"])
        assert again.exit_code == 1
        assert "--force" in again.output

        forced = runner.invoke(main, ["init-config", "--force"])
        assert forced.exit_code == 0

    def test_doctor_failure_exit_code(self, runner):
        checks = [Check(CheckStatus.OK, "state dir writable"), Check(CheckStatus.FAIL, "podman not found on PATH")]
        with patch("parityci.cli.run_checks", return_value=checks):
            result = runner.invoke(main, ["doctor"])
        assert result.exit_code == 1
        assert "FAIL podman not found on PATH" in result.output
        assert "OK   state dir writable" in result.output

    def test_doctor_warnings_pass(self, runner):
        with patch("parityci.cli.run_checks", return_value=[Check(CheckStatus.WARN, "rootless: false")]):
            result = runner.invoke(main, ["doctor"])
        assert result.exit_code == 0
