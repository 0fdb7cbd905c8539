import pytest
from unittest.mock import MagicMock

from parityci.engine import ContainerEngine, ExecResult
from parityci.schemas import DigestStatus, ProjectDef
from parityci.utils import reset_logging


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Point every parityci directory at tmp_path and clear overrides."""
    monkeypatch.setenv("PARITYCI_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    for var in ("PARITYCI_ENGINE", "PARITYCI_LOG_FORMAT", "PARITYCI_LOG_LEVEL", "PARITYCI_TEMPLATES_DIR"):
        monkeypatch.delenv(var, raising=False)
    yield
    reset_logging()


@pytest.fixture
def project_dict() -> dict:
    """A project definition with one two-step job."""
    return {
        "version": 1,
        "project": "x",
        "profiles": {
            "dev": {"container": "rust-debian", "env": {"RUST_LOG": "info", "A": "1"}},
            "ubuntu": {"container": "docker.io/library/ubuntu:24.04"},
        },
        "jobs": {
            "default": {
                "profile": "dev",
                "step_order": ["fmt", "test"],
                "steps": {
                    "fmt": {"run": ["cargo", "fmt", "--check"]},
                    "test": {"run": ["cargo", "test"], "workdir": "crates", "env": {"A": "2"}},
                },
            },
        },
    }


@pytest.fixture
def project(project_dict) -> ProjectDef:
    return ProjectDef.from_dict(project_dict)


@pytest.fixture
def repo_root(tmp_path):
    """A repository checkout with the directories the sample steps use."""
    root = tmp_path / "repo"
    (root / "crates").mkdir(parents=True)
    return root


@pytest.fixture
def mock_engine():
    """A ContainerEngine double that never spawns a process."""
    engine = MagicMock(spec=ContainerEngine)
    engine.name = "podman"
    engine.binary = "/usr/bin/podman"
    engine.format_cmd.side_effect = lambda args: " ".join(["podman", *args])
    engine.image_exists.return_value = True
    engine.inspect_image_digest_status.return_value = ("sha256:abc", DigestStatus.PRESENT)
    engine.volume_exists.return_value = False
    engine.run_capture_allow_failure.return_value = ExecResult(
        exit_code=0, duration_ms=5, stdout=b"ok\n", stderr=b""
    )
    return engine
