"""
ManifestStore - Persist run manifests.

The ManifestStore manages:
- Per-run directories (holding logs/ and manifest.json)
- The run-scoped manifest, written once at the end of a run
- A "latest" copy of the most recent manifest (advisory; overwritten each run)

Storage backends:
- In-memory (for testing; logs still go to a directory)
- File-based (default; under the XDG state directory)
"""

import json
import random
import string
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from parityci.errors import ConfigurationError
from parityci.schemas import Manifest

MANIFEST_FILE = "manifest.json"
RUN_ID_SUFFIX_LEN = 10


def new_run_id() -> str:
    """
    Generate a run id: UTC timestamp plus a random alphanumeric suffix.

    Run ids sort chronologically (to the second), e.g. 20260102T030405Z-a1B2c3D4e5.
    """
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    alphabet = string.ascii_letters + string.digits
    suffix = "".join(random.choice(alphabet) for _ in range(RUN_ID_SUFFIX_LEN))
    return f"{ts}-{suffix}"


def now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _render(manifest: Manifest) -> str:
    return json.dumps(manifest.to_dict(), indent=2) + "\n"


class ManifestStore(ABC):
    """
    Abstract base class for manifest storage.

    Implementations must provide methods to:
    - Locate the directory for a run (logs are written beneath it)
    - Write a run's manifest and refresh the latest copy
    - Read manifests back by run id or as "latest"
    """

    @abstractmethod
    def run_dir(self, run_id: str) -> Path:
        """
        Directory for a run's artifacts.

        Args:
            run_id: The run identifier

        Returns:
            Path to the run directory (not necessarily created yet)
        """
        pass

    @abstractmethod
    def write(self, run_id: str, manifest: Manifest) -> Path:
        """
        Write the run manifest, then overwrite the latest copy.

        The two writes are independent; a failure between them leaves the
        latest copy stale.

        Returns:
            Path of the run-scoped manifest
        """
        pass

    @abstractmethod
    def read(self, run_id: str) -> Optional[Manifest]:
        """Read a run's manifest, or None if it does not exist."""
        pass

    @abstractmethod
    def read_latest(self) -> Optional[Manifest]:
        """Read the latest manifest, or None if no run has been recorded."""
        pass

    @abstractmethod
    def list_runs(self) -> list[str]:
        """Run ids that have a manifest, newest first."""
        pass


class InMemoryManifestStore(ManifestStore):
    """
    In-memory implementation of ManifestStore for testing.

    Manifests are kept in a dict; run directories (for logs) live under
    `root`.
    """

    def __init__(self, root: Path | str):
        self._root = Path(root)
        self._manifests: dict[str, Manifest] = {}
        self._latest: Optional[Manifest] = None

    def run_dir(self, run_id: str) -> Path:
        return self._root / "runs" / run_id

    def write(self, run_id: str, manifest: Manifest) -> Path:
        self._manifests[run_id] = manifest
        self._latest = manifest
        return self.run_dir(run_id) / MANIFEST_FILE

    def read(self, run_id: str) -> Optional[Manifest]:
        return self._manifests.get(run_id)

    def read_latest(self) -> Optional[Manifest]:
        return self._latest

    def list_runs(self) -> list[str]:
        return sorted(self._manifests, reverse=True)

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        self._manifests.clear()
        self._latest = None


class FileManifestStore(ManifestStore):
    """
    File-based implementation of ManifestStore.

    Layout:
        state_dir/
            manifest.json           (latest copy)
            runs/
                {run_id}/
                    manifest.json
                    logs/
                        {step}.stdout
                        {step}.stderr
    """

    def __init__(self, state_dir: Path | str):
        self._state_dir = Path(state_dir)

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    @property
    def latest_path(self) -> Path:
        return self._state_dir / MANIFEST_FILE

    def run_dir(self, run_id: str) -> Path:
        return self._state_dir / "runs" / run_id

    def write(self, run_id: str, manifest: Manifest) -> Path:
        run_dir = self.run_dir(run_id)
        run_dir.mkdir(parents=True, exist_ok=True)

        path = run_dir / MANIFEST_FILE
        content = _render(manifest)
        path.write_text(content)

        self.latest_path.write_text(content)
        return path

    def _read_path(self, path: Path) -> Optional[Manifest]:
        if not path.exists():
            return None
        try:
            with open(path) as f:
                data = json.load(f)
            return Manifest.from_dict(data)
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            raise ConfigurationError(f"unreadable manifest {path}: {e}") from e

    def read(self, run_id: str) -> Optional[Manifest]:
        return self._read_path(self.run_dir(run_id) / MANIFEST_FILE)

    def read_latest(self) -> Optional[Manifest]:
        return self._read_path(self.latest_path)

    def list_runs(self) -> list[str]:
        runs_dir = self._state_dir / "runs"
        if not runs_dir.exists():
            return []
        run_ids = [p.name for p in runs_dir.iterdir() if (p / MANIFEST_FILE).is_file()]
        return sorted(run_ids, reverse=True)
