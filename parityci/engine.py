"""
Container engine adapter.

ContainerEngine is the only place parityci talks to the container engine
binary (podman by default). Every call is a subprocess with stdin closed:

- run_capture: pipe stdout/stderr, raise EngineError on non-zero exit
- run_capture_allow_failure: pipe stdout/stderr, always return an ExecResult
- run_inherit: share the caller's stdout/stderr (builds), raise a
  classification-only EngineError on non-zero exit

Timeouts kill and reap the child before EngineTimeoutError is raised.
"""

import json
import logging
import os
import re
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from parityci.errors import (
    EngineError,
    EngineNotFoundError,
    EngineTimeoutError,
    ErrorKind,
)
from parityci.schemas import DigestStatus

logger = logging.getLogger(__name__)

DEFAULT_ENGINE = "podman"

# Bytes of stdout/stderr kept when embedding output in an error message
TAIL_LIMIT = 16 * 1024

# Exit code shells use for "command not found"
EXIT_NOT_FOUND = 127

TIMEOUT_EXISTS_S = 15.0
TIMEOUT_QUERY_S = 30.0
TIMEOUT_REMOVE_S = 60.0
TIMEOUT_VERSION_S = 10.0

# Ordered substring table; first match wins
_STDERR_MARKERS = (
    (("permission denied",), ErrorKind.PERMISSION_DENIED),
    (("creating container storage", "containers/storage", "storage error"), ErrorKind.STORAGE_ERROR),
)


def classify_failure(exit_code: Optional[int], stderr: bytes) -> ErrorKind:
    """
    Classify an engine failure from its exit code and stderr.

    Best-effort and advisory: used to pick an operator hint, never to decide
    control flow.
    """
    text = stderr.decode("utf-8", errors="replace").lower()
    for markers, kind in _STDERR_MARKERS:
        if any(m in text for m in markers):
            return kind
    if exit_code == EXIT_NOT_FOUND or "not found" in text:
        return ErrorKind.NOT_INSTALLED
    return ErrorKind.COMMAND_FAILED


def truncate_tail(data: bytes, limit: int = TAIL_LIMIT) -> str:
    """Decode output for an error message, keeping only the last `limit` bytes."""
    if len(data) <= limit:
        return data.decode("utf-8", errors="replace")
    tail = data[-limit:].decode("utf-8", errors="replace")
    return f"…(truncated, showing last {limit} bytes)…\n{tail}"


def parse_created_at(value: Any) -> Optional[datetime]:
    """
    Parse an engine CreatedAt timestamp (RFC3339).

    Nanosecond fractions are cut to microseconds and a missing timezone is
    taken as UTC. Unparseable values yield None.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    text = re.sub(r"(\.\d{6})\d+", r"\1", text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ExecResult:
    """Outcome of one engine invocation."""
    exit_code: int
    duration_ms: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class VolumeInfo:
    """Volume metadata reported by `volume inspect`."""
    name: str
    created_at: Optional[datetime] = None
    labels: dict[str, str] = field(default_factory=dict)


class ContainerEngine:
    """
    Subprocess adapter for the container engine CLI.

    Args:
        binary: Engine executable name or path
        env: Extra environment variables for every call, layered over the
             caller's environment
    """

    def __init__(self, binary: str = DEFAULT_ENGINE, env: Optional[dict[str, str]] = None):
        self.binary = binary
        self.env = dict(env or {})

    @property
    def name(self) -> str:
        return Path(self.binary).name

    @classmethod
    def detect(cls, binary: str = DEFAULT_ENGINE, env: Optional[dict[str, str]] = None) -> "ContainerEngine":
        """
        Locate the engine binary on PATH.

        Raises:
            EngineNotFoundError: If the binary cannot be found
        """
        resolved = shutil.which(binary)
        if resolved is None:
            raise EngineNotFoundError(Path(binary).name)
        return cls(resolved, env=env)

    def format_cmd(self, args: list[str]) -> str:
        return " ".join([self.name, *args])

    # -------------------------------------------------------------------------
    # Invocation modes
    # -------------------------------------------------------------------------

    def _spawn(self, args: list[str], capture: bool, timeout: Optional[float]) -> ExecResult:
        cmd = self.format_cmd(args)
        logger.info(
            f"Running {cmd}",
            extra={"event": "engine_start", "metadata": {"command": cmd}},
        )

        env = {**os.environ, **self.env} if self.env else None
        pipe = subprocess.PIPE if capture else None
        start = time.monotonic()
        try:
            proc = subprocess.run(
                [self.binary, *args],
                stdin=subprocess.DEVNULL,
                stdout=pipe,
                stderr=pipe,
                env=env,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            # subprocess.run kills and waits for the child before re-raising
            logger.warning(
                f"{cmd} timed out after {timeout:g}s",
                extra={"event": "engine_timeout", "metadata": {"command": cmd, "timeout_s": timeout}},
            )
            raise EngineTimeoutError(cmd, timeout, engine_name=self.name) from e
        except FileNotFoundError as e:
            raise EngineNotFoundError(self.name) from e
        except PermissionError as e:
            raise EngineError(
                ErrorKind.PERMISSION_DENIED,
                cmd,
                stderr=str(e),
                engine_name=self.name,
            ) from e
        except (OSError, ValueError) as e:
            # ENOEXEC, E2BIG, embedded NUL in argv or env
            raise EngineError(
                ErrorKind.UNKNOWN,
                cmd,
                stderr=f"could not start {self.name}: {e}",
                engine_name=self.name,
            ) from e

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"{cmd} exited with {proc.returncode}",
            extra={
                "event": "engine_exit",
                "metadata": {"command": cmd, "exit_code": proc.returncode, "duration_ms": duration_ms},
            },
        )
        return ExecResult(
            exit_code=proc.returncode,
            duration_ms=duration_ms,
            stdout=proc.stdout or b"",
            stderr=proc.stderr or b"",
        )

    def run_capture(
        self,
        args: list[str],
        timeout: Optional[float] = None,
        log_paths: Optional[tuple[Path, Path]] = None,
    ) -> ExecResult:
        """
        Run and capture output; a non-zero exit raises EngineError.

        Args:
            args: Engine arguments (without the binary)
            timeout: Optional timeout in seconds
            log_paths: Optional (stdout, stderr) files that receive the full
                       output on failure; their paths are attached to the error

        Raises:
            EngineError: On non-zero exit (classified)
            EngineTimeoutError: If the timeout elapses
        """
        result = self._spawn(args, capture=True, timeout=timeout)
        if result.ok:
            return result

        stdout_path = stderr_path = None
        if log_paths is not None:
            stdout_path, stderr_path = log_paths
            stdout_path.parent.mkdir(parents=True, exist_ok=True)
            stdout_path.write_bytes(result.stdout)
            stderr_path.write_bytes(result.stderr)

        raise EngineError(
            classify_failure(result.exit_code, result.stderr),
            self.format_cmd(args),
            exit_code=result.exit_code,
            stdout=truncate_tail(result.stdout),
            stderr=truncate_tail(result.stderr),
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            engine_name=self.name,
        )

    def run_capture_allow_failure(self, args: list[str], timeout: Optional[float] = None) -> ExecResult:
        """Run and capture output; the exit code is returned, never raised."""
        return self._spawn(args, capture=True, timeout=timeout)

    def run_inherit(self, args: list[str], timeout: Optional[float] = None) -> ExecResult:
        """
        Run with the caller's stdout/stderr.

        Raises:
            EngineError: On non-zero exit, classified from the exit code only
        """
        result = self._spawn(args, capture=False, timeout=timeout)
        if not result.ok:
            raise EngineError(
                classify_failure(result.exit_code, b""),
                self.format_cmd(args),
                exit_code=result.exit_code,
                engine_name=self.name,
            )
        return result

    # -------------------------------------------------------------------------
    # Engine queries
    # -------------------------------------------------------------------------

    def version(self) -> str:
        result = self.run_capture(["--version"], timeout=TIMEOUT_VERSION_S)
        return result.stdout.decode("utf-8", errors="replace").strip()

    def info(self) -> dict[str, Any]:
        """Return `info` output as parsed JSON."""
        result = self.run_capture(["info", "--format", "json"], timeout=TIMEOUT_QUERY_S)
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise EngineError(
                ErrorKind.UNKNOWN,
                self.format_cmd(["info", "--format", "json"]),
                exit_code=0,
                stderr=f"invalid JSON from info: {e}",
                engine_name=self.name,
            ) from e

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    def image_exists(self, tag: str) -> bool:
        result = self.run_capture_allow_failure(["image", "exists", tag], timeout=TIMEOUT_EXISTS_S)
        return result.ok

    def remove_image(self, tag: str) -> None:
        self.run_capture(["rmi", "-f", tag], timeout=TIMEOUT_REMOVE_S)

    def build_image(
        self,
        context_dir: Path,
        containerfile: Path,
        tag: str,
        pull: bool = False,
        no_cache: bool = False,
    ) -> None:
        """Build an image with output streamed to the terminal (no timeout)."""
        args = ["build", "-f", str(containerfile), "-t", tag]
        if pull:
            args.append("--pull")
        if no_cache:
            args.append("--no-cache")
        args.append(str(context_dir))
        self.run_inherit(args)

    def inspect_image_digest_status(self, ref: str) -> tuple[Optional[str], DigestStatus]:
        """
        Best-effort digest capture.

        Returns:
            (digest, status): status is PRESENT with a digest, UNAVAILABLE when
            the engine reports none, ERROR when inspection itself failed
        """
        result = self.run_capture_allow_failure(
            ["image", "inspect", "--format", "{{.Digest}}", ref],
            timeout=TIMEOUT_QUERY_S,
        )
        if not result.ok:
            return None, DigestStatus.ERROR
        digest = result.stdout.decode("utf-8", errors="replace").strip()
        if not digest or digest == "<no value>":
            return None, DigestStatus.UNAVAILABLE
        return digest, DigestStatus.PRESENT

    # -------------------------------------------------------------------------
    # Volumes
    # -------------------------------------------------------------------------

    def volume_exists(self, name: str) -> bool:
        result = self.run_capture_allow_failure(["volume", "exists", name], timeout=TIMEOUT_EXISTS_S)
        return result.ok

    def volume_create(self, name: str, labels: dict[str, str]) -> None:
        args = ["volume", "create"]
        for key in sorted(labels):
            args.extend(["--label", f"{key}={labels[key]}"])
        args.append(name)
        self.run_capture(args, timeout=TIMEOUT_QUERY_S)

    def volume_inspect(self, name: str) -> VolumeInfo:
        args = ["volume", "inspect", "--format", "json", name]
        result = self.run_capture(args, timeout=TIMEOUT_QUERY_S)
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise EngineError(
                ErrorKind.UNKNOWN,
                self.format_cmd(args),
                exit_code=0,
                stderr=f"invalid JSON from volume inspect: {e}",
                engine_name=self.name,
            ) from e

        entry = data[0] if isinstance(data, list) and data else data
        if not isinstance(entry, dict):
            entry = {}
        labels = entry.get("Labels") or {}
        return VolumeInfo(
            name=name,
            created_at=parse_created_at(entry.get("CreatedAt")),
            labels={str(k): str(v) for k, v in labels.items()},
        )

    def volume_list(self, label: Optional[tuple[str, str]] = None) -> list[str]:
        """List volume names, optionally filtered by a label key/value."""
        args = ["volume", "ls", "--format", "json"]
        if label is not None:
            args.extend(["--filter", f"label={label[0]}={label[1]}"])
        result = self.run_capture(args, timeout=TIMEOUT_QUERY_S)
        text = result.stdout.decode("utf-8", errors="replace").strip()
        if not text:
            return []
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise EngineError(
                ErrorKind.UNKNOWN,
                self.format_cmd(args),
                exit_code=0,
                stderr=f"invalid JSON from volume ls: {e}",
                engine_name=self.name,
            ) from e
        return sorted(str(v["Name"]) for v in data or [] if isinstance(v, dict) and v.get("Name"))

    def volume_remove(self, name: str, force: bool = False) -> None:
        args = ["volume", "rm"]
        if force:
            args.append("-f")
        args.append(name)
        self.run_capture(args, timeout=TIMEOUT_REMOVE_S)
