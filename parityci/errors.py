"""
Error classes for parityci.

The taxonomy separates failures that are detected before anything runs from
failures reported by the container engine:

- ConfigurationError: missing job/profile/step, malformed container reference,
  invalid project definition or tool settings
- WorkdirError: unsafe or missing step working directory
- EngineError: the container engine process failed; carries an ErrorKind
- EngineTimeoutError: the engine call exceeded its timeout (child was killed)
- EngineNotFoundError: the engine binary is not on PATH

Error handling contract:
- Configuration and path-safety errors are raised before any subprocess runs
- EngineError.kind is a first-class field; callers read it directly and map it
  to an operator hint with hint_for_kind()
- Classification is best-effort and advisory; it never drives control flow
"""

from enum import Enum
from pathlib import Path
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of a container engine failure."""
    NOT_INSTALLED = "not_installed"
    PERMISSION_DENIED = "permission_denied"
    STORAGE_ERROR = "storage_error"
    COMMAND_FAILED = "command_failed"
    UNKNOWN = "unknown"


class ParityError(Exception):
    """Base exception for parityci."""
    pass


class ConfigurationError(ParityError):
    """
    Invalid configuration - fatal, raised before any subprocess runs.

    Examples:
    - Unknown job, profile or step
    - Container reference that is neither a template nor an explicit image
    - Project definition violating step order invariants
    """
    pass


class WorkdirError(ParityError):
    """
    Unsafe or missing step working directory.

    Raised when a step workdir is absolute, contains parent-directory
    segments, or does not exist under the repository root.
    """
    pass


class EngineError(ParityError):
    """
    The container engine process failed.

    Attributes:
        kind: Best-effort classification of the failure
        command: The command line that was run
        exit_code: Process exit code (None if the process never exited)
        stdout: Tail-truncated stdout text
        stderr: Tail-truncated stderr text
        stdout_path: Full stdout log on disk, if one was written
        stderr_path: Full stderr log on disk, if one was written
    """

    def __init__(
        self,
        kind: ErrorKind,
        command: str,
        exit_code: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
        stdout_path: Optional[Path] = None,
        stderr_path: Optional[Path] = None,
        engine_name: str = "podman",
    ):
        self.kind = kind
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.stdout_path = stdout_path
        self.stderr_path = stderr_path
        self.engine_name = engine_name
        super().__init__(self._render())

    def _render(self) -> str:
        code = self.exit_code if self.exit_code is not None else 1
        message = f"{self.engine_name} failed ({self.kind.value}) exit_code={code}: {self.stderr}"
        if self.stderr_path is not None:
            message += f" (stderr: {self.stderr_path})"
        if self.stdout_path is not None:
            message += f" (stdout: {self.stdout_path})"
        return message


class EngineTimeoutError(EngineError):
    """The engine call exceeded its timeout; the child process was killed."""

    def __init__(self, command: str, timeout_s: float, engine_name: str = "podman"):
        self.timeout_s = timeout_s
        super().__init__(
            ErrorKind.UNKNOWN,
            command,
            exit_code=None,
            engine_name=engine_name,
        )

    def _render(self) -> str:
        return f"{self.engine_name} timed out after {self.timeout_s:g}s: {self.command}"


class EngineNotFoundError(EngineError):
    """The engine binary could not be located on PATH."""

    def __init__(self, engine_name: str):
        super().__init__(
            ErrorKind.NOT_INSTALLED,
            engine_name,
            exit_code=127,
            engine_name=engine_name,
        )

    def _render(self) -> str:
        return f"{self.engine_name} not found on PATH"


# Hints name the container engine generically; podman commands are examples
# of the checks to run
_HINTS = {
    ErrorKind.NOT_INSTALLED: (
        "the container engine is not installed or not on PATH. Install it "
        "(e.g. Podman) and ensure the configured `engine` binary is available "
        "in your shell PATH."
    ),
    ErrorKind.PERMISSION_DENIED: (
        "the container engine returned a permission error. Verify rootless "
        "containers work for your user (e.g. `podman info`). If SELinux is "
        "enforcing, ensure volume mounts use proper labels (e.g. `:Z`) and "
        "that your storage directory is writable."
    ),
    ErrorKind.STORAGE_ERROR: (
        "the container engine's storage appears unhealthy. Check free disk "
        "space and inodes, then run the engine's storage check (e.g. "
        "`podman system check`). If storage is corrupt, consider a reset "
        "(e.g. `podman system reset`, destructive). Review the stderr/stdout "
        "log paths above for the exact storage error."
    ),
    ErrorKind.COMMAND_FAILED: (
        "the container step failed. Review the step stderr/stdout logs (paths "
        "are printed when available) and re-run with `--log-format jsonl` for "
        "more context. A deterministic failure reproduces locally with the "
        "same profile and job."
    ),
    ErrorKind.UNKNOWN: (
        "the container engine failed for an unknown reason. Re-run with "
        "`PARITYCI_LOG_LEVEL=INFO` and inspect the stderr/stdout logs if paths "
        "are shown. If this persists, capture the engine's debug info (e.g. "
        "`podman info --debug`)."
    ),
}


def hint_for_kind(kind: ErrorKind) -> str:
    """Return the static operator remediation hint for an error kind."""
    return _HINTS[kind]
