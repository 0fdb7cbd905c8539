"""
Manifest schemas - the persisted record of one run.

A Manifest captures run metadata, the ordered step records and the final
result. It is assembled once at the end of a run and never mutated.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

MANIFEST_SCHEMA = "parityci-manifest.v1"


class StepStatus(str, Enum):
    """Status of a step within a run."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class DigestStatus(str, Enum):
    """Outcome of capturing the base image digest."""
    PRESENT = "present"
    UNAVAILABLE = "unavailable"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ManifestStep:
    """
    Record of one executed (or dry-run) step.

    Attributes:
        name: Step name
        argv: Command executed inside the container
        duration_ms: Wall-clock duration in milliseconds
        exit_code: Exit code of the container run
        stdout_path: Log path relative to the run directory (None in dry-run)
        stderr_path: Log path relative to the run directory (None in dry-run)
    """
    name: str
    argv: tuple[str, ...]
    duration_ms: int
    exit_code: int
    stdout_path: Optional[str] = None
    stderr_path: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "argv": list(self.argv),
            "duration_ms": self.duration_ms,
            "exit_code": self.exit_code,
            "stdout_path": self.stdout_path,
            "stderr_path": self.stderr_path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManifestStep":
        return cls(
            name=data["name"],
            argv=tuple(data.get("argv", [])),
            duration_ms=int(data["duration_ms"]),
            exit_code=int(data["exit_code"]),
            stdout_path=data.get("stdout_path"),
            stderr_path=data.get("stderr_path"),
        )


@dataclass(frozen=True)
class ManifestResult:
    """Final outcome of a run."""
    ok: bool
    exit_code: int
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "exit_code": self.exit_code, "error": self.error}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManifestResult":
        return cls(ok=bool(data["ok"]), exit_code=int(data["exit_code"]), error=data.get("error"))


@dataclass(frozen=True)
class Manifest:
    """
    Schema-versioned record of one run.

    Step records appear in execution order; a failed step is always the
    last record.
    """
    tool_version: str
    timestamp: str
    project: str
    job: str
    profile: str
    namespace: str
    env_id: str
    base_image_digest: Optional[str]
    base_image_digest_status: DigestStatus
    result: ManifestResult
    steps: tuple[ManifestStep, ...] = field(default_factory=tuple)
    schema: str = MANIFEST_SCHEMA

    def __post_init__(self):
        for step in self.steps[:-1]:
            if step.exit_code != 0:
                raise ValueError(
                    f"step '{step.name}' failed but is followed by further step records"
                )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "schema": self.schema,
            "tool_version": self.tool_version,
            "timestamp": self.timestamp,
            "project": self.project,
            "job": self.job,
            "profile": self.profile,
            "namespace": self.namespace,
            "env_id": self.env_id,
            "base_image_digest": self.base_image_digest,
            "base_image_digest_status": self.base_image_digest_status.value,
            "steps": [s.to_dict() for s in self.steps],
            "result": self.result.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Manifest":
        """Deserialize from dictionary."""
        schema = data.get("schema")
        if schema != MANIFEST_SCHEMA:
            raise ValueError(f"unsupported manifest schema '{schema}'")
        return cls(
            schema=schema,
            tool_version=data["tool_version"],
            timestamp=data["timestamp"],
            project=data["project"],
            job=data["job"],
            profile=data["profile"],
            namespace=data["namespace"],
            env_id=data["env_id"],
            base_image_digest=data.get("base_image_digest"),
            base_image_digest_status=DigestStatus(data.get("base_image_digest_status", "unknown")),
            steps=tuple(ManifestStep.from_dict(s) for s in data.get("steps", [])),
            result=ManifestResult.from_dict(data["result"]),
        )
