"""
Project definition schema - the validated job/profile/step description.

A ProjectDef is what parityci consumes from the on-disk project file. It is
immutable once constructed, and construction enforces the structural rules
the run orchestrator relies on:

- version is 1, project/profiles/jobs are non-empty
- every job references an existing profile
- step_order has no duplicates and matches the step mapping exactly
  (no orphans in either direction)
- every step's argv is non-empty
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from parityci.errors import ConfigurationError

CONFIG_VERSION = 1


def _check_keys(where: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigurationError(f"{where}: unknown keys {unknown}")


def _str_map(where: str, value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{where}: env must be a mapping")
    return {str(k): str(v) for k, v in value.items()}


@dataclass(frozen=True)
class StepDef:
    """
    A single step of a job.

    Attributes:
        run: argv executed verbatim inside the container
        workdir: Optional working directory relative to the repository root
        env: Step-level environment; wins over the profile env on collision
    """
    run: tuple[str, ...]
    workdir: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"run": list(self.run)}
        if self.workdir is not None:
            result["workdir"] = self.workdir
        if self.env:
            result["env"] = dict(self.env)
        return result

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "StepDef":
        if not isinstance(data, dict):
            raise ConfigurationError(f"step '{name}' must be a mapping")
        _check_keys(f"step '{name}'", data, {"run", "workdir", "env"})
        run = data.get("run")
        if not isinstance(run, list) or not run:
            raise ConfigurationError(f"step '{name}' must have a non-empty 'run' list")
        workdir = data.get("workdir")
        return cls(
            run=tuple(str(a) for a in run),
            workdir=str(workdir) if workdir is not None else None,
            env=_str_map(f"step '{name}'", data.get("env")),
        )


@dataclass(frozen=True)
class ProfileDef:
    """A container reference plus the environment shared by every step."""
    container: str
    env: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"container": self.container}
        if self.env:
            result["env"] = dict(self.env)
        return result

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "ProfileDef":
        if not isinstance(data, dict):
            raise ConfigurationError(f"profile '{name}' must be a mapping")
        _check_keys(f"profile '{name}'", data, {"container", "env"})
        container = data.get("container")
        if not isinstance(container, str) or not container.strip():
            raise ConfigurationError(f"profile '{name}' must set 'container'")
        return cls(container=container, env=_str_map(f"profile '{name}'", data.get("env")))


@dataclass(frozen=True)
class JobDef:
    """
    A job: the profile it runs under and its ordered steps.

    Attributes:
        profile: Name of the profile this job uses by default
        step_order: Execution order of step names
        steps: Mapping of step name to StepDef
    """
    profile: str
    step_order: tuple[str, ...]
    steps: dict[str, StepDef] = field(default_factory=dict)

    def validate(self, name: str) -> None:
        if not self.step_order:
            if self.steps:
                raise ConfigurationError(f"job '{name}' has steps but empty step_order")
            return

        seen: set[str] = set()
        for step_name in self.step_order:
            if step_name in seen:
                raise ConfigurationError(
                    f"job '{name}' step_order contains duplicate step '{step_name}'"
                )
            seen.add(step_name)
            if step_name not in self.steps:
                raise ConfigurationError(
                    f"job '{name}' step_order references missing step '{step_name}'"
                )

        extras = sorted(set(self.steps) - seen)
        if extras:
            raise ConfigurationError(
                f"job '{name}' has steps not listed in step_order: {extras}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile,
            "step_order": list(self.step_order),
            "steps": {n: s.to_dict() for n, s in self.steps.items()},
        }

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "JobDef":
        if not isinstance(data, dict):
            raise ConfigurationError(f"job '{name}' must be a mapping")
        _check_keys(f"job '{name}'", data, {"profile", "step_order", "steps"})
        profile = data.get("profile")
        if not isinstance(profile, str) or not profile:
            raise ConfigurationError(f"job '{name}' must set 'profile'")
        order = data.get("step_order") or []
        if not isinstance(order, list):
            raise ConfigurationError(f"job '{name}' step_order must be a list")
        steps_data = data.get("steps") or {}
        if not isinstance(steps_data, dict):
            raise ConfigurationError(f"job '{name}' steps must be a mapping")
        return cls(
            profile=profile,
            step_order=tuple(str(s) for s in order),
            steps={str(n): StepDef.from_dict(str(n), s) for n, s in steps_data.items()},
        )


@dataclass(frozen=True)
class ProjectDef:
    """
    A validated project definition.

    ProjectDef is immutable. Lookups of unknown jobs or profiles raise
    ConfigurationError rather than returning None so that callers fail
    before any container work starts.
    """
    version: int
    project: str
    profiles: dict[str, ProfileDef]
    jobs: dict[str, JobDef]

    def __post_init__(self):
        if self.version != CONFIG_VERSION:
            raise ConfigurationError(
                f"unsupported config version {self.version} (expected {CONFIG_VERSION})"
            )
        if not self.project.strip():
            raise ConfigurationError("project must be non-empty")
        if not self.profiles:
            raise ConfigurationError("profiles must be non-empty")
        if not self.jobs:
            raise ConfigurationError("jobs must be non-empty")

        for job_name, job in self.jobs.items():
            if job.profile not in self.profiles:
                raise ConfigurationError(
                    f"job '{job_name}' references missing profile '{job.profile}'"
                )
            job.validate(job_name)

    def job(self, name: str) -> JobDef:
        try:
            return self.jobs[name]
        except KeyError:
            raise ConfigurationError(f"unknown job '{name}'") from None

    def profile(self, name: str) -> ProfileDef:
        try:
            return self.profiles[name]
        except KeyError:
            raise ConfigurationError(f"unknown profile '{name}'") from None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for YAML output."""
        return {
            "version": self.version,
            "project": self.project,
            "profiles": {n: p.to_dict() for n, p in self.profiles.items()},
            "jobs": {n: j.to_dict() for n, j in self.jobs.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectDef":
        """Deserialize from dictionary, validating structure."""
        if not isinstance(data, dict):
            raise ConfigurationError("project definition must be a mapping")
        _check_keys("project", data, {"version", "project", "profiles", "jobs"})
        profiles = data.get("profiles") or {}
        jobs = data.get("jobs") or {}
        if not isinstance(profiles, dict) or not isinstance(jobs, dict):
            raise ConfigurationError("profiles and jobs must be mappings")
        version = data.get("version")
        if not isinstance(version, int):
            raise ConfigurationError("version must be an integer")
        return cls(
            version=version,
            project=str(data.get("project") or ""),
            profiles={str(n): ProfileDef.from_dict(str(n), p) for n, p in profiles.items()},
            jobs={str(n): JobDef.from_dict(str(n), j) for n, j in jobs.items()},
        )
