"""
Environment fingerprinting.

The fingerprint (env_id) is a SHA256 digest over a canonical JSON rendering
of every input that determines a run's container environment. Canonical JSON
sorts keys at every level, so mappings hash identically regardless of the
order their entries were declared in.
"""

import hashlib
import json
from typing import Any

from parityci.schemas import JobDef, ProfileDef, ProjectDef


def canonical_json(payload: Any) -> str:
    """Canonical JSON: sorted keys, compact encoding."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def fingerprint_payload(
    project: ProjectDef,
    job: JobDef,
    profile: ProfileDef,
    job_name: str,
    profile_name: str,
) -> dict[str, Any]:
    """Build the structure that is hashed into the fingerprint."""
    return {
        "version": project.version,
        "project": project.project,
        "job": job_name,
        "profile": profile_name,
        "container": profile.container,
        "profile_env": dict(profile.env),
        "step_order": list(job.step_order),
        "steps": {
            name: {
                "run": list(step.run),
                "workdir": step.workdir,
                "env": dict(step.env),
            }
            for name, step in job.steps.items()
        },
    }


def fingerprint(
    project: ProjectDef,
    job: JobDef,
    profile: ProfileDef,
    job_name: str,
    profile_name: str,
) -> str:
    """
    Compute the environment fingerprint for a job under a profile.

    Inputs must already be validated (job and profile exist).

    Returns:
        Hexadecimal SHA256 digest
    """
    canonical = canonical_json(fingerprint_payload(project, job, profile, job_name, profile_name))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def compute_env_id(project: ProjectDef, job_name: str, profile_name: str) -> str:
    """Look up job and profile by name, then fingerprint them."""
    job = project.job(job_name)
    profile = project.profile(profile_name)
    return fingerprint(project, job, profile, job_name, profile_name)
