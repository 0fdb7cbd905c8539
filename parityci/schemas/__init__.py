"""
parityci.schemas - Data structures shared across parityci.

ProjectDef -> (fingerprint, namespace) -> run -> Manifest

1. ProjectDef: validated project file (profiles, jobs, steps)
2. Manifest: persisted record of one run (step records + final result)
"""

from .project import (
    CONFIG_VERSION,
    ProjectDef,
    ProfileDef,
    JobDef,
    StepDef,
)
from .manifest import (
    MANIFEST_SCHEMA,
    Manifest,
    ManifestStep,
    ManifestResult,
    StepStatus,
    DigestStatus,
)

__all__ = [
    # Project definition
    "CONFIG_VERSION",
    "ProjectDef",
    "ProfileDef",
    "JobDef",
    "StepDef",
    # Manifest
    "MANIFEST_SCHEMA",
    "Manifest",
    "ManifestStep",
    "ManifestResult",
    "StepStatus",
    "DigestStatus",
]
