"""Namespace derivation for cache volumes."""

NAMESPACE_PREFIX = "parityci"
FINGERPRINT_PREFIX_LEN = 12

_SAFE_PUNCT = "_-."


def safe_segment(value: str) -> str:
    """Lower-case ASCII alphanumerics and '_-.', replacing everything else with '_'."""
    out = []
    for ch in value:
        if (ch.isascii() and ch.isalnum()) or ch in _SAFE_PUNCT:
            out.append(ch.lower())
        else:
            out.append("_")
    return "".join(out)


def namespace_from(project: str, job: str, env_id: str) -> str:
    """
    Derive the cache-volume namespace for a (project, job, environment) triple.

    Format: parityci_<project>_<job>_<first 12 chars of env_id>
    """
    return (
        f"{NAMESPACE_PREFIX}_{safe_segment(project)}_{safe_segment(job)}"
        f"_{env_id[:FINGERPRINT_PREFIX_LEN]}"
    )
