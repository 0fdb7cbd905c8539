"""
Environment checks for `parityci doctor`.

Each check yields an OK/WARN/FAIL line. Checks after a missing engine are
skipped; everything else runs even when an earlier check failed.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from parityci.config import ParityConfig
from parityci.engine import ContainerEngine
from parityci.errors import EngineError
from parityci.run_store import new_run_id
from parityci.volumes import LABEL_MANAGED


class CheckStatus(str, Enum):
    OK = "OK"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass(frozen=True)
class Check:
    status: CheckStatus
    message: str

    def render(self) -> str:
        return f"{self.status.value:<4} {self.message}"


def rootless_status(info: dict[str, Any]) -> Optional[bool]:
    """
    Read host.security.rootless from engine info.

    Returns None when the field is absent (the info schema differs across
    engine versions).
    """
    host = info.get("host")
    security = host.get("security") if isinstance(host, dict) else None
    value = security.get("rootless") if isinstance(security, dict) else None
    return value if isinstance(value, bool) else None


def _check_dir(label: str, path: Path) -> list[Check]:
    checks = []
    if path.exists():
        checks.append(Check(CheckStatus.OK, f"{label} dir: {path}"))
    else:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return [Check(CheckStatus.FAIL, f"{label} dir cannot be created: {e}")]
        checks.append(Check(CheckStatus.OK, f"{label} dir created: {path}"))

    marker = path / "doctor-write-check.tmp"
    try:
        marker.write_bytes(b"ok")
        marker.unlink()
    except OSError as e:
        checks.append(Check(CheckStatus.FAIL, f"{label} dir not writable: {e}"))
    else:
        checks.append(Check(CheckStatus.OK, f"{label} dir writable"))
    return checks


def _check_volume_roundtrip(engine: ContainerEngine) -> list[Check]:
    name = f"parityci_doctor_{new_run_id()}"
    labels = {LABEL_MANAGED: "true", "parityci.doctor": "true"}
    try:
        engine.volume_create(name, labels)
    except EngineError as e:
        return [Check(CheckStatus.FAIL, f"volume create failed: {e}")]

    checks = [Check(CheckStatus.OK, "volume create (labeled)")]
    try:
        info = engine.volume_inspect(name)
    except EngineError as e:
        checks.append(Check(CheckStatus.WARN, f"volume inspect failed: {e}"))
    else:
        if info.labels.get(LABEL_MANAGED) == "true":
            checks.append(Check(CheckStatus.OK, "volume labels readable"))
        else:
            checks.append(Check(CheckStatus.WARN, "volume labels missing/unreadable"))

    try:
        engine.volume_remove(name, force=True)
    except EngineError as e:
        checks.append(Check(CheckStatus.FAIL, f"volume remove failed: {e}"))
    else:
        checks.append(Check(CheckStatus.OK, "volume remove"))
    return checks


def run_checks(
    config: ParityConfig,
    detect: Callable[[str], ContainerEngine] = ContainerEngine.detect,
) -> list[Check]:
    """Run every doctor check and return the results in order."""
    checks = _check_dir("state", config.state_dir) + _check_dir("cache", config.cache_dir)

    try:
        engine = detect(config.engine)
    except EngineError as e:
        checks.append(Check(CheckStatus.FAIL, str(e)))
        return checks
    checks.append(Check(CheckStatus.OK, f"{engine.name} found: {engine.binary}"))

    try:
        checks.append(Check(CheckStatus.OK, f"{engine.name} version: {engine.version()}"))
    except EngineError as e:
        checks.append(Check(CheckStatus.WARN, f"{engine.name} version unavailable: {e}"))

    try:
        info = engine.info()
    except EngineError as e:
        checks.append(Check(CheckStatus.FAIL, f"{engine.name} info failed: {e}"))
    else:
        rootless = rootless_status(info)
        if rootless is True:
            checks.append(Check(CheckStatus.OK, "rootless: true"))
        elif rootless is False:
            checks.append(Check(
                CheckStatus.WARN, "rootless: false (parityci expects rootless + userns=keep-id)"
            ))
        else:
            checks.append(Check(CheckStatus.WARN, "rootless status: unavailable (info schema differs)"))

    checks.extend(_check_volume_roundtrip(engine))
    return checks


def has_failures(checks: list[Check]) -> bool:
    return any(c.status == CheckStatus.FAIL for c in checks)
