"""
Configuration management for parityci.

Tool settings live in an optional config.yaml under the parityci home
directory. Environment variables override file values. Project definitions
(jobs, profiles, steps) are loaded separately by parityci.registry.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from parityci.errors import ConfigurationError

APP_NAME = "parityci"

LOG_FORMATS = ("human", "jsonl")

ENV_OVERRIDES = {
    "PARITYCI_ENGINE": "engine",
    "PARITYCI_LOG_FORMAT": "log_format",
    "PARITYCI_LOG_LEVEL": "log_level",
    "PARITYCI_TEMPLATES_DIR": "templates_dir",
}


def get_parityci_home() -> Path:
    """Resolve the directory holding parityci's own config.yaml."""
    home = os.environ.get("PARITYCI_HOME")
    if home:
        return Path(home).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_NAME
    return Path("~/.config").expanduser() / APP_NAME


def state_dirs() -> tuple[Path, Path]:
    """
    Resolve the XDG state and cache directories.

    state: $XDG_STATE_HOME/parityci (fallback: ~/.local/state/parityci)
    cache: $XDG_CACHE_HOME/parityci (fallback: ~/.cache/parityci)
    """
    state_home = os.environ.get("XDG_STATE_HOME")
    state = Path(state_home) if state_home else Path("~/.local/state").expanduser()

    cache_home = os.environ.get("XDG_CACHE_HOME")
    cache = Path(cache_home) if cache_home else Path("~/.cache").expanduser()

    return state / APP_NAME, cache / APP_NAME


def _default_state_dir() -> Path:
    return state_dirs()[0]


def _default_cache_dir() -> Path:
    return state_dirs()[1]


@dataclass
class ParityConfig:
    """
    Tool settings for parityci.

    Attributes:
        engine: Container engine binary name or path
        log_format: "human" (rich console) or "jsonl" (one JSON object per line)
        log_level: Logging level name
        templates_dir: Optional directory overriding built-in container templates
        state_dir: Where run directories and manifests are written
        cache_dir: Where template build definitions are materialized
        step_timeout_s: Optional timeout applied to every step run
        env_file: Optional dotenv file loaded into the process environment
    """
    engine: str = "podman"
    log_format: str = "human"
    log_level: str = "WARNING"
    templates_dir: Optional[Path] = None
    state_dir: Path = field(default_factory=_default_state_dir)
    cache_dir: Path = field(default_factory=_default_cache_dir)
    step_timeout_s: Optional[float] = None
    env_file: Optional[str] = None

    def __post_init__(self):
        if self.log_format not in LOG_FORMATS:
            raise ConfigurationError(
                f"invalid log_format '{self.log_format}' (expected human|jsonl)"
            )
        if self.step_timeout_s is not None and self.step_timeout_s <= 0:
            raise ConfigurationError("step_timeout_s must be positive")
        self.state_dir = Path(self.state_dir).expanduser()
        self.cache_dir = Path(self.cache_dir).expanduser()
        if self.templates_dir is not None:
            self.templates_dir = Path(self.templates_dir).expanduser()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a YAML-friendly dictionary."""
        return {
            "engine": self.engine,
            "log_format": self.log_format,
            "log_level": self.log_level,
            "templates_dir": str(self.templates_dir) if self.templates_dir else None,
            "state_dir": str(self.state_dir),
            "cache_dir": str(self.cache_dir),
            "step_timeout_s": self.step_timeout_s,
            "env_file": self.env_file,
        }


def _read_config_file(config_path: Path) -> dict[str, Any]:
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping")

    known = {f.name for f in fields(ParityConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"unknown keys in {config_path}: {', '.join(unknown)}")
    return data


def load_config(config_path: Optional[Path] = None) -> ParityConfig:
    """
    Load parityci settings.

    Args:
        config_path: Explicit config file. Defaults to <home>/config.yaml,
                     which may be absent (defaults apply).

    Returns:
        ParityConfig instance

    Raises:
        ConfigurationError: If an explicit config file is missing or any file is invalid
    """
    if config_path is None:
        config_path = get_parityci_home() / "config.yaml"
        data = _read_config_file(config_path) if config_path.exists() else {}
    else:
        if not config_path.exists():
            raise ConfigurationError(f"parityci config not found: {config_path}")
        data = _read_config_file(config_path)

    env_file = data.get("env_file")
    if env_file:
        env_path = Path(env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path, override=False)

    for env_var, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            data[key] = value

    return ParityConfig(**data)


def write_default_config(home: Path, force: bool = False) -> Path:
    """Write a default config.yaml into home, refusing to overwrite unless forced."""
    home.mkdir(parents=True, exist_ok=True)
    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        raise ConfigurationError(
            f"config already exists at {cfg_path}. Use --force to overwrite."
        )

    default_cfg = ParityConfig().to_dict()
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))
    return cfg_path
