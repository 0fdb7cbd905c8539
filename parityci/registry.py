"""
Project registry - load and validate project definitions from disk.

The registry provides:
- Loading a ProjectDef from a YAML (or JSON) project file
- Default lookup of parityci.yaml / parityci.yml in a directory
- Conversion of parse and structure failures into ConfigurationError
"""

import json
from pathlib import Path
from typing import Optional

import yaml

from parityci.errors import ConfigurationError
from parityci.schemas import ProjectDef

DEFAULT_PROJECT_FILES = ("parityci.yaml", "parityci.yml")


def find_project_file(directory: Optional[Path] = None) -> Path:
    """
    Locate the default project file in a directory.

    Args:
        directory: Directory to search (defaults to the current directory)

    Returns:
        Path to the first existing default project file, or the preferred
        name if none exists (so the caller reports a sensible path)
    """
    directory = directory or Path.cwd()
    for name in DEFAULT_PROJECT_FILES:
        candidate = directory / name
        if candidate.exists():
            return candidate
    return directory / DEFAULT_PROJECT_FILES[0]


def _load_file(path: Path) -> dict:
    """
    Load a project file (YAML or JSON).

    Raises:
        ValueError: If file format is unsupported
    """
    suffix = path.suffix.lower()

    with open(path) as f:
        if suffix in (".yaml", ".yml"):
            return yaml.safe_load(f)
        elif suffix == ".json":
            return json.load(f)
        else:
            raise ValueError(f"Unsupported file format: {suffix}")


def load_project(path: Optional[Path] = None) -> ProjectDef:
    """
    Load a ProjectDef from a project file.

    Args:
        path: Project file path. Defaults to parityci.yaml in the current directory.

    Returns:
        The validated ProjectDef

    Raises:
        ConfigurationError: If the file is missing, unparseable or invalid
    """
    path = Path(path) if path is not None else find_project_file()
    if not path.exists():
        raise ConfigurationError(f"project file not found: {path}")

    try:
        data = _load_file(path)
    except (yaml.YAMLError, json.JSONDecodeError, ValueError) as e:
        raise ConfigurationError(f"failed to parse {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"failed to read {path}: {e}") from e

    try:
        return ProjectDef.from_dict(data)
    except ConfigurationError as e:
        raise ConfigurationError(f"invalid project file {path}: {e}") from e
