"""
Container template catalog.

A template is a named Containerfile that parityci builds locally and tags.
Built-in templates can be overridden, and new ones added, by a templates
directory laid out as <dir>/<name>/Containerfile.
"""

from pathlib import Path
from typing import Optional

from parityci.errors import ConfigurationError

_RUST_DEBIAN = """\
FROM docker.io/library/rust:1-bookworm

RUN apt-get update \\
    && apt-get install -y --no-install-recommends \\
        ca-certificates git pkg-config libssl-dev \\
    && rm -rf /var/lib/apt/lists/*

RUN rustup component add clippy rustfmt

ENV CARGO_HOME=/usr/local/cargo
WORKDIR /work
"""

_RUST_ALPINE = """\
FROM docker.io/library/rust:1-alpine

RUN apk add --no-cache musl-dev git pkgconfig openssl-dev

RUN rustup component add clippy rustfmt

ENV CARGO_HOME=/usr/local/cargo
WORKDIR /work
"""

_CPP_DEBIAN = """\
FROM docker.io/library/debian:bookworm

RUN apt-get update \\
    && apt-get install -y --no-install-recommends \\
        build-essential cmake ninja-build pkg-config git ca-certificates \\
    && rm -rf /var/lib/apt/lists/*

WORKDIR /work
"""

_KDE_MIXED_DEBIAN = """\
FROM docker.io/library/rust:1-bookworm

RUN apt-get update \\
    && apt-get install -y --no-install-recommends \\
        build-essential cmake ninja-build pkg-config git ca-certificates \\
        extra-cmake-modules qt6-base-dev qt6-declarative-dev \\
    && rm -rf /var/lib/apt/lists/*

RUN rustup component add clippy rustfmt

ENV CARGO_HOME=/usr/local/cargo
WORKDIR /work
"""

_PYTHON_DEBIAN = """\
FROM docker.io/library/python:3-bookworm

RUN pip install --no-cache-dir pytest

WORKDIR /work
"""

BUILTIN_TEMPLATES = {
    "rust-debian": _RUST_DEBIAN,
    "rust-alpine": _RUST_ALPINE,
    "cpp-debian": _CPP_DEBIAN,
    "kde-mixed-debian": _KDE_MIXED_DEBIAN,
    "python-debian": _PYTHON_DEBIAN,
}

CONTAINERFILE_NAME = "Containerfile"
ORIGIN_BUILTIN = "builtin"


class TemplateProvider:
    """
    Lookup of container templates by name.

    Args:
        templates_dir: Optional directory whose <name>/Containerfile entries
                       take precedence over the built-in catalog
    """

    def __init__(self, templates_dir: Optional[Path] = None):
        self.templates_dir = Path(templates_dir) if templates_dir else None

    def _disk_entry(self, name: str) -> Optional[Path]:
        if self.templates_dir is None:
            return None
        candidate = self.templates_dir / name / CONTAINERFILE_NAME
        return candidate if candidate.is_file() else None

    def names(self) -> list[str]:
        """All template names, sorted."""
        found = set(BUILTIN_TEMPLATES)
        if self.templates_dir is not None and self.templates_dir.is_dir():
            for entry in self.templates_dir.iterdir():
                if (entry / CONTAINERFILE_NAME).is_file():
                    found.add(entry.name)
        return sorted(found)

    def origin(self, name: str) -> str:
        """
        Where a template resolves from: its directory under templates_dir, or
        "builtin".

        Raises:
            ConfigurationError: If the template is unknown
        """
        disk = self._disk_entry(name)
        if disk is not None:
            return str(disk.parent)
        if name in BUILTIN_TEMPLATES:
            return ORIGIN_BUILTIN
        raise ConfigurationError(
            f"unknown container template '{name}' (available: {', '.join(self.names())})"
        )

    def is_template(self, name: str) -> bool:
        return name in BUILTIN_TEMPLATES or self._disk_entry(name) is not None

    def containerfile_for(self, name: str) -> str:
        """
        Return the Containerfile text for a template.

        Raises:
            ConfigurationError: If the template is unknown
        """
        disk = self._disk_entry(name)
        if disk is not None:
            return disk.read_text()
        try:
            return BUILTIN_TEMPLATES[name]
        except KeyError:
            raise ConfigurationError(
                f"unknown container template '{name}' (available: {', '.join(self.names())})"
            ) from None
