"""
Image resolution.

A profile's container reference is either a symbolic template (built locally
and reused by tag) or an explicit image reference (inspected, never built).
Bare names that are neither are rejected rather than guessed.

Builds happen at most once per (template, version) for sequential use;
concurrent runs racing on the same tag are not locked against each other.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from parityci import __version__
from parityci.engine import ContainerEngine
from parityci.errors import ConfigurationError
from parityci.schemas import DigestStatus
from parityci.templates import CONTAINERFILE_NAME, TemplateProvider

logger = logging.getLogger(__name__)

IMAGE_REF_CHARS = set(".-_/@:")


class RefKind(str, Enum):
    """How a container reference is resolved."""
    TEMPLATE = "template"
    IMAGE = "image"


@dataclass(frozen=True)
class ResolvedImage:
    """The image a run executes in, plus best-effort digest provenance."""
    tag: str
    digest: Optional[str]
    digest_status: DigestStatus


def classify_container_ref(ref: str, provider: TemplateProvider) -> RefKind:
    """
    Classify a container reference without touching the engine.

    Raises:
        ConfigurationError: If the reference is neither a known template nor
            a well-formed explicit image reference
    """
    if provider.is_template(ref):
        return RefKind.TEMPLATE

    if any(c in ref for c in "/:@"):
        if any(c.isspace() or not ((c.isascii() and c.isalnum()) or c in IMAGE_REF_CHARS) for c in ref):
            raise ConfigurationError(
                f"invalid container reference '{ref}': use only ASCII alphanumerics "
                f"and .-_/@: (no whitespace)"
            )
        return RefKind.IMAGE

    raise ConfigurationError(
        f"unknown container template '{ref}'. To use an external image, specify an "
        f"explicit image reference (e.g. 'docker.io/library/ubuntu:24.04')."
    )


def template_tag(template: str, version: str = __version__) -> str:
    return f"localhost/parityci-{template}:v{version}"


class ImageResolver:
    """
    Resolve container references to runnable image tags.

    Args:
        engine: Container engine adapter
        provider: Template catalog
        cache_dir: Root under which template build contexts are materialized
    """

    def __init__(self, engine: ContainerEngine, provider: TemplateProvider, cache_dir: Path):
        self.engine = engine
        self.provider = provider
        self.cache_dir = Path(cache_dir)

    def build_context(self, template: str) -> Path:
        return self.cache_dir / "images" / template

    def _materialize(self, template: str) -> Path:
        image_dir = self.build_context(template)
        image_dir.mkdir(parents=True, exist_ok=True)
        containerfile = image_dir / CONTAINERFILE_NAME
        containerfile.write_text(self.provider.containerfile_for(template))
        return containerfile

    def resolve(self, ref: str, pull: bool = False, rebuild: bool = False) -> ResolvedImage:
        """
        Resolve a reference to (tag, digest, digest status).

        Explicit images are only inspected. Templates are built when their tag
        is missing or a rebuild is requested; a rebuild removes the old image
        first and disables the build cache.
        """
        kind = classify_container_ref(ref, self.provider)
        if kind == RefKind.IMAGE:
            return self._with_digest(ref)

        containerfile = self._materialize(ref)
        tag = template_tag(ref)

        exists = self.engine.image_exists(tag)
        if rebuild and exists:
            self.engine.remove_image(tag)

        if rebuild or not exists:
            logger.info(
                f"Building {tag}",
                extra={
                    "event": "image_build",
                    "metadata": {"template": ref, "tag": tag, "pull": pull, "rebuild": rebuild},
                },
            )
            self.engine.build_image(
                containerfile.parent, containerfile, tag, pull=pull, no_cache=rebuild
            )

        return self._with_digest(tag)

    def _with_digest(self, tag: str) -> ResolvedImage:
        digest, status = self.engine.inspect_image_digest_status(tag)
        if status != DigestStatus.PRESENT:
            logger.warning(
                f"Base image digest {status.value} for {tag}; reproducibility is weakened",
                extra={
                    "event": "base_image_digest_missing",
                    "metadata": {"image": tag, "status": status.value},
                },
            )
        return ResolvedImage(tag=tag, digest=digest, digest_status=status)
