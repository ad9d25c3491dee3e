"""Resolve compose services to the images embedded in the system image.

This module handles:
- Picking a canonical image reference for every service
- Deduplicating images shared between services
- Deriving pipeline-private local tags and archive names
- Rewriting the compose file to use the local tags

Variables are interpolated across every string value of the document, so
the rewritten file carries no ${VAR} references. Literal dollar signs are
written back escaped as $$.

Sanitising is lossy: ``foo/bar`` and ``foo_bar`` map to the same local tag
and archive, so the image exported last wins.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import yaml

from sprout.errors import SpecParseError
from sprout.types import ResolvedImage

logger = logging.getLogger(__name__)

LOCAL_TAG_NAMESPACE = "embedded"
ARCHIVE_SUFFIX = ".tar"

_UNSAFE_CHARS = str.maketrans({"/": "_", ":": "_", "-": "_"})
_INTERPOLATION = re.compile(
    r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?::?-(?P<default>[^}]*))?\}"
    r"|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))"
)


def sanitize_reference(ref: str) -> str:
    """Replace path separators, colons and hyphens with underscores."""
    return ref.translate(_UNSAFE_CHARS)


def local_tag_for(ref: str) -> str:
    """Return the local tag for a canonical reference.

    Args:
        ref: Canonical image reference (e.g. 'redis:7').

    Returns:
        Local tag such as 'embedded/redis_7'.
    """
    return f"{LOCAL_TAG_NAMESPACE}/{sanitize_reference(ref)}"


def archive_path_for(ref: str, staging_dir: Path) -> Path:
    """Return the staged archive path for a canonical reference."""
    return staging_dir / f"{sanitize_reference(ref)}{ARCHIVE_SUFFIX}"


def synthetic_reference(service_name: str) -> str:
    """Canonical reference for a service that only declares a build context."""
    return f"{service_name}:latest"


def interpolate(value: str, environ: Mapping[str, str] | None = None) -> str:
    """Expand ``$VAR``, ``${VAR}`` and ``${VAR:-default}`` from the environment."""
    env = os.environ if environ is None else environ

    def _sub(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("bare")
        default = match.group("default")
        found = env.get(name)
        if found:
            return found
        return default if default is not None else ""

    # $$ escapes a literal dollar sign in compose files
    parts = value.split("$$")
    return "$".join(_INTERPOLATION.sub(_sub, part) for part in parts)


def map_strings(node: Any, fn: Callable[[str], str]) -> Any:
    """Apply ``fn`` to every string value in a parsed YAML tree. Keys are kept."""
    if isinstance(node, str):
        return fn(node)
    if isinstance(node, dict):
        return {key: map_strings(value, fn) for key, value in node.items()}
    if isinstance(node, list):
        return [map_strings(item, fn) for item in node]
    return node


def load_services(compose_text: str) -> tuple[dict[str, Any], dict[str, dict[str, Any]]]:
    """Parse compose text into the document and its service definitions.

    Args:
        compose_text: Raw compose YAML.

    Returns:
        Tuple of (whole document, services mapping). Null service bodies
        are normalised to empty dicts.

    Raises:
        SpecParseError: If the text is not a compose document.
    """
    try:
        document = yaml.safe_load(compose_text)
    except yaml.YAMLError as e:
        raise SpecParseError(f"Invalid compose YAML: {e}") from e

    if not isinstance(document, dict):
        raise SpecParseError(
            f"Expected a compose mapping, got {type(document).__name__}"
        )

    services = document.get("services")
    if not isinstance(services, dict):
        raise SpecParseError("Compose file has no 'services' mapping")

    for name, body in list(services.items()):
        if body is None:
            services[name] = {}
        elif not isinstance(body, dict):
            raise SpecParseError(
                f"Service '{name}' must be a mapping, got {type(body).__name__}"
            )

    return document, services


def canonical_reference(service_name: str, service: Mapping[str, Any]) -> str | None:
    """Return a service's canonical image reference, or None if it has none.

    ``service`` must already be interpolated.

    Raises:
        SpecParseError: If the image reference is blank.
    """
    image = service.get("image")
    if image is not None and not str(image).strip():
        raise SpecParseError(f"Service '{service_name}' has an empty image reference")
    if image:
        return str(image)
    if "build" in service and service["build"] is not None:
        return synthetic_reference(str(service_name))
    return None


def resolve_images(
    compose_text: str,
    staging_dir: Path,
    environ: Mapping[str, str] | None = None,
) -> tuple[list[ResolvedImage], str]:
    """Resolve compose services to unique images and rewrite the compose file.

    Args:
        compose_text: Raw compose YAML.
        staging_dir: Directory where archives will be written.
        environ: Environment used for interpolation (default os.environ).

    Returns:
        Tuple of (resolved images in first-seen order, rewritten compose YAML).

    Raises:
        SpecParseError: If the compose text cannot be parsed into services,
            or an image reference interpolates to nothing.
    """
    document, _ = load_services(compose_text)
    document = map_strings(document, lambda value: interpolate(value, environ))
    services = document["services"]

    images: list[ResolvedImage] = []
    seen: dict[str, ResolvedImage] = {}

    for name, service in services.items():
        ref = canonical_reference(name, service)
        if ref is None:
            logger.debug("Service %s has no image or build context, skipping", name)
            continue

        resolved = seen.get(ref)
        if resolved is None:
            from_build = not service.get("image")
            resolved = ResolvedImage(
                canonical_ref=ref,
                local_tag=local_tag_for(ref),
                archive_path=archive_path_for(ref, staging_dir),
                build_service=str(name) if from_build else None,
            )
            seen[ref] = resolved
            images.append(resolved)
            logger.debug("Resolved %s -> %s", ref, resolved.local_tag)

        service["image"] = resolved.local_tag
        service.pop("build", None)

    escaped = map_strings(document, lambda value: value.replace("$", "$$"))
    rewritten = yaml.safe_dump(escaped, default_flow_style=False, sort_keys=False)
    logger.info("Resolved %d unique image(s) from %d service(s)", len(images), len(services))
    return images, rewritten


__all__ = [
    "ARCHIVE_SUFFIX",
    "LOCAL_TAG_NAMESPACE",
    "archive_path_for",
    "canonical_reference",
    "interpolate",
    "load_services",
    "local_tag_for",
    "map_strings",
    "resolve_images",
    "sanitize_reference",
    "synthetic_reference",
]
