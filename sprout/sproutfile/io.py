"""Load sprout.yaml into a SproutConfig.

Two entry points share one grammar:
- load_config(): full parse, resolves and embeds compose images
- load_config_metadata(): parse only, never touches the compose file

read_compose() and embed_compose() are the two halves of the compose step,
exposed so callers can time them apart.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from sprout.compose.embedder import ImageEmbedder, remove_archives
from sprout.compose.resolver import resolve_images
from sprout.config import Settings, get_settings
from sprout.errors import BuildTimeoutError, ImageEmbedError, ParseError
from sprout.sproutfile.schema import DEFAULT_OUTPUT_PATH, SproutConfig

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary (empty for an empty file).

    Raises:
        ParseError: If the file is unreadable, not UTF-8, invalid YAML or
            not a mapping.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ParseError(f"Cannot read {path}: {e}", code="config_unreadable") from e
    except UnicodeDecodeError as e:
        raise ParseError(f"{path} is not valid UTF-8: {e}") from e
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParseError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")
    return data


def parse_config_data(data: dict[str, Any]) -> SproutConfig:
    """Validate raw sprout.yaml data.

    Raises:
        ParseError: If data does not match the schema.
    """
    try:
        return SproutConfig.model_validate(data)
    except ValidationError as e:
        raise ParseError(f"Invalid configuration: {e}", code="config_invalid") from e


def resolve_compose_path(config_path: Path, compose_path: str) -> Path:
    """Compose paths are relative to the directory holding sprout.yaml."""
    path = Path(compose_path).expanduser()
    if not path.is_absolute():
        path = config_path.parent / path
    return path


def resolve_output_path(config: SproutConfig, cwd: Path | None = None) -> Path:
    """Return the absolute destination for the finished image.

    Relative output paths are taken from the invocation directory.
    """
    path = Path(config.output.path or DEFAULT_OUTPUT_PATH).expanduser()
    if not path.is_absolute():
        path = (cwd or Path.cwd()) / path
    return path


def load_config_metadata(path: Path) -> SproutConfig:
    """Parse sprout.yaml without processing the compose file.

    Use this when only plain values such as the output path are needed.

    Raises:
        ParseError: If the file is unreadable or malformed.
    """
    return parse_config_data(load_yaml(path))


def read_compose(config: SproutConfig, config_path: Path, staging_dir: Path) -> Path:
    """Read the compose file and resolve its images into ``config``.

    Sets the compose content, resolved images and rewritten content.

    Returns:
        Path of the compose file.

    Raises:
        ParseError: If the compose file cannot be read.
        SpecParseError: If the compose file has no usable services.
    """
    compose_path = resolve_compose_path(config_path, config.docker_compose.path)
    try:
        content = compose_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ParseError(
            f"Failed to read docker-compose file at {compose_path}: {e}",
            code="compose_unreadable",
        ) from e
    except UnicodeDecodeError as e:
        raise ParseError(
            f"docker-compose file {compose_path} is not valid UTF-8: {e}",
            code="compose_unreadable",
        ) from e

    images, rewritten = resolve_images(content, staging_dir)

    compose = config.docker_compose
    compose.content = content
    compose.images = images
    compose.rewritten_content = rewritten
    return compose_path


def embed_compose(
    config: SproutConfig,
    compose_path: Path,
    embedder: ImageEmbedder,
    timeout: float | None = None,
) -> None:
    """Embed the images resolved by read_compose().

    Archives already written are removed when embedding fails.

    Raises:
        ImageEmbedError: If an image cannot be built, tagged or saved.
        BuildTimeoutError: If the timeout runs out.
    """
    images = config.docker_compose.images
    try:
        embedder.embed(images, compose_path.parent, compose_path, timeout=timeout)
    except (ImageEmbedError, BuildTimeoutError):
        remove_archives(images)
        raise
    logger.info("Embedded %d image(s) from %s", len(images), compose_path)


def load_config(
    path: Path,
    *,
    embed: bool = True,
    settings: Settings | None = None,
    embedder: ImageEmbedder | None = None,
    timeout: float | None = None,
) -> SproutConfig:
    """Parse sprout.yaml and embed the compose project's images.

    Args:
        path: Path to sprout.yaml.
        embed: Resolve and embed compose images (False behaves like
            load_config_metadata).
        settings: Application settings.
        embedder: Image embedder (created from settings if omitted).
        timeout: Seconds allowed for embedding every image.

    Returns:
        SproutConfig with compose content, images and rewritten content set.

    Raises:
        ParseError: If sprout.yaml or the compose file cannot be read.
        SpecParseError: If the compose file has no usable services.
        ImageEmbedError: If an image cannot be built, tagged or saved.
        BuildTimeoutError: If embedding runs past ``timeout``.
    """
    config = load_config_metadata(path)
    if not embed or not config.embeds_compose:
        return config

    if settings is None:
        settings = get_settings()

    compose_path = read_compose(config, path, settings.staging_dir)
    embed_compose(config, compose_path, embedder or ImageEmbedder(settings=settings), timeout)
    return config


__all__ = [
    "embed_compose",
    "load_config",
    "load_config_metadata",
    "load_yaml",
    "parse_config_data",
    "read_compose",
    "resolve_compose_path",
    "resolve_output_path",
]
