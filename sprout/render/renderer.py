"""Render the Nix build input from a SproutConfig.

The template ships with the package and is versioned by TEMPLATE_VERSION.
Rendering is pure: equal configurations produce byte-identical output.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import jinja2

from sprout.errors import TemplateError
from sprout.sproutfile.schema import SproutConfig

logger = logging.getLogger(__name__)

TEMPLATE_NAME = "image.nix.j2"
TEMPLATE_VERSION = "1"
TEMPLATES_DIR = Path(__file__).parent / "templates"


def nix_string(value: object) -> str:
    """Escape a value for use inside a double-quoted Nix string."""
    text = str(value)
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("${", "\\${")


def nix_indented(value: object, indent: int = 0) -> str:
    """Escape and indent text for a Nix ''indented string''."""
    text = str(value).replace("''", "'''").replace("${", "''${")
    pad = " " * indent
    return "\n".join(f"{pad}{line}" if line else "" for line in text.splitlines())


def create_environment(templates_dir: Path = TEMPLATES_DIR) -> jinja2.Environment:
    """Create the Jinja2 environment used for build inputs."""
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(templates_dir)),
        undefined=jinja2.StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    env.filters["nix_string"] = nix_string
    env.filters["nix_indented"] = nix_indented
    return env


def template_context(config: SproutConfig) -> dict[str, Any]:
    """Flatten a SproutConfig into template variables.

    Networks are sorted by name so that dict ordering never leaks into
    the output.
    """
    compose = config.docker_compose
    images = [
        {
            "canonical_ref": image.canonical_ref,
            "local_tag": image.local_tag,
            "archive_path": str(image.archive_path),
            "archive_name": image.archive_path.name,
        }
        for image in compose.images
    ]
    agent = config.agent_binary_path if config.autodiscovery else None

    return {
        "template_version": TEMPLATE_VERSION,
        "username": config.username,
        "ssh_keys": list(config.ssh_keys),
        "wireless_enabled": config.wireless.enabled,
        "networks": sorted(
            (name, network.psk) for name, network in config.wireless.networks.items()
        ),
        "compose_enabled": bool(compose.enabled and compose.rewritten_content),
        "compose_content": compose.rewritten_content,
        "images": images,
        "autodiscovery": config.autodiscovery,
        "agent_binary": str(agent) if agent else "",
    }


def render_build_input(
    config: SproutConfig,
    env: jinja2.Environment | None = None,
    template_name: str = TEMPLATE_NAME,
) -> str:
    """Render the Nix expression for a configuration.

    Args:
        config: Loaded configuration.
        env: Jinja2 environment (default: packaged templates).
        template_name: Template to render.

    Returns:
        Rendered Nix source.

    Raises:
        TemplateError: If the template is malformed or references a
            missing field.
    """
    env = env or create_environment()
    try:
        template = env.get_template(template_name)
        return template.render(**template_context(config))
    except jinja2.TemplateSyntaxError as e:
        logger.error("Template syntax error in %s line %s: %s", e.name, e.lineno, e)
        raise TemplateError(f"Malformed template {template_name}: {e}") from e
    except jinja2.UndefinedError as e:
        raise TemplateError(
            f"Missing template field: {e}", code="template_missing_field"
        ) from e
    except jinja2.TemplateError as e:
        raise TemplateError(f"Cannot render {template_name}: {e}") from e


def write_build_input(text: str, directory: Path | None = None) -> Path:
    """Write a rendered build input to a private temporary file.

    Returns:
        Path of the new ``image-*.nix`` file. The caller deletes it.
    """
    fd, name = tempfile.mkstemp(prefix="image-", suffix=".nix", dir=directory)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(text)
    logger.debug("Build input written to %s", name)
    return Path(name)


__all__ = [
    "TEMPLATE_NAME",
    "TEMPLATE_VERSION",
    "create_environment",
    "nix_indented",
    "nix_string",
    "render_build_input",
    "template_context",
    "write_build_input",
]
