"""sprout.yaml loading and validation."""

from sprout.sproutfile.io import (
    embed_compose,
    load_config,
    load_config_metadata,
    read_compose,
    resolve_output_path,
)
from sprout.sproutfile.schema import SproutConfig

__all__ = [
    "SproutConfig",
    "embed_compose",
    "load_config",
    "load_config_metadata",
    "read_compose",
    "resolve_output_path",
]
