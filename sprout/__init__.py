"""Sprout - grow bootable NixOS images from docker compose files.

This package orchestrates image embedding, Nix build-input rendering,
local or containerized nix-build execution, and delivery of the resulting
SD-card image.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
