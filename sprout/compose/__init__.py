"""Compose file handling.

This module handles:
- Resolving compose services to unique images (resolver)
- Building/pulling, tagging and exporting those images (embedder)
"""

from sprout.compose.resolver import resolve_images

__all__ = ["resolve_images"]
