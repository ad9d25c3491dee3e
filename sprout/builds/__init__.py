"""Build execution: backend selection, nix-build backends and artifact lookup."""

from sprout.builds.artifacts import ArtifactLocator
from sprout.builds.backends import BuildBackend, select_backend

__all__ = ["ArtifactLocator", "BuildBackend", "select_backend"]
