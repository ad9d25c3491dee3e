"""Build-input rendering.

Access the renderer via sprout.render.renderer.
"""

from sprout.render.renderer import render_build_input, write_build_input

__all__ = ["render_build_input", "write_build_input"]
