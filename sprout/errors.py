"""Exceptions raised by the grow pipeline.

Every error carries a machine-readable ``code`` and the ``phase`` it was
raised in so the CLI can report where a run stopped.
"""

from sprout.types import Phase


class SproutError(Exception):
    """Base error for all pipeline failures."""

    phase: Phase = Phase.CONFIG

    def __init__(self, message: str, code: str = "sprout_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ParseError(SproutError):
    """sprout.yaml (or a file it references) is unreadable or malformed."""

    phase = Phase.CONFIG

    def __init__(self, message: str, code: str = "parse_error") -> None:
        super().__init__(message, code)


class SpecParseError(SproutError):
    """The compose file cannot be parsed into service definitions."""

    phase = Phase.RESOLVE

    def __init__(self, message: str, code: str = "compose_parse_error") -> None:
        super().__init__(message, code)


class ImageEmbedError(SproutError):
    """Base error for the embedding phase."""

    phase = Phase.EMBED

    def __init__(self, message: str, code: str = "image_embed_error") -> None:
        super().__init__(message, code)


class ImageBuildError(ImageEmbedError):
    """Building a compose service image failed."""

    def __init__(self, service: str, output: str = "") -> None:
        super().__init__(f"Failed to build service {service}", code="image_build_error")
        self.service = service
        self.output = output


class ImageTagError(ImageEmbedError):
    """Tagging an image with its local tag failed."""

    def __init__(self, source: str, local_tag: str, reason: str) -> None:
        super().__init__(
            f"Failed to tag image {source} as {local_tag}: {reason}",
            code="image_tag_error",
        )
        self.source = source
        self.local_tag = local_tag


class ImageExportError(ImageEmbedError):
    """Saving a tagged image to its archive failed."""

    def __init__(self, local_tag: str, archive_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to save image {local_tag} to {archive_path}: {reason}",
            code="image_export_error",
        )
        self.local_tag = local_tag
        self.archive_path = archive_path


class TemplateError(SproutError):
    """The build-input template is malformed or a required field is missing."""

    phase = Phase.RENDER

    def __init__(self, message: str, code: str = "template_error") -> None:
        super().__init__(message, code)


class BuildError(SproutError):
    """The build backend failed.

    Attributes:
        exit_code: Exit status of nix-build or the container, if known.
        diagnostics: Tail of the captured build output.
    """

    phase = Phase.BUILD

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        diagnostics: list[str] | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message, code)
        self.exit_code = exit_code
        self.diagnostics = diagnostics or []

    def __str__(self) -> str:
        if not self.diagnostics:
            return self.message
        tail = "\n".join(self.diagnostics)
        return f"{self.message}\n{tail}"


class BuildTimeoutError(BuildError):
    """The invocation deadline expired during the build."""

    def __init__(self, timeout: float, diagnostics: list[str] | None = None) -> None:
        super().__init__(
            f"Build timed out after {timeout:.0f} seconds",
            exit_code=-1,
            diagnostics=diagnostics,
            code="build_timeout",
        )
        self.timeout = timeout


class CacheLockTimeoutError(BuildError):
    """Another invocation holds the shared Nix store lock."""

    def __init__(self, lock_path: str, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout:.0f}s waiting for {lock_path}; "
            "another sprout build is using the shared Nix store",
            code="cache_lock_timeout",
        )
        self.lock_path = lock_path


class ExtractionError(SproutError):
    """No artifact reference could be recovered from build output."""

    phase = Phase.BUILD

    def __init__(self, message: str, code: str = "extraction_error") -> None:
        super().__init__(message, code)


class NotFoundError(SproutError):
    """The image file is absent at every known location."""

    phase = Phase.LOCATE

    def __init__(self, message: str, path: str, code: str = "artifact_not_found") -> None:
        super().__init__(message, code)
        self.path = path


class DeliveryError(SproutError):
    """Copying the image to its destination failed."""

    phase = Phase.DELIVER

    def __init__(self, message: str, destination: str, code: str = "delivery_error") -> None:
        super().__init__(message, code)
        self.destination = destination


__all__ = [
    "BuildError",
    "BuildTimeoutError",
    "CacheLockTimeoutError",
    "DeliveryError",
    "ExtractionError",
    "ImageBuildError",
    "ImageEmbedError",
    "ImageExportError",
    "ImageTagError",
    "NotFoundError",
    "ParseError",
    "SpecParseError",
    "SproutError",
    "TemplateError",
]
