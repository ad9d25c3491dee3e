"""Tests for errors.py and types.py modules."""

from pathlib import Path

import pytest

from sprout.errors import (
    BuildError,
    BuildTimeoutError,
    CacheLockTimeoutError,
    DeliveryError,
    ExtractionError,
    ImageBuildError,
    ImageExportError,
    ImageTagError,
    NotFoundError,
    ParseError,
    SpecParseError,
    SproutError,
    TemplateError,
)
from sprout.types import Phase, ResolvedImage


class TestPhases:
    """Every error names the phase it belongs to."""

    @pytest.mark.parametrize(
        ("error", "phase"),
        [
            (ParseError("x"), Phase.CONFIG),
            (SpecParseError("x"), Phase.RESOLVE),
            (ImageBuildError("web"), Phase.EMBED),
            (ImageTagError("a", "b", "c"), Phase.EMBED),
            (ImageExportError("a", "/tmp/a.tar", "c"), Phase.EMBED),
            (TemplateError("x"), Phase.RENDER),
            (BuildError("x"), Phase.BUILD),
            (BuildTimeoutError(60), Phase.BUILD),
            (CacheLockTimeoutError("/tmp/lock", 5), Phase.BUILD),
            (ExtractionError("x"), Phase.BUILD),
            (NotFoundError("x", "/p"), Phase.LOCATE),
            (DeliveryError("x", "/d"), Phase.DELIVER),
        ],
    )
    def test_phase(self, error: SproutError, phase: Phase) -> None:
        assert isinstance(error, SproutError)
        assert error.phase == phase


class TestBuildError:
    """Tests for BuildError formatting."""

    def test_str_without_diagnostics(self) -> None:
        assert str(BuildError("failed")) == "failed"

    def test_str_with_diagnostics(self) -> None:
        error = BuildError("failed", exit_code=2, diagnostics=["line 1", "line 2"])
        assert str(error) == "failed\nline 1\nline 2"
        assert error.exit_code == 2

    def test_timeout_defaults(self) -> None:
        error = BuildTimeoutError(3600)
        assert error.code == "build_timeout"
        assert error.exit_code == -1
        assert "3600" in error.message


class TestResolvedImage:
    """Tests for ResolvedImage dataclass."""

    def test_needs_build(self) -> None:
        pulled = ResolvedImage("redis:7", "embedded/redis_7", Path("/s/redis_7.tar"))
        built = ResolvedImage("api:latest", "embedded/api_latest", Path("/s/a.tar"), "api")
        assert pulled.needs_build is False
        assert built.needs_build is True

    def test_hashable_and_equal(self) -> None:
        a = ResolvedImage("redis:7", "embedded/redis_7", Path("/s/redis_7.tar"))
        b = ResolvedImage("redis:7", "embedded/redis_7", Path("/s/redis_7.tar"))
        assert a == b
        assert len({a, b}) == 1
