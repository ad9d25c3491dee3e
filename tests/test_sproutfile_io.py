"""Tests for sproutfile/io.py and sproutfile/schema.py.

Covers the full and metadata-only parses. The image embedder is mocked,
so no Docker daemon is needed.
"""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sprout.config import Settings
from sprout.errors import BuildTimeoutError, ImageTagError, ParseError, SpecParseError
from sprout.sproutfile.io import (
    load_config,
    load_config_metadata,
    load_yaml,
    resolve_compose_path,
    resolve_output_path,
)
from sprout.sproutfile.schema import DEFAULT_OUTPUT_PATH, SproutConfig

SPROUT_YAML = """\
ssh_keys:
  - ssh-ed25519 AAAAC3Nza user@host
wireless:
  enabled: true
  networks:
    home:
      psk: secret
output:
  path: out/pi.img
docker_compose:
  enabled: true
  path: compose.yaml
autodiscovery: true
"""

COMPOSE_YAML = """\
services:
  cache:
    image: redis:7
  web:
    build: ./web
"""


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(config_dir=tmp_path / "config", staging_dir=tmp_path / "staging")


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Write sprout.yaml and compose.yaml, return the sprout.yaml path."""
    config_path = tmp_path / "sprout.yaml"
    config_path.write_text(SPROUT_YAML)
    (tmp_path / "compose.yaml").write_text(COMPOSE_YAML)
    return config_path


class TestLoadYaml:
    """Tests for load_yaml function."""

    def test_empty_file_is_empty_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml(path) == {}

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ParseError) as exc_info:
            load_yaml(tmp_path / "missing.yaml")
        assert exc_info.value.code == "config_unreadable"

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("ssh_keys: [unclosed\n")
        with pytest.raises(ParseError):
            load_yaml(path)

    def test_non_mapping_document(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ParseError, match="Expected a YAML mapping"):
            load_yaml(path)

    def test_invalid_utf8(self, tmp_path: Path) -> None:
        path = tmp_path / "sprout.yaml"
        path.write_bytes(b"ssh_keys: ['\xff\xfe']\n")
        with pytest.raises(ParseError, match="not valid UTF-8"):
            load_config_metadata(path)


class TestSchema:
    """Tests for SproutConfig validation."""

    def test_defaults(self) -> None:
        config = SproutConfig()
        assert config.ssh_keys == []
        assert config.username == "sprout"
        assert config.wireless.enabled is False
        assert config.wireless.networks == {}
        assert config.output.path == DEFAULT_OUTPUT_PATH
        assert config.docker_compose.enabled is False
        assert config.autodiscovery is False
        assert config.embeds_compose is False

    def test_null_sections_accepted(self) -> None:
        config = SproutConfig.model_validate(
            {"ssh_keys": None, "wireless": {"enabled": True, "networks": None}}
        )
        assert config.ssh_keys == []
        assert config.wireless.networks == {}

    def test_unknown_keys_ignored(self) -> None:
        config = SproutConfig.model_validate({"future_option": 1})
        assert not hasattr(config, "future_option")

    def test_invalid_username_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "sprout.yaml"
        path.write_text('username: "bad name"\n')
        with pytest.raises(ParseError) as exc_info:
            load_config_metadata(path)
        assert exc_info.value.code == "config_invalid"

    def test_wrong_type_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "sprout.yaml"
        path.write_text("ssh_keys: 42\n")
        with pytest.raises(ParseError):
            load_config_metadata(path)

    def test_embeds_compose_needs_path(self) -> None:
        config = SproutConfig.model_validate({"docker_compose": {"enabled": True}})
        assert config.embeds_compose is False


class TestLoadConfigMetadata:
    """Tests for load_config_metadata function."""

    def test_parses_plain_values(self, project: Path) -> None:
        config = load_config_metadata(project)
        assert config.ssh_keys == ["ssh-ed25519 AAAAC3Nza user@host"]
        assert config.wireless.networks["home"].psk == "secret"
        assert config.output.path == "out/pi.img"
        assert config.autodiscovery is True

    def test_never_reads_compose_file(self, project: Path) -> None:
        """A broken compose file does not affect the metadata parse."""
        (project.parent / "compose.yaml").write_text("services: [not, a, mapping")
        config = load_config_metadata(project)
        assert config.docker_compose.content == ""
        assert config.docker_compose.images == []
        assert config.docker_compose.rewritten_content == ""

    def test_compose_file_may_be_missing(self, project: Path) -> None:
        (project.parent / "compose.yaml").unlink()
        config = load_config_metadata(project)
        assert config.docker_compose.path == "compose.yaml"


class TestLoadConfig:
    """Tests for load_config function."""

    def test_embeds_and_rewrites(self, project: Path, settings: Settings) -> None:
        embedder = MagicMock()
        config = load_config(project, settings=settings, embedder=embedder)

        compose = config.docker_compose
        assert compose.content == COMPOSE_YAML
        assert [image.canonical_ref for image in compose.images] == ["redis:7", "web:latest"]
        assert "embedded/redis_7" in compose.rewritten_content
        assert "build" not in compose.rewritten_content

        embedder.embed.assert_called_once()
        args, kwargs = embedder.embed.call_args
        assert args[0] == compose.images
        assert args[1] == project.parent
        assert args[2] == project.parent / "compose.yaml"
        assert kwargs == {"timeout": None}

    def test_archives_staged_under_settings(self, project: Path, settings: Settings) -> None:
        config = load_config(project, settings=settings, embedder=MagicMock())
        for image in config.docker_compose.images:
            assert image.archive_path.parent == settings.staging_dir

    def test_embed_false_skips_compose(self, project: Path, settings: Settings) -> None:
        embedder = MagicMock()
        config = load_config(project, embed=False, settings=settings, embedder=embedder)
        embedder.embed.assert_not_called()
        assert config.docker_compose.rewritten_content == ""

    def test_compose_disabled(self, tmp_path: Path, settings: Settings) -> None:
        path = tmp_path / "sprout.yaml"
        path.write_text("docker_compose:\n  enabled: false\n  path: compose.yaml\n")
        embedder = MagicMock()
        config = load_config(path, settings=settings, embedder=embedder)
        embedder.embed.assert_not_called()
        assert config.docker_compose.images == []

    def test_missing_compose_file(self, project: Path, settings: Settings) -> None:
        (project.parent / "compose.yaml").unlink()
        with pytest.raises(ParseError) as exc_info:
            load_config(project, settings=settings, embedder=MagicMock())
        assert exc_info.value.code == "compose_unreadable"

    def test_compose_invalid_utf8(self, project: Path, settings: Settings) -> None:
        (project.parent / "compose.yaml").write_bytes(b"services:\n  a:\n    image: \xff\n")
        embedder = MagicMock()
        with pytest.raises(ParseError) as exc_info:
            load_config(project, settings=settings, embedder=embedder)
        assert exc_info.value.code == "compose_unreadable"
        embedder.embed.assert_not_called()

    def test_malformed_compose(self, project: Path, settings: Settings) -> None:
        (project.parent / "compose.yaml").write_text("version: '3'\n")
        with pytest.raises(SpecParseError):
            load_config(project, settings=settings, embedder=MagicMock())

    def test_embed_failure_removes_archives(self, project: Path, settings: Settings) -> None:
        """Archives written before a failure are cleaned up; content stays unset."""
        settings.staging_dir.mkdir(parents=True)
        partial = settings.staging_dir / "redis_7.tar"

        def fail_after_first(images, *args, **kwargs):
            partial.write_bytes(b"tar")
            raise ImageTagError("web:latest", "embedded/web_latest", "boom")

        embedder = MagicMock()
        embedder.embed.side_effect = fail_after_first

        with pytest.raises(ImageTagError):
            load_config(project, settings=settings, embedder=embedder)
        assert not partial.exists()

    def test_embed_timeout_removes_archives(self, project: Path, settings: Settings) -> None:
        settings.staging_dir.mkdir(parents=True)
        partial = settings.staging_dir / "redis_7.tar"

        def time_out(images, *args, **kwargs):
            partial.write_bytes(b"tar")
            raise BuildTimeoutError(kwargs["timeout"])

        embedder = MagicMock()
        embedder.embed.side_effect = time_out

        with pytest.raises(BuildTimeoutError):
            load_config(project, settings=settings, embedder=embedder, timeout=30)
        assert not partial.exists()

    def test_absolute_compose_path(self, tmp_path: Path, settings: Settings) -> None:
        compose = tmp_path / "elsewhere" / "compose.yaml"
        compose.parent.mkdir()
        compose.write_text(COMPOSE_YAML)
        path = tmp_path / "sprout.yaml"
        path.write_text(f"docker_compose:\n  enabled: true\n  path: {compose}\n")

        embedder = MagicMock()
        load_config(path, settings=settings, embedder=embedder)
        assert embedder.embed.call_args.args[2] == compose


class TestPaths:
    """Tests for path resolution helpers."""

    def test_compose_path_relative_to_config(self, tmp_path: Path) -> None:
        config_path = tmp_path / "project" / "sprout.yaml"
        assert resolve_compose_path(config_path, "dc.yaml") == tmp_path / "project" / "dc.yaml"

    def test_output_path_relative_to_cwd(self, tmp_path: Path) -> None:
        config = SproutConfig.model_validate({"output": {"path": "out/x.img"}})
        assert resolve_output_path(config, cwd=tmp_path) == tmp_path / "out" / "x.img"

    def test_output_path_default(self, tmp_path: Path) -> None:
        assert resolve_output_path(SproutConfig(), cwd=tmp_path) == tmp_path / "build" / "image.img"

    def test_output_path_absolute(self, tmp_path: Path) -> None:
        target = tmp_path / "abs.img"
        config = SproutConfig.model_validate({"output": {"path": str(target)}})
        assert resolve_output_path(config, cwd=Path("/somewhere")) == target
