"""Tests for builds/artifacts.py module."""

from pathlib import Path
from unittest.mock import patch

import pytest

from sprout.builds.artifacts import ArtifactLocator
from sprout.errors import NotFoundError
from sprout.types import BackendKind, BuildResult


def make_sd_image(store_path: Path, *names: str) -> list[Path]:
    image_dir = store_path / "sd-image"
    image_dir.mkdir(parents=True)
    images = []
    for name in names:
        path = image_dir / name
        path.write_bytes(b"img")
        images.append(path)
    return images


class TestLocateImageFile:
    """A reported path that already is an image is returned as is."""

    def test_returned_unchanged(self, tmp_path: Path) -> None:
        image = tmp_path / "nixos.img"
        image.write_bytes(b"img")
        locator = ArtifactLocator()
        with patch.object(locator, "find_sd_image") as find_sd_image:
            assert locator.locate(str(image), BackendKind.LOCAL) == image
        find_sd_image.assert_not_called()

    def test_returned_unchanged_for_container(self, tmp_path: Path) -> None:
        image = tmp_path / "custom.img"
        image.write_bytes(b"img")
        locator = ArtifactLocator(store_root=tmp_path / "nix-store")
        assert locator.locate(str(image), BackendKind.CONTAINERIZED) == image


class TestLocateLocal:
    """Tests for local backend output layout."""

    def test_single_sd_image(self, tmp_path: Path) -> None:
        store_path = tmp_path / "abc-nixos-sd-image"
        (image,) = make_sd_image(store_path, "nixos-sd-image-aarch64.img")
        assert ArtifactLocator().locate(str(store_path), BackendKind.LOCAL) == image

    def test_non_image_files_ignored(self, tmp_path: Path) -> None:
        store_path = tmp_path / "out"
        (image,) = make_sd_image(store_path, "nixos.img")
        (store_path / "sd-image" / "nixos.img.sha256").write_text("x")
        assert ArtifactLocator().locate(str(store_path), BackendKind.LOCAL) == image

    def test_no_image(self, tmp_path: Path) -> None:
        store_path = tmp_path / "out"
        make_sd_image(store_path)
        with pytest.raises(NotFoundError):
            ArtifactLocator().locate(str(store_path), BackendKind.LOCAL)

    def test_ambiguous(self, tmp_path: Path) -> None:
        store_path = tmp_path / "out"
        make_sd_image(store_path, "a.img", "b.img")
        with pytest.raises(NotFoundError) as exc_info:
            ArtifactLocator().locate(str(store_path), BackendKind.LOCAL)
        assert exc_info.value.code == "artifact_ambiguous"

    def test_missing_path(self, tmp_path: Path) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            ArtifactLocator().locate(str(tmp_path / "gone"), BackendKind.LOCAL)
        assert exc_info.value.phase.value == "locate"

    def test_missing_sd_image_dir(self, tmp_path: Path) -> None:
        store_path = tmp_path / "out"
        store_path.mkdir()
        with pytest.raises(NotFoundError):
            ArtifactLocator().locate(str(store_path), BackendKind.LOCAL)


class TestLocateContainerized:
    """Tests for containerized output mapped onto the host store."""

    def test_maps_container_path(self, tmp_path: Path) -> None:
        locator = ArtifactLocator(store_root=tmp_path / "nix-store")
        assert locator.host_path("/nix/store/abc-image") == tmp_path / "nix-store" / "store" / "abc-image"

    def test_result_image_inside_store_path(self, tmp_path: Path) -> None:
        store_root = tmp_path / "nix-store"
        out = store_root / "store" / "abc-image"
        out.mkdir(parents=True)
        (out / "result.img").write_bytes(b"img")

        locator = ArtifactLocator(store_root=store_root)
        assert locator.locate("/nix/store/abc-image", BackendKind.CONTAINERIZED) == out / "result.img"

    def test_reported_result_image_file(self, tmp_path: Path) -> None:
        store_root = tmp_path / "nix-store"
        result = store_root / "store" / "abc" / "result.img"
        result.parent.mkdir(parents=True)
        result.write_bytes(b"img")

        locator = ArtifactLocator(store_root=store_root)
        assert locator.locate("/nix/store/abc/result.img", BackendKind.CONTAINERIZED) == result

    def test_falls_back_to_sd_image(self, tmp_path: Path) -> None:
        store_root = tmp_path / "nix-store"
        out = store_root / "store" / "abc-image"
        (image,) = make_sd_image(out, "nixos.img")

        locator = ArtifactLocator(store_root=store_root)
        assert locator.locate("/nix/store/abc-image", BackendKind.CONTAINERIZED) == image

    def test_nothing_found(self, tmp_path: Path) -> None:
        locator = ArtifactLocator(store_root=tmp_path / "nix-store")
        with pytest.raises(NotFoundError):
            locator.locate("/nix/store/missing", BackendKind.CONTAINERIZED)

    def test_without_store_root_uses_path_as_is(self, tmp_path: Path) -> None:
        out = tmp_path / "out"
        out.mkdir()
        (out / "result.img").write_bytes(b"img")
        assert ArtifactLocator().locate(str(out), BackendKind.CONTAINERIZED) == out / "result.img"


class TestLocateResult:
    """Tests for locate_result method."""

    def test_sets_artifact(self, tmp_path: Path) -> None:
        store_path = tmp_path / "out"
        (image,) = make_sd_image(store_path, "nixos.img")
        result = BuildResult(backend=BackendKind.LOCAL, reported_path=str(store_path))

        returned = ArtifactLocator().locate_result(result)

        assert returned is result
        assert result.artifact == image
