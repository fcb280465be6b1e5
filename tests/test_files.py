import json
import os
import stat
import zipfile

import pytest

from releasekeeper.exceptions import ExtractionError
from releasekeeper.install.files import (
    atomic_write_json,
    extract_archive,
    free_space,
    is_safe_archive_member,
    read_json,
    remove_tree,
    sanitize_path_component,
    to_filename_component,
)

from conftest import make_game_zip

pytestmark = [pytest.mark.unit, pytest.mark.core_downloads]


class TestPathHelpers:
    @pytest.mark.parametrize(
        "component, expected",
        [
            ("5.1.0", "5.1.0"),
            ("  2400 ", "2400"),
            ("..", None),
            ("a/b", None),
            ("/abs", None),
            ("bad\x00name", None),
            (None, None),
        ],
    )
    def test_sanitize_path_component(self, component, expected):
        assert sanitize_path_component(component) == expected

    def test_to_filename_component(self):
        assert to_filename_component("5.1.0+77") == "5.1.0+77"
        assert to_filename_component("Omega Nightly/2") == "omega_nightly_2"

    @pytest.mark.parametrize(
        "name, safe",
        [
            ("Terasology/run.sh", True),
            ("../evil.sh", False),
            ("/etc/passwd", False),
            ("a/../../evil", False),
            ("", False),
        ],
    )
    def test_is_safe_archive_member(self, name, safe):
        assert is_safe_archive_member(name) is safe


class TestExtractArchive:
    def test_extracts_all_members(self, tmp_path):
        archive = tmp_path / "game.zip"
        make_game_zip(archive)

        extracted = extract_archive(str(archive), str(tmp_path / "out"))

        assert sorted(p.name for p in extracted) == ["engine.jar", "run.sh"]
        assert (tmp_path / "out" / "Terasology" / "libs" / "engine.jar").read_bytes() == b"engine"

    @pytest.mark.skipif(os.name == "nt", reason="Unix permission bits")
    def test_restores_executable_bit(self, tmp_path):
        archive = tmp_path / "game.zip"
        info = zipfile.ZipInfo("run.sh")
        info.external_attr = (stat.S_IFREG | 0o755) << 16
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr(info, "#!/bin/sh\n")

        extract_archive(str(archive), str(tmp_path / "out"))

        assert os.stat(tmp_path / "out" / "run.sh").st_mode & 0o111

    def test_unsafe_member_rejects_archive(self, tmp_path):
        archive = tmp_path / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("../escape.txt", "x")

        with pytest.raises(ExtractionError) as exc_info:
            extract_archive(str(archive), str(tmp_path / "out"))

        assert exc_info.value.archive_path == str(archive)
        assert not (tmp_path / "escape.txt").exists()

    def test_corrupt_archive_raises(self, tmp_path):
        archive = tmp_path / "broken.zip"
        archive.write_bytes(b"this is not a zip")

        with pytest.raises(ExtractionError):
            extract_archive(str(archive), str(tmp_path / "out"))


class TestRemoveTree:
    def test_removes_nested_tree(self, tmp_path):
        root = tmp_path / "install"
        (root / "a" / "b").mkdir(parents=True)
        (root / "a" / "b" / "file.txt").write_text("x")
        (root / "top.txt").write_text("y")

        remove_tree(str(root))

        assert not root.exists()

    def test_missing_path_is_not_an_error(self, tmp_path):
        remove_tree(str(tmp_path / "missing"))

    @pytest.mark.skipif(os.name == "nt", reason="symlink creation needs privileges on Windows")
    def test_symlinked_directory_is_unlinked_not_followed(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "keep.txt").write_text("keep")
        root = tmp_path / "install"
        root.mkdir()
        os.symlink(outside, root / "link")

        remove_tree(str(root))

        assert not root.exists()
        assert (outside / "keep.txt").read_text() == "keep"


class TestJsonFiles:
    def test_atomic_write_then_read(self, tmp_path):
        target = tmp_path / "marker.json"

        assert atomic_write_json(str(target), {"display_version": "1.0"}) is True
        assert read_json(str(target)) == {"display_version": "1.0"}
        assert [p.name for p in tmp_path.iterdir()] == ["marker.json"]

    def test_atomic_write_failure_leaves_no_file(self, tmp_path):
        target = tmp_path / "marker.json"

        assert atomic_write_json(str(target), {"bad": object()}) is False
        assert list(tmp_path.iterdir()) == []

    def test_atomic_write_into_missing_directory_fails(self, tmp_path):
        assert atomic_write_json(str(tmp_path / "missing" / "m.json"), {}) is False

    def test_read_json_non_object(self, tmp_path):
        target = tmp_path / "list.json"
        target.write_text(json.dumps([1, 2]))

        assert read_json(str(target)) is None
        assert read_json(str(tmp_path / "absent.json")) is None


def test_free_space_queries_nearest_existing_ancestor(tmp_path, mocker):
    usage = mocker.patch("releasekeeper.install.files.shutil.disk_usage")
    usage.return_value.free = 1234

    assert free_space(str(tmp_path / "not" / "yet" / "created")) == 1234
    usage.assert_called_once_with(str(tmp_path))
