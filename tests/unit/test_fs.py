"""Tests for the recursive filesystem helpers."""

from __future__ import annotations

from pathlib import Path, PurePosixPath

import pytest

from themesync.fs import (
    LocalFileSystem,
    clear_directory,
    copy_tree,
    delete_tree,
    directory_size,
    format_size,
    replace_directory,
    stage_copy,
)

# ---------------------------------------------------------------------------
# In-memory double
# ---------------------------------------------------------------------------


class MemoryFileSystem:
    """Dictionary-backed FileSystem with optional one-shot failure injection."""

    def __init__(self) -> None:
        self.dirs: set[PurePosixPath] = {PurePosixPath("/")}
        self.files: dict[PurePosixPath, str] = {}
        self.fail_copy_on: set[str] = set()
        self.fail_rename_to: set[str] = set()
        self._tick = 0
        self.mtimes: dict[PurePosixPath, int] = {}

    @staticmethod
    def _p(path: Path | PurePosixPath) -> PurePosixPath:
        return PurePosixPath(str(path))

    def _touch(self, path: PurePosixPath) -> None:
        self._tick += 1
        self.mtimes[path] = self._tick

    def exists(self, path):
        p = self._p(path)
        return p in self.dirs or p in self.files

    def is_dir(self, path):
        return self._p(path) in self.dirs

    def list_dir(self, path):
        p = self._p(path)
        if p not in self.dirs:
            raise NotADirectoryError(str(p))
        children = {c for c in self.dirs | set(self.files) if c.parent == p and c != p}
        return sorted(Path(str(c)) for c in children)

    def make_dir(self, path):
        p = self._p(path)
        for parent in reversed(p.parents):
            self.dirs.add(parent)
        if p not in self.dirs:
            self.dirs.add(p)
            self._touch(p)

    def copy_file(self, src, dst):
        s, d = self._p(src), self._p(dst)
        if s.name in self.fail_copy_on:
            raise OSError(f"injected copy failure: {s}")
        if d.parent not in self.dirs:
            raise FileNotFoundError(str(d.parent))
        self.files[d] = self.files[s]

    def remove_file(self, path):
        p = self._p(path)
        if p not in self.files:
            raise FileNotFoundError(str(p))
        del self.files[p]

    def remove_dir(self, path):
        p = self._p(path)
        if any(c.parent == p for c in self.dirs | set(self.files) if c != p):
            raise OSError(f"directory not empty: {p}")
        self.dirs.discard(p)

    def rename(self, src, dst):
        s, d = self._p(src), self._p(dst)
        if d.name in self.fail_rename_to:
            self.fail_rename_to.discard(d.name)
            raise OSError(f"injected rename failure: {d}")
        if self.exists(d):
            raise FileExistsError(str(d))

        def moved(path: PurePosixPath) -> PurePosixPath:
            return d / path.relative_to(s)

        self.dirs = {moved(x) if x == s or s in x.parents else x for x in self.dirs}
        self.files = {
            (moved(k) if s in k.parents else k): v for k, v in self.files.items()
        }

    def file_size(self, path):
        return len(self.files[self._p(path)].encode("utf-8"))

    def mtime_ns(self, path):
        return self.mtimes.get(self._p(path), 0)

    def write_text(self, path, text):
        self.files[self._p(path)] = text

    # helpers for assertions
    def tree(self, root: str) -> dict[str, str]:
        base = PurePosixPath(root)
        return {str(k.relative_to(base)): v for k, v in self.files.items() if base in k.parents}


@pytest.fixture
def memfs() -> MemoryFileSystem:
    fs = MemoryFileSystem()
    fs.make_dir(Path("/src/assets"))
    fs.write_text(Path("/src/style.css"), "Theme Name: Acme")
    fs.write_text(Path("/src/index.php"), "<?php")
    fs.write_text(Path("/src/assets/app.js"), "js")
    return fs


# ---------------------------------------------------------------------------
# Recursive copy / delete
# ---------------------------------------------------------------------------


class TestCopyTree:
    """Tests for copy_tree()."""

    def test_copies_nested_tree(self, memfs):
        copy_tree(memfs, Path("/src"), Path("/dst"))
        assert memfs.tree("/dst") == {
            "style.css": "Theme Name: Acme",
            "index.php": "<?php",
            "assets/app.js": "js",
        }

    def test_missing_source_raises(self, memfs):
        with pytest.raises(NotADirectoryError):
            copy_tree(memfs, Path("/nope"), Path("/dst"))

    def test_copy_failure_propagates(self, memfs):
        memfs.fail_copy_on.add("app.js")
        with pytest.raises(OSError):
            copy_tree(memfs, Path("/src"), Path("/dst"))


class TestDeleteTree:
    """Tests for delete_tree() / clear_directory()."""

    def test_delete_tree(self, memfs):
        delete_tree(memfs, Path("/src"))
        assert not memfs.exists(Path("/src"))
        assert memfs.files == {}

    def test_delete_missing_is_noop(self, memfs):
        delete_tree(memfs, Path("/missing"))

    def test_clear_directory_keeps_root(self, memfs):
        clear_directory(memfs, Path("/src"))
        assert memfs.is_dir(Path("/src"))
        assert memfs.list_dir(Path("/src")) == []


class TestSizes:
    """Tests for directory_size() / format_size()."""

    def test_directory_size(self, memfs):
        assert directory_size(memfs, Path("/src")) == len("Theme Name: Acme") + 5 + 2

    def test_directory_size_missing(self, memfs):
        assert directory_size(memfs, Path("/missing")) == 0

    @pytest.mark.parametrize(
        ("num_bytes", "expected"),
        [
            (0, "0 B"),
            (1023, "1023 B"),
            (1024, "1.00 KB"),
            (1536, "1.50 KB"),
            (1024 * 1024, "1.00 MB"),
            (5 * 1024**3, "5.00 GB"),
            (2048 * 1024**3, "2048.00 GB"),
        ],
    )
    def test_format_size(self, num_bytes, expected):
        assert format_size(num_bytes) == expected


# ---------------------------------------------------------------------------
# Stage and swap
# ---------------------------------------------------------------------------


class TestStageAndReplace:
    """Tests for stage_copy() and replace_directory()."""

    def _live(self, memfs: MemoryFileSystem) -> None:
        memfs.make_dir(Path("/themes/acme"))
        memfs.write_text(Path("/themes/acme/old.php"), "old")

    def test_stage_copy_creates_hidden_sibling(self, memfs):
        self._live(memfs)
        staging = stage_copy(memfs, Path("/src"), Path("/themes/acme"))
        assert staging.parent == Path("/themes")
        assert staging.name.startswith(".acme.staging-")
        assert memfs.tree(str(staging))["style.css"] == "Theme Name: Acme"

    def test_stage_copy_failure_cleans_up(self, memfs):
        self._live(memfs)
        memfs.fail_copy_on.add("index.php")
        with pytest.raises(OSError):
            stage_copy(memfs, Path("/src"), Path("/themes/acme"))
        assert [p.name for p in memfs.list_dir(Path("/themes"))] == ["acme"]

    def test_replace_swaps_contents(self, memfs):
        self._live(memfs)
        staging = stage_copy(memfs, Path("/src"), Path("/themes/acme"))
        replace_directory(memfs, staging, Path("/themes/acme"))

        assert memfs.tree("/themes/acme") == memfs.tree("/src")
        assert [p.name for p in memfs.list_dir(Path("/themes"))] == ["acme"]

    def test_replace_into_missing_target(self, memfs):
        memfs.make_dir(Path("/themes"))
        staging = stage_copy(memfs, Path("/src"), Path("/themes/acme"))
        replace_directory(memfs, staging, Path("/themes/acme"))
        assert "style.css" in memfs.tree("/themes/acme")

    def test_failed_swap_restores_previous(self, memfs):
        self._live(memfs)
        staging = stage_copy(memfs, Path("/src"), Path("/themes/acme"))
        memfs.fail_rename_to.add("acme")
        with pytest.raises(OSError):
            replace_directory(memfs, staging, Path("/themes/acme"))

        assert memfs.tree("/themes/acme") == {"old.php": "old"}


class TestLocalFileSystem:
    """Smoke tests against the real disk."""

    def test_stage_and_replace_on_disk(self, tmp_path):
        fs = LocalFileSystem()
        source = tmp_path / "src"
        (source / "nested").mkdir(parents=True)
        (source / "style.css").write_text("Theme Name: Disk")
        (source / "nested" / "a.txt").write_text("a")
        target = tmp_path / "themes" / "disk"
        target.mkdir(parents=True)
        (target / "stale.txt").write_text("stale")

        staging = stage_copy(fs, source, target)
        replace_directory(fs, staging, target)

        assert sorted(p.name for p in target.iterdir()) == ["nested", "style.css"]
        assert (target / "nested" / "a.txt").read_text() == "a"
        assert sorted(p.name for p in (tmp_path / "themes").iterdir()) == ["disk"]
        assert directory_size(fs, target) == len("Theme Name: Disk") + 1
