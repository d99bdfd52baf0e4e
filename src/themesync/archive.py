"""Archive extraction and theme validation for downloaded branch archives."""

from __future__ import annotations

import re
import tarfile
import zipfile
from pathlib import Path

from themesync.errors import ErrorKind, Result
from themesync.logging import get_logger

log = get_logger("themesync.archive")

MANIFEST_FILE = "style.css"
MANIFEST_READ_BYTES = 8192
IGNORED_TOP_LEVEL = frozenset({"__MACOSX"})

_THEME_NAME_RE = re.compile(r"^[ \t/*#@]*Theme Name:(.*)$", re.IGNORECASE | re.MULTILINE)


def _within(root: Path, candidate: Path) -> bool:
    try:
        candidate.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def extract_archive(archive: Path, destination: Path) -> Result[Path]:
    """Unpack a zip or tar archive into *destination*."""
    destination.mkdir(parents=True, exist_ok=True)
    try:
        if zipfile.is_zipfile(archive):
            with zipfile.ZipFile(archive) as zf:
                for member in zf.namelist():
                    if not _within(destination, destination / member):
                        return Result.failure(
                            ErrorKind.EXTRACT_FAILED,
                            "Archive contains unsafe paths.",
                            detail=member,
                        )
                zf.extractall(destination)
        elif tarfile.is_tarfile(archive):
            with tarfile.open(archive) as tf:
                tf.extractall(destination, filter="data")
        else:
            return Result.failure(
                ErrorKind.EXTRACT_FAILED,
                "Failed to extract theme archive: unsupported archive format.",
            )
    except (zipfile.BadZipFile, tarfile.TarError, OSError, EOFError) as exc:
        log.warning("archive_extract_failed", archive=str(archive), error=str(exc))
        return Result.failure(
            ErrorKind.EXTRACT_FAILED,
            "Failed to extract theme archive.",
            detail=str(exc),
        )
    return Result.success(destination)


def locate_theme_root(extract_dir: Path, theme_path: str = "") -> Result[Path]:
    """Find the candidate theme root inside an extracted archive.

    Branch archives wrap everything in a single ``<owner>-<repo>-<sha>``
    directory; *theme_path* is resolved relative to it.
    """
    top_level = sorted(
        p for p in extract_dir.iterdir() if p.is_dir() and p.name not in IGNORED_TOP_LEVEL
    )
    if not top_level:
        return Result.failure(ErrorKind.EXTRACT_FAILED, "Invalid theme archive structure.")
    if len(top_level) > 1:
        log.warning("archive_multiple_roots", roots=[p.name for p in top_level])
    root = top_level[0]

    subpath = theme_path.strip().strip("/")
    if not subpath:
        return Result.success(root)

    candidate = root / subpath
    if ".." in Path(subpath).parts or not _within(root, candidate) or not candidate.is_dir():
        return Result.failure(
            ErrorKind.PATH_NOT_FOUND,
            f'Theme path "{subpath}" not found in repository.',
            detail=subpath,
        )
    return Result.success(candidate)


def read_theme_name(manifest: Path) -> str:
    """Return the ``Theme Name`` header of a stylesheet, or ``""``."""
    with manifest.open("rb") as fh:
        head = fh.read(MANIFEST_READ_BYTES).decode("utf-8", errors="replace")
    match = _THEME_NAME_RE.search(head)
    if match is None:
        return ""
    return re.sub(r"\s*(?:\*/|\?>).*$", "", match.group(1)).strip()


def _find_nested_theme(root: Path) -> Path | None:
    for subdir in sorted(p for p in root.iterdir() if p.is_dir()):
        if (subdir / MANIFEST_FILE).is_file():
            return subdir
    return None


def validate_theme(root: Path) -> Result[str]:
    """Check *root* holds a theme manifest with a name; returns the theme name."""
    manifest = root / MANIFEST_FILE
    if not manifest.is_file():
        message = "The repository does not contain a valid WordPress theme (missing style.css)."
        nested = _find_nested_theme(root)
        if nested is not None:
            message += f' Found theme in "{nested.name}" - set this as Theme Path in settings.'
        return Result.failure(
            ErrorKind.NOT_A_VALID_ARTIFACT,
            message,
            detail=nested.name if nested is not None else "",
        )

    try:
        name = read_theme_name(manifest)
    except OSError as exc:
        return Result.failure(
            ErrorKind.NOT_A_VALID_ARTIFACT,
            "Could not read style.css.",
            detail=str(exc),
        )
    if not name:
        return Result.failure(
            ErrorKind.NOT_A_VALID_ARTIFACT,
            "The style.css file does not contain a valid Theme Name header.",
        )
    return Result.success(name)
