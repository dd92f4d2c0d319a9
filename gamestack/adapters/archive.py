"""Directory archive and copy helpers shared by backup, restore and source sync.

Limitation: symbolic links and special files (devices, sockets, fifos) are
skipped when archiving or copying; they are never followed or rewritten.
"""

from __future__ import annotations

import os
import posixpath
import shutil
import stat
import zipfile
from pathlib import Path

from gamestack.errors import InfrastructureError, UnsafeArchiveEntryError

# Reserved metadata folder that directory resets leave in place.
RESERVED_DIR = ".git"


def zip_directory(src_dir: str | Path, dst_zip: str | Path) -> int:
    """Archive `src_dir` recursively into `dst_zip`; returns the entry count."""

    src = Path(src_dir)
    count = 0
    try:
        with zipfile.ZipFile(dst_zip, "w", compression=zipfile.ZIP_DEFLATED, strict_timestamps=False) as zf:
            for root, dirnames, filenames in os.walk(src, followlinks=False):
                root_path = Path(root)

                # Symlinked directories show up in dirnames; never descend into them.
                dirnames[:] = sorted(d for d in dirnames if not (root_path / d).is_symlink())

                for d in dirnames:
                    rel = (root_path / d).relative_to(src).as_posix()
                    zf.write(root_path / d, rel + "/")
                    count += 1

                for name in sorted(filenames):
                    path = root_path / name
                    mode = path.lstat().st_mode
                    if not stat.S_ISREG(mode):
                        continue
                    zf.write(path, path.relative_to(src).as_posix())
                    count += 1
    except (OSError, ValueError) as e:
        raise InfrastructureError(f"zip directory {src}: {e}") from e
    return count


def _safe_member_path(name: str) -> str:
    """Normalize an archive member name, rejecting anything that escapes the root."""

    if "\x00" in name:
        raise UnsafeArchiveEntryError(name)

    cleaned = name.replace("\\", "/")
    if cleaned.startswith("/") or posixpath.isabs(cleaned) or (len(cleaned) > 1 and cleaned[1] == ":"):
        raise UnsafeArchiveEntryError(name)

    normalized = posixpath.normpath(cleaned)
    if normalized == ".." or normalized.startswith("../"):
        raise UnsafeArchiveEntryError(name)
    return normalized


def validate_archive(src_zip: str | Path) -> list[str]:
    """Check every member name up front; returns the normalized names."""

    try:
        with zipfile.ZipFile(src_zip) as zf:
            return [_safe_member_path(info.filename) for info in zf.infolist()]
    except zipfile.BadZipFile as e:
        raise InfrastructureError(f"open zip {src_zip}: {e}") from e


def unzip_to_directory(src_zip: str | Path, dst_dir: str | Path) -> int:
    """Extract `src_zip` into `dst_dir`.

    Every member is validated before the first write, so an unsafe entry
    aborts the whole extraction without writing anything.
    """

    dst = Path(dst_dir)
    validate_archive(src_zip)

    count = 0
    try:
        with zipfile.ZipFile(src_zip) as zf:
            for info in zf.infolist():
                rel = _safe_member_path(info.filename)
                if rel == ".":
                    continue
                out_path = dst / rel
                perm = (info.external_attr >> 16) & 0o777

                if info.is_dir():
                    out_path.mkdir(parents=True, exist_ok=True)
                    if perm:
                        out_path.chmod(perm | stat.S_IRWXU)
                    continue

                out_path.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, open(out_path, "wb") as dst_file:
                    shutil.copyfileobj(src, dst_file)
                if perm:
                    out_path.chmod(perm)
                count += 1
    except (OSError, zipfile.BadZipFile) as e:
        raise InfrastructureError(f"extract zip {src_zip}: {e}") from e
    return count


def clear_directory(dir_path: str | Path) -> None:
    """Remove everything in `dir_path` except the reserved metadata folder."""

    path = Path(dir_path)
    try:
        for entry in path.iterdir():
            if entry.name == RESERVED_DIR:
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
    except OSError as e:
        raise InfrastructureError(f"clear directory {path}: {e}") from e


def reset_directory(dir_path: str | Path) -> None:
    path = Path(dir_path)
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise InfrastructureError(f"create directory {path}: {e}") from e
    clear_directory(path)


def copy_directory_contents(src_dir: str | Path, dst_dir: str | Path) -> None:
    """Copy the contents of `src_dir` into `dst_dir`, skipping `.git` at the top level."""

    src = Path(src_dir)
    dst = Path(dst_dir)
    try:
        dst.mkdir(parents=True, exist_ok=True)
        for entry in sorted(src.iterdir()):
            if entry.name == RESERVED_DIR:
                continue
            _copy_path(entry, dst / entry.name)
    except OSError as e:
        raise InfrastructureError(f"copy {src} -> {dst}: {e}") from e


def _copy_path(src: Path, dst: Path) -> None:
    mode = src.lstat().st_mode
    if stat.S_ISREG(mode):
        shutil.copy2(src, dst)
    elif stat.S_ISDIR(mode):
        dst.mkdir(parents=True, exist_ok=True)
        for child in sorted(src.iterdir()):
            _copy_path(child, dst / child.name)
    # Symlinks and special files are skipped.
