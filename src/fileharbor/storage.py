"""Local file storage for fetched copies."""

import logging
import os

from fileharbor.errors import DirectoryError

LOG = logging.getLogger("fileharbor.storage")


def prepare_directory(path: str) -> str:
    """Create ``path`` if needed and make sure we can write into it."""
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as exc:
        LOG.error("Unable to prepare local directory path=%s error=%s", path, exc)
        raise DirectoryError(f"Unable to prepare local directory {path}") from exc
    if not os.access(path, os.W_OK | os.X_OK):
        LOG.error("Local directory is not writable path=%s", path)
        raise DirectoryError(f"Local directory {path} is not writable")
    return os.path.abspath(path)


def _split_name(name: str) -> tuple[str, str]:
    base, ext = os.path.splitext(name)
    if not base:
        # dotfiles like ".bashrc"
        return name, ""
    return base, ext


def unique_path(directory: str, name: str) -> str:
    """Return ``directory/name``, or ``name_0.ext``, ``name_1.ext``... if taken."""
    candidate = os.path.join(directory, name)
    if not os.path.exists(candidate):
        return candidate
    base, ext = _split_name(name)
    counter = 0
    while True:
        candidate = os.path.join(directory, f"{base}_{counter}{ext}")
        if not os.path.exists(candidate):
            return candidate
        counter += 1


def save_data(data: bytes, directory: str, name: str) -> str:
    """Write ``data`` under ``directory`` without ever replacing an existing file.

    The destination is opened with O_EXCL, so a concurrent writer picking the
    same name moves on to the next free one.
    """
    while True:
        dest = unique_path(directory, name)
        try:
            fd = os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            continue
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except OSError:
            delete_file(dest)
            raise
        return dest


def delete_file(path: str) -> bool:
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    LOG.debug("Deleted cached file path=%s", path)
    return True
