"""
File Operations for the modlock Download Subsystem

This module provides atomic writes, safe path handling, and module archive
extraction.
"""

import os
import shutil
import stat
import tempfile
import zipfile
import zlib
from typing import Any, Callable

from modlock.constants import EXECUTABLE_PERMISSIONS, REGULAR_FILE_PERMISSIONS
from modlock.exceptions import ExtractionError
from modlock.log_utils import logger


def _is_within_base(real_base_dir: str, candidate: str) -> bool:
    """
    Determine whether the candidate path resides within the given base directory.

    Returns:
        True if the candidate path is inside `real_base_dir`, False otherwise.
    """
    try:
        return os.path.commonpath([real_base_dir, candidate]) == real_base_dir
    except ValueError:
        return False


def _safe_rmtree(path_to_remove: str, base_dir: str) -> bool:
    """
    Remove a file, directory, or symlink, refusing anything outside `base_dir`.

    Symlinks are unlinked rather than followed.

    Parameters:
        path_to_remove (str): Filesystem path to remove.
        base_dir (str): Base directory that removals must be contained within.

    Returns:
        bool: `True` if the item was removed or did not exist, `False` if removal was skipped for safety or an error occurred.
    """
    try:
        real_base_dir = os.path.realpath(base_dir)

        if os.path.islink(path_to_remove):
            real_link_dir = os.path.realpath(
                os.path.dirname(os.path.abspath(path_to_remove))
            )
            if not _is_within_base(real_base_dir, real_link_dir):
                logger.warning(
                    "Skipping removal of symlink %s because its location is outside the base directory",
                    path_to_remove,
                )
                return False
            os.unlink(path_to_remove)
            return True

        if not os.path.lexists(path_to_remove):
            return True

        real_target = os.path.realpath(path_to_remove)
        if not _is_within_base(real_base_dir, real_target):
            logger.warning(
                "Skipping removal of %s because it resolves outside the base directory",
                path_to_remove,
            )
            return False

        if os.path.isdir(path_to_remove):
            shutil.rmtree(path_to_remove)
        else:
            os.remove(path_to_remove)
    except OSError as e:
        logger.error("Error removing %s: %s", path_to_remove, e)
        return False
    else:
        return True


def _atomic_write(
    file_path: str, writer_func: Callable[[Any], None], suffix: str = ".tmp"
) -> bool:
    """
    Write data to a file atomically by writing to a temporary file and atomically replacing the target on success.

    Parameters:
        file_path (str): Destination file path to be written.
        writer_func (Callable[[Any], None]): Callable that receives an open text file-like object and writes the desired content to it.
        suffix (str): Suffix to use for the temporary file name (default ".tmp").

    Returns:
        bool: `True` if the temporary write and atomic replace succeeded, `False` on any error. Failures are logged at debug level; callers decide how loudly to report them.
    """
    try:
        temp_fd, temp_path = tempfile.mkstemp(
            dir=os.path.dirname(file_path) or ".", prefix="tmp-", suffix=suffix
        )
    except OSError as e:
        logger.debug(f"Could not create temporary file for {file_path}: {e}")
        return False

    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as temp_f:
            writer_func(temp_f)
        os.chmod(temp_path, REGULAR_FILE_PERMISSIONS)
        os.replace(temp_path, file_path)
    except (UnicodeEncodeError, OSError) as e:
        logger.debug(f"Could not write to {file_path}: {e}")
        return False
    finally:
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass
    return True


def atomic_write_text(file_path: str, content: str) -> bool:
    """Atomically write text content to the given file path."""

    def _write_content(f):
        f.write(content)

    return _atomic_write(file_path, _write_content, suffix=".txt")


def _is_safe_archive_member(member_name: str) -> bool:
    """
    Determine whether an archive member name is safe to extract.

    Returns:
        `True` if the member name contains no absolute paths, parent-directory references, or null bytes, `False` otherwise.
    """
    if not member_name or member_name.startswith("/") or member_name.startswith("\\"):
        return False
    if "\x00" in member_name:
        return False
    normalized = os.path.normpath(member_name)
    # Reject absolute paths (including Windows drive-letter paths)
    if os.path.isabs(normalized):
        return False
    if normalized == "..":
        return False
    if normalized.startswith(f"..{os.sep}"):
        return False
    if os.altsep and normalized.startswith(f"..{os.altsep}"):
        return False
    return True


def safe_extract_path(extract_dir: str, file_path: str) -> str:
    """
    Resolve a safe absolute extraction path and prevent directory traversal.

    Ensures the absolute path for file_path, when joined to extract_dir, resides within extract_dir.

    Parameters:
        extract_dir (str): Base directory intended for extraction.
        file_path (str): Member path from the archive to be extracted.

    Returns:
        str: Absolute, normalized path inside extract_dir suitable for extraction.

    Raises:
        ValueError: If the resolved path is outside extract_dir.
    """
    real_extract_dir = os.path.realpath(extract_dir)
    prospective_path = os.path.join(real_extract_dir, file_path)
    normalized_path = os.path.realpath(prospective_path)

    if not _is_within_base(real_extract_dir, normalized_path):
        raise ValueError(
            f"Unsafe extraction path '{file_path}' is outside base '{extract_dir}'"
        )

    return normalized_path


def strip_archive_root(member_name: str, prefix: str) -> str:
    """
    Remove the archive's root directory from a member name.

    Module zips place everything under `path@version/`. Archives from version
    control hosts use a single `repo-ref/` directory instead, so when the
    module prefix is absent the first path segment is dropped.
    """
    if member_name.startswith(prefix):
        return member_name[len(prefix) :]
    if "/" in member_name:
        return member_name.split("/", 1)[1]
    return member_name


def _zip_mode(info: zipfile.ZipInfo) -> int:
    # Unix mode bits live in the high 16 bits of external_attr
    return (info.external_attr >> 16) & 0xFFFF


def extract_module_zip(
    zip_path: str, target_dir: str, module_path: str, version: str
) -> int:
    """
    Extract a module archive into `target_dir`, stripping the archive root.

    Executable bits recorded in the archive are preserved, as are symlinks that
    stay within the extracted tree. Any member that would land outside
    `target_dir` aborts the extraction.

    Parameters:
        zip_path (str): Path to the downloaded archive.
        target_dir (str): Destination directory; created if missing.
        module_path (str): Module path, used to recognize the `path@version/` root.
        version (str): Module version.

    Returns:
        int: Number of files and symlinks written.

    Raises:
        ExtractionError: If the archive is corrupt or contains unsafe members.
    """
    prefix = f"{module_path}@{version}/"
    os.makedirs(target_dir, exist_ok=True)
    written = 0

    try:
        with zipfile.ZipFile(zip_path, "r") as zip_ref:
            for info in zip_ref.infolist():
                name = strip_archive_root(info.filename, prefix)
                if not name or name.strip("/") == "":
                    continue

                if not _is_safe_archive_member(name):
                    raise ExtractionError(
                        f"Unsafe archive member {info.filename}", archive_path=zip_path
                    )
                try:
                    extract_path = safe_extract_path(target_dir, name)
                except ValueError as e:
                    raise ExtractionError(
                        f"Unsafe archive member {info.filename}",
                        archive_path=zip_path,
                        details=str(e),
                    ) from e

                mode = _zip_mode(info)

                if info.is_dir():
                    os.makedirs(extract_path, exist_ok=True)
                    continue

                os.makedirs(os.path.dirname(extract_path), exist_ok=True)

                if stat.S_ISLNK(mode):
                    link_target = zip_ref.read(info).decode("utf-8")
                    resolved = os.path.realpath(
                        os.path.join(os.path.dirname(extract_path), link_target)
                    )
                    if os.path.isabs(link_target) or not _is_within_base(
                        os.path.realpath(target_dir), resolved
                    ):
                        raise ExtractionError(
                            f"Symlink {info.filename} points outside the module",
                            archive_path=zip_path,
                            details=link_target,
                        )
                    os.symlink(link_target, extract_path)
                    written += 1
                    continue

                with zip_ref.open(info) as source, open(extract_path, "wb") as target:
                    shutil.copyfileobj(source, target)

                if os.name != "nt":
                    permissions = (
                        EXECUTABLE_PERMISSIONS
                        if mode & 0o111
                        else REGULAR_FILE_PERMISSIONS
                    )
                    os.chmod(extract_path, permissions)
                written += 1
    except (zipfile.BadZipFile, zlib.error) as e:
        raise ExtractionError(
            "Corrupt module archive", archive_path=zip_path, details=str(e)
        ) from e
    except (OSError, UnicodeDecodeError) as e:
        raise ExtractionError(
            "Could not extract module archive", archive_path=zip_path, details=str(e)
        ) from e

    logger.debug(f"Extracted {written} entries from {zip_path} into {target_dir}")
    return written
