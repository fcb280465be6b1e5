"""
File Operations for the Installation Subsystem

This module provides the filesystem primitives installation relies on:
free-space queries, path validation, safe archive extraction, bottom-up
directory removal and atomic JSON writes.
"""

import json
import os
import re
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from releasekeeper.exceptions import ExtractionError
from releasekeeper.log_utils import logger

UNSAFE_FILENAME_CHARS_RX = re.compile(r"[^A-Za-z0-9._+-]")


def free_space(path: str) -> int:
    """
    Return the free bytes on the volume holding `path`.

    The path does not need to exist yet; its nearest existing ancestor is queried.
    """
    existing = os.path.abspath(path)
    while not os.path.exists(existing):
        parent = os.path.dirname(existing)
        if parent == existing:
            break
        existing = parent
    return shutil.disk_usage(existing).free


def sanitize_path_component(component: Optional[str]) -> Optional[str]:
    """
    Validate and sanitize a single filesystem path component.

    Trims surrounding whitespace and returns the cleaned component if it is a safe, relative path segment. Returns None when the input is None or when the component is unsafe: empty after trimming, "." or "..", an absolute path, containing a null byte, or containing path separator characters.

    Parameters:
        component (Optional[str]): The candidate path component to validate and sanitize.

    Returns:
        Optional[str]: The trimmed, safe component string, or `None` if the component is unsafe or `None`.
    """
    if component is None:
        return None

    sanitized = component.strip()
    if not sanitized or sanitized in {".", ".."}:
        return None

    if os.path.isabs(sanitized):
        return None

    if "\x00" in sanitized:
        return None

    for separator in (os.sep, os.altsep):
        if separator and separator in sanitized:
            return None

    return sanitized


def to_filename_component(text: str) -> str:
    """Lower-case `text` and replace every character outside [a-z0-9._+-] with an underscore."""
    return UNSAFE_FILENAME_CHARS_RX.sub("_", text.strip()).lower()


def is_within_base(real_base_dir: str, candidate: str) -> bool:
    """
    Determine whether the candidate path resides within the given base directory.

    Returns:
        True if the candidate path is inside `real_base_dir`, False otherwise.
    """
    try:
        return os.path.commonpath([real_base_dir, candidate]) == real_base_dir
    except ValueError:
        return False


def is_safe_archive_member(member_name: str) -> bool:
    """
    Determine whether an archive member name is safe to extract.

    Returns:
        `True` if the member name contains no absolute paths, parent-directory references, or null bytes, `False` otherwise.
    """
    if not member_name or member_name.startswith("/") or member_name.startswith("\\"):
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
    if "\x00" in normalized:
        return False
    return True


def safe_extract_path(extract_dir: str, file_path: str) -> str:
    """
    Resolve a safe absolute extraction path and prevent directory traversal.

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

    if not is_within_base(real_extract_dir, normalized_path):
        raise ValueError(
            f"Unsafe extraction path '{file_path}' is outside base '{extract_dir}'"
        )

    return normalized_path


def extract_archive(zip_path: str, extract_dir: str) -> List[Path]:
    """
    Extract every member of a ZIP archive into `extract_dir`.

    Unix permission bits stored in the archive are restored so launch scripts
    stay executable.

    Parameters:
        zip_path (str): Path to the ZIP archive.
        extract_dir (str): Destination directory; created if missing.

    Returns:
        List[Path]: Paths of the extracted files.

    Raises:
        ExtractionError: If the archive is corrupt or holds an unsafe member. Files
            already written are left for the caller to clean up.
    """
    extracted_files: List[Path] = []
    os.makedirs(extract_dir, exist_ok=True)

    try:
        with zipfile.ZipFile(zip_path, "r") as zip_ref:
            for file_info in zip_ref.infolist():
                file_name = file_info.filename
                if not is_safe_archive_member(file_name):
                    raise ExtractionError(
                        "Archive contains an unsafe member",
                        archive_path=zip_path,
                        details=file_name,
                    )
                try:
                    extract_path = safe_extract_path(extract_dir, file_name)
                except ValueError as e:
                    raise ExtractionError(
                        "Archive contains an unsafe member",
                        archive_path=zip_path,
                        details=str(e),
                    ) from e

                if file_info.is_dir():
                    os.makedirs(extract_path, exist_ok=True)
                    continue

                os.makedirs(os.path.dirname(extract_path), exist_ok=True)
                with zip_ref.open(file_info) as source, open(extract_path, "wb") as target:
                    shutil.copyfileobj(source, target)

                mode = (file_info.external_attr >> 16) & 0o777
                if os.name != "nt" and mode:
                    try:
                        os.chmod(extract_path, mode)
                    except OSError:
                        logger.debug(f"Could not restore permissions on {extract_path}")

                extracted_files.append(Path(extract_path))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as e:
        raise ExtractionError(
            "Could not extract archive", archive_path=zip_path, details=str(e)
        ) from e

    logger.debug(f"Extracted {len(extracted_files)} files from {zip_path} to {extract_dir}")
    return extracted_files


def remove_tree(path: str) -> None:
    """
    Delete a directory tree children-first, then the directory itself.

    Symlinks are unlinked, never followed. A missing path is not an error.

    Raises:
        OSError: If any entry cannot be removed.
    """
    if os.path.islink(path):
        os.unlink(path)
        return
    if not os.path.exists(path):
        return

    for root, dirs, files in os.walk(path, topdown=False):
        for name in files:
            os.unlink(os.path.join(root, name))
        for name in dirs:
            entry = os.path.join(root, name)
            if os.path.islink(entry):
                os.unlink(entry)
            else:
                os.rmdir(entry)
    os.rmdir(path)


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
        bool: `True` if the temporary write and atomic replace succeeded, `False` on any error.
    """
    try:
        temp_fd, temp_path = tempfile.mkstemp(
            dir=os.path.dirname(file_path), prefix="tmp-", suffix=suffix
        )
    except OSError as e:
        logger.error(f"Could not create temporary file for {file_path}: {e}")
        return False

    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as temp_f:
            writer_func(temp_f)
        os.replace(temp_path, file_path)
    except (UnicodeEncodeError, OSError, TypeError, ValueError) as e:
        logger.error(f"Could not write to {file_path}: {e}")
        return False
    finally:
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                logger.debug(f"Could not remove temporary file {temp_path}")
    return True


def atomic_write_json(file_path: str, data: Dict[str, Any]) -> bool:
    """
    Atomically write the given dictionary to the target file as pretty-printed JSON.

    Returns:
        bool: `True` if the file was written and moved into place successfully, `False` on error.
    """
    return _atomic_write(file_path, lambda f: json.dump(data, f, indent=2), suffix=".json")


def read_json(file_path: str) -> Optional[Dict[str, Any]]:
    """Read a JSON object from disk; None if the file is missing, unreadable or not an object."""
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.debug(f"Could not read {file_path}: {e}")
        return None
    return data if isinstance(data, dict) else None
