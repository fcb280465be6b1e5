"""
Installation Manager

Acquires release archives into the content cache, extracts them into
per-identifier directories and removes installations again, keeping the
InstalledIndex in step with the disk.

Cache layout: {cache_dir}/{product}-{profile}-{display_version}-{channel}.zip,
with a `.part` sibling while a transfer is in flight. The `.part` file is only
renamed to the final name after the full body arrived, so a file under the
final name is always complete.
"""

import os
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests  # type: ignore[import-untyped]

from releasekeeper.config import LauncherConfig
from releasekeeper.constants import (
    DEFAULT_CHUNK_SIZE,
    DOWNLOAD_READ_TIMEOUT,
    EXTRACT_TEMP_PREFIX,
    INSTALL_MARKER_FILE,
    PART_SUFFIX,
    ZIP_EXTENSION,
)
from releasekeeper.exceptions import (
    ExtractionError,
    InsufficientSpaceError,
    NotInstalledError,
    RemovalError,
    TransferError,
)
from releasekeeper.log_utils import logger
from releasekeeper.release.model import Release, ReleaseIdentifier
from releasekeeper.utils import create_download_session, request_timeout

from .files import (
    atomic_write_json,
    extract_archive,
    free_space,
    remove_tree,
    to_filename_component,
)
from .index import InstalledIndex, marker_data
from .tasks import CancelToken, ProgressListener


class DownloadOutcome(Enum):
    DOWNLOADED = "downloaded"
    CACHED = "cached"
    CANCELLED = "cancelled"


class InstallOutcome(Enum):
    INSTALLED = "installed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class DownloadResult:
    outcome: DownloadOutcome
    path: str
    """Final cache path, or the retained `.part` path when cancelled."""


@dataclass(frozen=True)
class InstallResult:
    outcome: InstallOutcome
    path: Optional[str] = None


@dataclass(frozen=True)
class Installation:
    """Handle to an installed release."""

    release: Release
    path: str


class InstallationManager:
    """
    Serialized download, install and remove operations over one install root.

    All mutating operations hold one lock, so direct callers get the same
    single-writer guarantee as the background worker.
    """

    def __init__(
        self,
        config: LauncherConfig,
        index: Optional[InstalledIndex] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.index = index if index is not None else InstalledIndex(config.install_dir)
        self.session = session or create_download_session()
        self._lock = threading.RLock()
        if index is None:
            self.index.rescan()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def cache_path(self, release: Release) -> str:
        identifier = release.id
        file_name = "-".join(
            to_filename_component(part)
            for part in (
                self.config.product_id,
                identifier.profile.name,
                identifier.display_version,
                identifier.channel.name,
            )
        )
        return os.path.join(self.config.cache_dir, file_name + ZIP_EXTENSION)

    def resolve_installation(self, identifier: ReleaseIdentifier) -> Installation:
        """
        Map an installed identifier to its directory.

        Raises:
            NotInstalledError: If the identifier is not in the index.
        """
        release = self.index.get(identifier)
        if release is None:
            raise NotInstalledError(identifier)
        return Installation(release, self.index.install_path(identifier))

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    def _content_length(self, url: str) -> Optional[int]:
        try:
            response = self.session.head(url, allow_redirects=True, timeout=request_timeout())
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransferError(f"Could not query {url}", url=url, details=str(e)) from e
        return _parse_length(response.headers.get("Content-Length"))

    def download(
        self,
        release: Release,
        progress: Optional[ProgressListener] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> DownloadResult:
        """
        Ensure the release archive is in the cache.

        An archive already present under the expected cache name is reused
        without any network traffic. Otherwise the remote size is queried and
        checked against free space before anything is written, then the body
        is streamed into a `.part` file and renamed into place.

        Parameters:
            release (Release): Release with an archive URL.
            progress (Optional[ProgressListener]): Receives percentage updates, or
                byte counts when the size is unknown.
            cancel_token (Optional[CancelToken]): Polled before every chunk write;
                defaults to the progress listener's token.

        Returns:
            DownloadResult: CACHED or DOWNLOADED with the cache path, or CANCELLED
            with the retained `.part` path.

        Raises:
            TransferError: Missing archive URL, network failure, or size mismatch.
                A `.part` file written so far is retained.
            InsufficientSpaceError: The announced size exceeds free space; no
                `.part` file is created.
        """
        url = release.archive_url
        if not url:
            raise TransferError(f"Release {release.id} has no archive URL")
        token = cancel_token or (progress.cancel_token if progress else CancelToken())

        with self._lock:
            cache_path = self.cache_path(release)
            if os.path.isfile(cache_path):
                logger.info(f"Using cached archive {cache_path}")
                if progress:
                    progress.update(100)
                return DownloadResult(DownloadOutcome.CACHED, cache_path)

            cache_dir = os.path.dirname(cache_path)
            part_path = cache_path + PART_SUFFIX
            try:
                os.makedirs(cache_dir, exist_ok=True)
            except OSError as e:
                raise TransferError(f"Could not prepare {cache_dir}", url=url, details=str(e)) from e

            content_length = self._content_length(url)
            if content_length is not None:
                _check_space(content_length, cache_dir)

            try:
                if os.path.lexists(part_path):
                    os.remove(part_path)
            except OSError as e:
                raise TransferError(
                    f"Could not discard {part_path}", url=url, part_path=part_path, details=str(e)
                ) from e

            logger.info(f"Downloading {url}")
            try:
                response = self.session.get(
                    url, stream=True, timeout=request_timeout(DOWNLOAD_READ_TIMEOUT)
                )
                response.raise_for_status()
            except requests.RequestException as e:
                raise TransferError(f"Could not download {url}", url=url, details=str(e)) from e

            if content_length is None:
                content_length = _parse_length(response.headers.get("Content-Length"))
                if content_length is not None:
                    try:
                        _check_space(content_length, cache_dir)
                    except InsufficientSpaceError:
                        response.close()
                        raise
            transferred = 0
            last_percent = -1
            try:
                with open(part_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DEFAULT_CHUNK_SIZE):
                        if token.is_cancelled:
                            logger.info(f"Download of {release.id} cancelled; keeping {part_path}")
                            return DownloadResult(DownloadOutcome.CANCELLED, part_path)
                        if not chunk:
                            continue
                        f.write(chunk)
                        transferred += len(chunk)
                        if progress is None:
                            continue
                        if content_length:
                            percent = min(100, transferred * 100 // content_length)
                            if percent != last_percent:
                                last_percent = percent
                                progress.update(percent)
                        else:
                            progress.update_bytes(transferred)
            except requests.RequestException as e:
                raise TransferError(
                    f"Transfer of {url} failed", url=url, part_path=part_path, details=str(e)
                ) from e
            except OSError as e:
                raise TransferError(
                    f"Could not write {part_path}", url=url, part_path=part_path, details=str(e)
                ) from e
            finally:
                response.close()

            if token.is_cancelled:
                logger.info(f"Download of {release.id} cancelled; keeping {part_path}")
                return DownloadResult(DownloadOutcome.CANCELLED, part_path)

            if content_length is not None and transferred != content_length:
                raise TransferError(
                    f"Incomplete transfer of {url}",
                    url=url,
                    part_path=part_path,
                    details=f"expected {content_length} bytes, received {transferred}",
                )

            try:
                os.replace(part_path, cache_path)
            except OSError as e:
                raise TransferError(
                    f"Could not move {part_path} into the cache",
                    url=url,
                    part_path=part_path,
                    details=str(e),
                ) from e
            logger.info(f"Downloaded {transferred} bytes to {cache_path}")
            return DownloadResult(DownloadOutcome.DOWNLOADED, cache_path)

    # ------------------------------------------------------------------
    # Install / remove
    # ------------------------------------------------------------------

    def install(
        self,
        release: Release,
        progress: Optional[ProgressListener] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> InstallResult:
        """
        Download (if needed) and extract a release, then add it to the index.

        Extraction happens in a hidden sibling directory that is renamed into
        place, so the install directory either holds a complete extraction or
        nothing new. Re-installing replaces the existing directory.

        Returns:
            InstallResult: INSTALLED with the install directory, or CANCELLED if
            the download was cancelled.

        Raises:
            TransferError, InsufficientSpaceError: From the download.
            ExtractionError: The archive could not be extracted or moved into place;
                the index is left unchanged.
        """
        with self._lock:
            try:
                target = self.index.install_path(release.id)
            except ValueError as e:
                raise ExtractionError("Cannot install release", details=str(e)) from e

            downloaded = self.download(release, progress, cancel_token)
            if downloaded.outcome is DownloadOutcome.CANCELLED:
                return InstallResult(InstallOutcome.CANCELLED)
            archive_path = downloaded.path

            parent = os.path.dirname(target)
            try:
                os.makedirs(parent, exist_ok=True)
                staging = tempfile.mkdtemp(prefix=EXTRACT_TEMP_PREFIX, dir=parent)
            except OSError as e:
                raise ExtractionError(
                    f"Could not prepare {parent}", archive_path=archive_path, details=str(e)
                ) from e

            try:
                extract_archive(archive_path, staging)
                marker = os.path.join(staging, INSTALL_MARKER_FILE)
                if not atomic_write_json(marker, marker_data(release)):
                    raise ExtractionError("Could not write install marker", archive_path=archive_path)
                if os.path.lexists(target):
                    logger.info(f"Replacing existing installation at {target}")
                    remove_tree(target)
                os.replace(staging, target)
            except (ExtractionError, OSError) as e:
                self._discard(staging)
                if isinstance(e, ExtractionError):
                    raise
                raise ExtractionError(
                    f"Could not install into {target}", archive_path=archive_path, details=str(e)
                ) from e

            self.index.install(release.id, release.metadata)
            logger.info(f"Installed {release.id} into {target}")

            if not self.config.keep_downloaded_files:
                try:
                    os.remove(archive_path)
                    logger.debug(f"Removed cached archive {archive_path}")
                except OSError as e:
                    logger.warning(f"Could not remove cached archive {archive_path}: {e}")

            return InstallResult(InstallOutcome.INSTALLED, target)

    def _discard(self, staging: str) -> None:
        try:
            remove_tree(staging)
        except OSError as e:
            logger.warning(f"Could not clean up {staging}: {e}")

    def remove(self, identifier: ReleaseIdentifier) -> None:
        """
        Delete an installation and drop it from the index.

        A directory that is already gone counts as removed.

        Raises:
            NotInstalledError: If the identifier is not in the index.
            RemovalError: If the directory could not be fully deleted; the index
                still lists the identifier.
        """
        with self._lock:
            installation = self.resolve_installation(identifier)
            path = installation.path
            try:
                remove_tree(path)
            except OSError as e:
                raise RemovalError(f"Could not remove {identifier}", path=path, details=str(e)) from e
            if os.path.lexists(path):
                raise RemovalError(f"Could not remove {identifier}", path=path, details="directory still present")

            self.index.remove(identifier)
            logger.info(f"Removed {identifier} from {path}")

    def clean_cache(self) -> int:
        """
        Delete cached archives and leftover `.part` files.

        Returns:
            int: Number of files removed.
        """
        removed = 0
        with self._lock:
            cache_dir = self.config.cache_dir
            try:
                names = os.listdir(cache_dir)
            except FileNotFoundError:
                return 0
            for name in names:
                if not (name.endswith(ZIP_EXTENSION) or name.endswith(ZIP_EXTENSION + PART_SUFFIX)):
                    continue
                path = os.path.join(cache_dir, name)
                if not os.path.isfile(path):
                    continue
                try:
                    os.remove(path)
                    removed += 1
                except OSError as e:
                    logger.warning(f"Could not remove {path}: {e}")
        logger.info(f"Removed {removed} files from {cache_dir}")
        return removed


def _parse_length(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        length = int(value)
    except ValueError:
        return None
    return length if length >= 0 else None


def _check_space(required: int, directory: str) -> None:
    available = free_space(directory)
    if required > available:
        raise InsufficientSpaceError(required, available, directory)
