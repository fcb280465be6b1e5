"""
Installed Index

In-memory projection of the install root. A full rescan is the ground truth;
between rescans the installation manager keeps the projection current through
install() and remove(). Readers get immutable snapshots.

On-disk layout: {install_dir}/{PROFILE}/{CHANNEL}/{display_version}/ with an
optional `.release.json` marker describing the release that was installed.
"""

import os
import threading
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from releasekeeper.constants import INSTALL_MARKER_FILE
from releasekeeper.log_utils import logger
from releasekeeper.release.model import (
    EPOCH,
    BuildChannel,
    Profile,
    Release,
    ReleaseIdentifier,
    ReleaseMetadata,
)
from releasekeeper.release.version import parse_engine_version

from .files import read_json, sanitize_path_component

INSTALLED = "installed"
REMOVED = "removed"

IndexListener = Callable[[str, ReleaseIdentifier], None]


def marker_data(release: Release) -> Dict[str, Any]:
    """Serialize a release for its install marker."""
    identifier = release.id
    return {
        "display_version": identifier.display_version,
        "channel": identifier.channel.name,
        "profile": identifier.profile.name,
        "engine_version": str(identifier.engine_version)
        if identifier.engine_version is not None
        else None,
        "changelog": list(release.metadata.changelog),
        "published_at": release.metadata.published_at.isoformat(),
        "is_compatible_binary_format": release.metadata.is_compatible_binary_format,
    }


def _release_from_marker(
    profile: Profile, channel: BuildChannel, display_version: str, data: Optional[Dict[str, Any]]
) -> Release:
    """
    Rebuild a local release from its directory position and marker contents.

    The directory position is authoritative for the identifier's display
    version, channel and profile; the marker only contributes the engine
    version and metadata.
    """
    if not data:
        return Release(ReleaseIdentifier(display_version, channel, profile))

    published_at = EPOCH
    raw_published = data.get("published_at")
    if isinstance(raw_published, str):
        try:
            published_at = datetime.fromisoformat(raw_published)
        except ValueError:
            logger.debug(f"Ignoring malformed published_at {raw_published!r}")

    changelog = data.get("changelog")
    raw_engine = data.get("engine_version")
    metadata = ReleaseMetadata(
        changelog=tuple(str(line) for line in changelog) if isinstance(changelog, list) else (),
        published_at=published_at,
        is_compatible_binary_format=bool(data.get("is_compatible_binary_format", True)),
    )
    identifier = ReleaseIdentifier(
        display_version=display_version,
        channel=channel,
        profile=profile,
        engine_version=parse_engine_version(raw_engine) if isinstance(raw_engine, str) else None,
    )
    return Release(identifier, None, metadata)


class InstalledIndex:
    """
    Thread-safe set of installed release identifiers.

    install() and remove() are the only mutators and are meant to be called
    by the installation manager once per successful operation. Listeners are
    called with `("installed" | "removed", identifier)` after the change.
    """

    def __init__(self, install_dir: str):
        self.install_dir = install_dir
        self._entries: Dict[ReleaseIdentifier, Release] = {}
        self._lock = threading.RLock()
        self._listeners: List[IndexListener] = []

    def install_path(self, identifier: ReleaseIdentifier) -> str:
        """
        Return the directory an identifier installs into.

        Raises:
            ValueError: If the display version is not a safe single path segment.
        """
        version_dir = sanitize_path_component(identifier.display_version)
        if version_dir is None or version_dir != identifier.display_version or version_dir.startswith("."):
            raise ValueError(f"Unsafe display version for a directory name: {identifier.display_version!r}")
        return os.path.join(
            self.install_dir, identifier.profile.name, identifier.channel.name, version_dir
        )

    def marker_path(self, identifier: ReleaseIdentifier) -> str:
        return os.path.join(self.install_path(identifier), INSTALL_MARKER_FILE)

    def add_listener(self, listener: IndexListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: IndexListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, event: str, identifier: ReleaseIdentifier) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(event, identifier)

    def _scan(self) -> Dict[ReleaseIdentifier, Release]:
        entries: Dict[ReleaseIdentifier, Release] = {}
        if not os.path.isdir(self.install_dir):
            return entries

        for profile in Profile:
            for channel in BuildChannel:
                channel_dir = os.path.join(self.install_dir, profile.name, channel.name)
                try:
                    with os.scandir(channel_dir) as it:
                        version_dirs = [
                            entry.name
                            for entry in it
                            if entry.is_dir(follow_symlinks=False) and not entry.name.startswith(".")
                        ]
                except FileNotFoundError:
                    continue
                except OSError as e:
                    logger.warning(f"Could not scan {channel_dir}: {e}")
                    continue

                for version_dir in sorted(version_dirs):
                    marker = read_json(os.path.join(channel_dir, version_dir, INSTALL_MARKER_FILE))
                    release = _release_from_marker(profile, channel, version_dir, marker)
                    entries[release.id] = release
        return entries

    def rescan(self) -> FrozenSet[ReleaseIdentifier]:
        """
        Rebuild the index from the install root.

        Directories whose name starts with "." (such as in-progress extractions)
        are ignored. Listeners are not notified.

        Returns:
            FrozenSet[ReleaseIdentifier]: The identifiers now in the index.
        """
        entries = self._scan()
        with self._lock:
            self._entries = entries
        logger.debug(f"Found {len(entries)} installed releases under {self.install_dir}")
        return frozenset(entries)

    def contains(self, identifier: ReleaseIdentifier) -> bool:
        with self._lock:
            return identifier in self._entries

    def snapshot(self) -> FrozenSet[ReleaseIdentifier]:
        with self._lock:
            return frozenset(self._entries)

    def covers(self, identifier: ReleaseIdentifier) -> bool:
        """
        Whether an identifier is installed, counting a markerless installation
        in the same directory as a match.
        """
        with self._lock:
            if identifier in self._entries:
                return True
            return any(
                existing.engine_version is None and existing.install_key == identifier.install_key
                for existing in self._entries
            )

    def get(self, identifier: ReleaseIdentifier) -> Optional[Release]:
        with self._lock:
            return self._entries.get(identifier)

    def local_releases(self) -> List[Release]:
        """Installed releases as recorded locally, without archive URLs."""
        with self._lock:
            return list(self._entries.values())

    def install(self, identifier: ReleaseIdentifier, metadata: Optional[ReleaseMetadata] = None) -> None:
        release = Release(identifier, None, metadata or ReleaseMetadata())
        with self._lock:
            # One directory holds one installation
            for existing in [i for i in self._entries if i.install_key == identifier.install_key]:
                del self._entries[existing]
            self._entries[identifier] = release
        logger.debug(f"Index: added {identifier}")
        self._notify(INSTALLED, identifier)

    def remove(self, identifier: ReleaseIdentifier) -> None:
        with self._lock:
            removed = self._entries.pop(identifier, None)
        if removed is None:
            return
        logger.debug(f"Index: removed {identifier}")
        self._notify(REMOVED, identifier)
