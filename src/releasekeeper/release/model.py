"""
Canonical release data model.

All types here are immutable value objects: sources create them from remote
payloads or local scans and nobody mutates them afterwards.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from packaging.version import Version

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class Profile(Enum):
    """Product variant a release belongs to."""

    MINIMAL = "minimal"
    ENGINE = "engine"
    FULL = "full"


class BuildChannel(Enum):
    """Stability track of a release."""

    STABLE = "stable"
    NIGHTLY = "nightly"


class SourceKind(Enum):
    """Closed set of catalog sources, listed in merge-priority order."""

    GITHUB = 0
    JENKINS = 1
    LEGACY_JENKINS = 2


@dataclass(frozen=True)
class ReleaseIdentifier:
    """Unique key of a release across catalogs and the installed set."""

    display_version: str
    channel: BuildChannel
    profile: Profile
    engine_version: Optional[Version] = None

    @property
    def install_key(self) -> Tuple[str, BuildChannel, Profile]:
        """The part of the identifier that determines the install directory."""
        return (self.display_version, self.channel, self.profile)

    def __str__(self) -> str:
        return f"{self.profile.name}/{self.channel.name}/{self.display_version}"


@dataclass(frozen=True)
class ReleaseMetadata:
    changelog: Tuple[str, ...] = ()
    published_at: datetime = EPOCH
    is_compatible_binary_format: bool = True


@dataclass(frozen=True)
class Release:
    """
    An installable release.

    `archive_url` is None when the release was synthesized from a local
    installation that is no longer offered by any source.
    """

    id: ReleaseIdentifier
    archive_url: Optional[str] = None
    metadata: ReleaseMetadata = field(default_factory=ReleaseMetadata)
