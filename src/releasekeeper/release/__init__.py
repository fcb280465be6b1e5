"""
Release catalog subsystem.

Sources translate remote build catalogs into canonical releases; the
aggregator merges them into a single catalog per pass.
"""

from .aggregator import ReleaseAggregator, default_sources, with_local_releases
from .github_source import GithubReleaseSource
from .jenkins import JenkinsSource, LegacyJenkinsSource
from .model import (
    BuildChannel,
    Profile,
    Release,
    ReleaseIdentifier,
    ReleaseMetadata,
    SourceKind,
)

__all__ = [
    "BuildChannel",
    "GithubReleaseSource",
    "JenkinsSource",
    "LegacyJenkinsSource",
    "Profile",
    "Release",
    "ReleaseAggregator",
    "ReleaseIdentifier",
    "ReleaseMetadata",
    "SourceKind",
    "default_sources",
    "with_local_releases",
]
