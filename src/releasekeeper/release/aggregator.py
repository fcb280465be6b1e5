"""
Release Aggregator

Fans out to every configured source concurrently and merges the results into
one catalog per pass. Legacy distribution jobs are fetched after every other
source so they can reuse the changelogs of the engine builds that triggered
them. The merge is deterministic: sources are ranked by their
kind (GITHUB, JENKINS, LEGACY_JENKINS) and then by their position in the
configured list, and the first release seen for an identifier wins.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Dict, FrozenSet, Iterable, List, Sequence, Tuple, Union

from releasekeeper.config import LauncherConfig
from releasekeeper.constants import (
    JENKINS_BASE_URL,
    LEGACY_JENKINS_BASE_URL,
    LEGACY_JENKINS_JOBS,
)
from releasekeeper.log_utils import logger

from .github_source import GithubReleaseSource
from .jenkins import BuildChangelogs, JenkinsClient, JenkinsSource, LegacyJenkinsSource
from .model import BuildChannel, Profile, Release, ReleaseIdentifier

ReleaseSource = Union[GithubReleaseSource, JenkinsSource, LegacyJenkinsSource]


def merge_releases(
    results: Sequence[Tuple[ReleaseSource, List[Release]]],
) -> FrozenSet[Release]:
    """
    Union per-source results into a catalog with one release per identifier.

    Parameters:
        results: `(source, releases)` pairs in configured order.

    Returns:
        FrozenSet[Release]: The merged catalog.
    """
    ranked = sorted(
        range(len(results)), key=lambda index: (results[index][0].kind.value, index)
    )
    merged: Dict[ReleaseIdentifier, Release] = {}
    for index in ranked:
        source, releases = results[index]
        for release in releases:
            if release.id in merged:
                logger.debug(
                    f"Ignoring duplicate release {release.id} from {source.kind.name}"
                )
                continue
            merged[release.id] = release
    return frozenset(merged.values())


def _is_downstream(source: ReleaseSource) -> bool:
    return isinstance(source, LegacyJenkinsSource) and source.is_downstream


def _fetch_source(source: ReleaseSource, build_changelogs: BuildChangelogs) -> List[Release]:
    if isinstance(source, LegacyJenkinsSource):
        return source.fetch_releases(build_changelogs)
    return source.fetch_releases()


class ReleaseAggregator:
    """
    Merged catalog over a fixed list of release sources.

    Each call to aggregate() rebuilds the catalog from scratch; there is no
    retry at this level, refreshing means aggregating again.
    """

    def __init__(self, sources: Sequence[ReleaseSource]):
        self.sources = list(sources)
        self._releases: FrozenSet[Release] = frozenset()
        self._lock = threading.Lock()

    @property
    def releases(self) -> FrozenSet[Release]:
        """The catalog produced by the last completed pass."""
        with self._lock:
            return self._releases

    def _fetch_all(self) -> List[Tuple[ReleaseSource, List[Release]]]:
        if not self.sources:
            return []

        # Downstream legacy jobs run after the rest so their upstream builds are known
        build_changelogs = BuildChangelogs()
        positions = range(len(self.sources))
        first = [i for i in positions if not _is_downstream(self.sources[i])]
        second = [i for i in positions if _is_downstream(self.sources[i])]

        fetched: Dict[int, List[Release]] = {}
        with ThreadPoolExecutor(
            max_workers=len(self.sources), thread_name_prefix="release-source"
        ) as executor:
            for wave in (first, second):
                futures = [
                    executor.submit(_fetch_source, self.sources[i], build_changelogs)
                    for i in wave
                ]
                for i, future in zip(wave, futures):
                    source = self.sources[i]
                    try:
                        releases = list(future.result())
                    except Exception:
                        # A failing source contributes no releases
                        logger.exception(f"Release source {source.kind.name} failed")
                        releases = []
                    fetched[i] = releases
        return [(source, fetched[i]) for i, source in enumerate(self.sources)]

    def aggregate(self) -> FrozenSet[Release]:
        """
        Fetch every source concurrently and merge the results.

        Returns:
            FrozenSet[Release]: A fresh catalog, also stored as `releases`.
        """
        results = self._fetch_all()
        catalog = merge_releases(results)
        with self._lock:
            self._releases = catalog
        logger.info(
            f"Catalog holds {len(catalog)} releases from {len(self.sources)} sources"
        )
        return catalog


def default_sources(config: LauncherConfig) -> List[ReleaseSource]:
    """Build the standard source list: GitHub, then the current and legacy build servers."""
    timeout = config.request_timeout
    sources: List[ReleaseSource] = [
        GithubReleaseSource(
            config.github_repository,
            github_token=config.github_token,
            timeout=timeout,
        )
    ]
    for profile in Profile:
        for channel in BuildChannel:
            sources.append(
                JenkinsSource(
                    profile, channel, JenkinsClient(JENKINS_BASE_URL, timeout=timeout)
                )
            )
    for profile_name, channel_name in LEGACY_JENKINS_JOBS:
        sources.append(
            LegacyJenkinsSource(
                Profile[profile_name],
                BuildChannel[channel_name],
                JenkinsClient(LEGACY_JENKINS_BASE_URL, timeout=timeout),
            )
        )
    return sources


def with_local_releases(
    catalog: Iterable[Release], installed: Iterable[Release]
) -> FrozenSet[Release]:
    """
    Add installed releases that no source offers anymore.

    Installed entries whose identifier is already in the catalog are dropped;
    the others are added without an archive URL. An installation without a
    marker has no engine version, so it also counts as offered when a catalog
    release installs into the same directory.
    """
    merged: Dict[ReleaseIdentifier, Release] = {release.id: release for release in catalog}
    offered_keys = {identifier.install_key for identifier in merged}
    for release in installed:
        if release.id in merged:
            continue
        if release.id.engine_version is None and release.id.install_key in offered_keys:
            continue
        merged[release.id] = replace(release, archive_url=None)
    return frozenset(merged.values())
