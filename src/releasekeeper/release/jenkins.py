"""
Build Server (Jenkins) Release Sources

This module reads the filtered JSON build lists exposed by the legacy and the
current build servers and turns CI-passed builds that carry a game archive into
canonical releases.

The legacy server names jobs per profile/channel and uses the bare build number
as display version. Its distribution jobs are triggered by engine jobs, so each
downstream build's changelog is extended with the changelog of the upstream
build that triggered it. The current server nests jobs per profile and branch
and publishes a `versionInfo.properties` artifact whose declared version is
combined with the build number.
"""

import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests  # type: ignore[import-untyped]

from releasekeeper.constants import (
    GAME_ARCHIVE_PATTERN,
    JENKINS_ACCEPTED_RESULTS,
    JENKINS_API_FILTER,
    JENKINS_ARTIFACT_SEGMENT,
    JENKINS_BASE_URL,
    JENKINS_CHANNEL_JOBS,
    JENKINS_PROFILE_JOBS,
    LEGACY_JENKINS_API_FILTER,
    LEGACY_JENKINS_BASE_URL,
    LEGACY_JENKINS_DOWNSTREAM_PROFILES,
    LEGACY_JENKINS_JOBS,
    MAX_UPSTREAM_DEPTH,
    UPSTREAM_CHANGELOG_API_FILTER,
    VERSION_INFO_DISPLAY_KEY,
    VERSION_INFO_ENGINE_KEY,
    VERSION_INFO_PATTERN,
)
from releasekeeper.exceptions import MissingArtifactError, RemoteFetchError
from releasekeeper.log_utils import logger
from releasekeeper.utils import create_catalog_session, request_json, request_properties

from .model import (
    EPOCH,
    BuildChannel,
    Profile,
    Release,
    ReleaseIdentifier,
    ReleaseMetadata,
    SourceKind,
)
from .version import is_compatible_build, parse_engine_version


def _changelog_from(data: Dict[str, Any]) -> List[str]:
    change_set = data.get("changeSet")
    if not isinstance(change_set, dict):
        return []
    items = change_set.get("items")
    if not isinstance(items, list):
        return []
    return [str(item["msg"]) for item in items if isinstance(item, dict) and item.get("msg")]


def _first_upstream_cause(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return the first cause of the first action, or an empty dict for manual builds."""
    actions = data.get("actions") or []
    if not actions or not isinstance(actions[0], dict):
        return {}
    causes = actions[0].get("causes") or []
    if not causes or not isinstance(causes[0], dict):
        return {}
    return causes[0]


def _timestamp_to_datetime(timestamp_ms: Optional[int]) -> datetime:
    if not timestamp_ms:
        return EPOCH
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


@dataclass
class JenkinsArtifact:
    file_name: str
    relative_path: str


@dataclass
class JenkinsBuild:
    """One entry of a job's `builds` array."""

    number: int
    url: str
    result: Optional[str] = None
    timestamp: int = 0
    artifacts: List[JenkinsArtifact] = field(default_factory=list)
    changelog: List[str] = field(default_factory=list)
    upstream_project: Optional[str] = None
    upstream_build: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "JenkinsBuild":
        """
        Build from a decoded JSON object.

        Raises:
            KeyError, TypeError, ValueError: If `number` or `url` are missing or malformed.
        """
        url = data["url"]
        if not isinstance(url, str):
            raise TypeError(f"build url must be a string, got {type(url).__name__}")
        if not url.endswith("/"):
            url += "/"

        artifacts = [
            JenkinsArtifact(a["fileName"], a["relativePath"])
            for a in (data.get("artifacts") or [])
            if isinstance(a, dict) and a.get("fileName") and a.get("relativePath")
        ]
        cause = _first_upstream_cause(data)
        upstream_build = cause.get("upstreamBuild")
        return cls(
            number=int(data["number"]),
            url=url,
            result=data.get("result"),
            timestamp=int(data.get("timestamp") or 0),
            artifacts=artifacts,
            changelog=_changelog_from(data),
            upstream_project=cause.get("upstreamProject"),
            upstream_build=str(upstream_build) if upstream_build is not None else None,
        )

    @property
    def is_success(self) -> bool:
        return self.result in JENKINS_ACCEPTED_RESULTS

    @property
    def published_at(self) -> datetime:
        return _timestamp_to_datetime(self.timestamp)

    def artifact_url(self, pattern: str) -> str:
        """
        Return the download URL of the first artifact whose file name fully matches `pattern`.

        Raises:
            MissingArtifactError: If no artifact matches.
        """
        regex = re.compile(pattern)
        for artifact in self.artifacts:
            if regex.fullmatch(artifact.file_name):
                return f"{self.url}{JENKINS_ARTIFACT_SEGMENT}{artifact.relative_path}"
        raise MissingArtifactError(
            f"Build {self.number} has no matching artifact",
            build_url=self.url,
            pattern=pattern,
        )


@dataclass
class JenkinsJob:
    builds: List[JenkinsBuild] = field(default_factory=list)
    upstream_projects: List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Any) -> "JenkinsJob":
        """
        Build from a decoded job payload; malformed build entries are skipped.

        Raises:
            TypeError: If the payload is not a JSON object.
        """
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")

        builds: List[JenkinsBuild] = []
        for entry in data.get("builds") or []:
            if not isinstance(entry, dict):
                logger.debug(f"Skipping malformed build entry: {entry!r}")
                continue
            try:
                builds.append(JenkinsBuild.from_json(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed build entry: {e}")
        upstream_projects = [
            p["name"]
            for p in (data.get("upstreamProjects") or [])
            if isinstance(p, dict) and p.get("name")
        ]
        return cls(builds=builds, upstream_projects=upstream_projects)


class JenkinsClient:
    """
    Thin read-only client for one build server.

    Every request carries a bounded timeout; failures surface as RemoteFetchError.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.session = session or create_catalog_session()
        self.timeout = timeout

    def job_url(self, job_path: str) -> str:
        return f"{self.base_url}{job_path}"

    def upstream_url(self, project: str, build: str) -> str:
        return f"{self.base_url}job/{project}/{build}/"

    def fetch_job(self, job_path: str, api_filter: str) -> JenkinsJob:
        url = self.job_url(job_path) + api_filter
        data = request_json(self.session, url, timeout=self.timeout)
        try:
            return JenkinsJob.from_json(data)
        except TypeError as e:
            raise RemoteFetchError(
                f"Unexpected build list payload from {url}", url=url, details=str(e)
            ) from e

    def fetch_properties(self, url: str) -> Dict[str, str]:
        return request_properties(self.session, url, timeout=self.timeout)

    def fetch_upstream_changelog(self, build_url: str, depth: int = 0) -> List[str]:
        """
        Fetch the changelog of an upstream build, following its own upstream cause.

        Recursion stops after MAX_UPSTREAM_DEPTH hops. A failure below the first
        hop truncates the changelog instead of failing it.

        Raises:
            RemoteFetchError: If the first build cannot be read.
        """
        url = build_url + UPSTREAM_CHANGELOG_API_FILTER
        data = request_json(self.session, url, timeout=self.timeout)
        if not isinstance(data, dict):
            raise RemoteFetchError(f"Unexpected build payload from {url}", url=url)

        changelog = _changelog_from(data)
        cause = _first_upstream_cause(data)
        project, number = cause.get("upstreamProject"), cause.get("upstreamBuild")
        if project and number is not None and depth + 1 < MAX_UPSTREAM_DEPTH:
            next_url = self.upstream_url(project, str(number))
            try:
                changelog.extend(self.fetch_upstream_changelog(next_url, depth + 1))
            except RemoteFetchError as e:
                logger.debug(f"Stopping upstream changelog walk at {next_url}: {e}")
        return changelog


class BuildChangelogs:
    """
    Own changelogs of every legacy build read during one aggregation pass.

    Upstream sources record into it and downstream sources read from it, so a
    downstream build whose trigger was already listed is stitched without
    another request. Create one per pass; never reuse it across passes.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def record(self, builds: Sequence[JenkinsBuild]) -> None:
        with self._lock:
            for build in builds:
                self._entries[build.url] = list(build.changelog)

    def snapshot(self) -> Dict[str, List[str]]:
        with self._lock:
            return {url: list(lines) for url, lines in self._entries.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def stitch_upstream_changelogs(
    downstream: Sequence[Tuple[str, Optional[str]]],
    changelogs: Dict[str, List[str]],
    fetch_upstream: Callable[[str], List[str]],
) -> Dict[str, List[str]]:
    """
    Extend downstream build changelogs with their upstream build's changelog.

    Parameters:
        downstream: `(build_url, upstream_url)` pairs in the order the server
            lists them (most recent first). `upstream_url` is None for a build
            that was started manually.
        changelogs: This pass's own changelog per build URL. Upstream builds
            found here are not fetched again.
        fetch_upstream: Called with an upstream URL that is not in `changelogs`;
            may raise RemoteFetchError, which only drops that build's extension.

    Returns:
        Dict[str, List[str]]: A new map from build URL to its full changelog.
        The input map is left untouched.

    An automated build appends its upstream changelog; a manual build appends
    the most recently resolved upstream changelog of the walk.
    """
    stitched = {url: list(lines) for url, lines in changelogs.items()}
    fetched: Dict[str, List[str]] = {}
    last_resolved: List[str] = []

    for build_url, upstream_url in downstream:
        lines = stitched.setdefault(build_url, [])
        if upstream_url is None:
            lines.extend(last_resolved)
            continue

        upstream = changelogs.get(upstream_url)
        if upstream is None:
            upstream = fetched.get(upstream_url)
        if upstream is None:
            try:
                upstream = fetch_upstream(upstream_url)
            except RemoteFetchError as e:
                logger.warning(f"Failed to fetch upstream changelog for {build_url}: {e}")
                continue
            fetched[upstream_url] = upstream

        last_resolved = list(upstream)
        lines.extend(upstream)

    return stitched


def _archive_candidates(job: JenkinsJob) -> List[Tuple[JenkinsBuild, str]]:
    candidates: List[Tuple[JenkinsBuild, str]] = []
    for build in job.builds:
        if not build.is_success:
            logger.debug(f"Skipping build {build.number} with result {build.result}")
            continue
        try:
            candidates.append((build, build.artifact_url(GAME_ARCHIVE_PATTERN)))
        except MissingArtifactError as e:
            logger.info(f"Skipping build {build.number}: {e}")
    return candidates


class LegacyJenkinsSource:
    """Release source for the legacy build server (one job per profile and channel)."""

    kind = SourceKind.LEGACY_JENKINS

    def __init__(
        self,
        profile: Profile,
        channel: BuildChannel,
        client: Optional[JenkinsClient] = None,
    ):
        self.profile = profile
        self.channel = channel
        self.client = client or JenkinsClient(LEGACY_JENKINS_BASE_URL)

    @property
    def job_name(self) -> Optional[str]:
        return LEGACY_JENKINS_JOBS.get((self.profile.name, self.channel.name))

    @property
    def is_downstream(self) -> bool:
        """Whether this job's builds are triggered by another legacy job."""
        return self.profile.name in LEGACY_JENKINS_DOWNSTREAM_PROFILES

    def fetch_releases(self, build_changelogs: Optional[BuildChangelogs] = None) -> List[Release]:
        """
        Fetch this job's installable releases.

        Parameters:
            build_changelogs (Optional[BuildChangelogs]): Pass-scoped changelog map.
                This job's builds are recorded into it, and upstream builds found
                in it are not fetched again.

        Returns:
            List[Release]: Releases in server order. Empty when the job cannot be read.
        """
        if self.job_name is None:
            logger.debug(f"No legacy job for {self.profile.name}/{self.channel.name}")
            return []

        try:
            job = self.client.fetch_job(f"job/{self.job_name}/", LEGACY_JENKINS_API_FILTER)
            candidates = _archive_candidates(job)

            known = build_changelogs.snapshot() if build_changelogs is not None else {}
            if build_changelogs is not None:
                build_changelogs.record(job.builds)
            changelogs = {build.url: build.changelog for build in job.builds}
            if job.upstream_projects:
                changelogs = {**known, **changelogs}
                upstream_project = job.upstream_projects[0]
                downstream = [
                    (
                        build.url,
                        self.client.upstream_url(upstream_project, build.upstream_build)
                        if build.upstream_build is not None
                        else None,
                    )
                    for build, _ in candidates
                ]
                changelogs = stitch_upstream_changelogs(
                    downstream, changelogs, self.client.fetch_upstream_changelog
                )

            releases = []
            for build, archive_url in candidates:
                identifier = ReleaseIdentifier(
                    display_version=str(build.number),
                    channel=self.channel,
                    profile=self.profile,
                )
                metadata = ReleaseMetadata(
                    changelog=tuple(changelogs.get(build.url, build.changelog)),
                    published_at=build.published_at,
                    is_compatible_binary_format=is_compatible_build(
                        self.profile, self.channel, build.number
                    ),
                )
                releases.append(Release(identifier, archive_url, metadata))
        except (RemoteFetchError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to fetch releases from legacy job {self.job_name}: {e}")
            return []

        logger.debug(f"Legacy job {self.job_name} offered {len(releases)} releases")
        return releases


class JenkinsSource:
    """Release source for the current build server (nested profile and branch jobs)."""

    kind = SourceKind.JENKINS

    def __init__(
        self,
        profile: Profile,
        channel: BuildChannel,
        client: Optional[JenkinsClient] = None,
    ):
        self.profile = profile
        self.channel = channel
        self.client = client or JenkinsClient(JENKINS_BASE_URL)

    @property
    def job_path(self) -> str:
        return (
            f"job/{JENKINS_PROFILE_JOBS[self.profile.name]}/"
            f"job/{JENKINS_CHANNEL_JOBS[self.channel.name]}/"
        )

    def _release_for(self, build: JenkinsBuild, archive_url: str) -> Optional[Release]:
        try:
            properties_url = build.artifact_url(VERSION_INFO_PATTERN)
        except MissingArtifactError as e:
            logger.info(f"Skipping build {build.number}: {e}")
            return None

        try:
            properties = self.client.fetch_properties(properties_url)
        except RemoteFetchError as e:
            logger.warning(f"Skipping build {build.number}: {e}")
            return None

        display_version = properties.get(VERSION_INFO_DISPLAY_KEY)
        if not display_version:
            logger.info(
                f"Skipping build {build.number}: no {VERSION_INFO_DISPLAY_KEY} in {properties_url}"
            )
            return None

        identifier = ReleaseIdentifier(
            display_version=f"{display_version}+{build.number}",
            channel=self.channel,
            profile=self.profile,
            engine_version=parse_engine_version(properties.get(VERSION_INFO_ENGINE_KEY)),
        )
        metadata = ReleaseMetadata(
            changelog=tuple(build.changelog),
            published_at=build.published_at,
            is_compatible_binary_format=True,
        )
        return Release(identifier, archive_url, metadata)

    def fetch_releases(self) -> List[Release]:
        """
        Fetch this job's installable releases.

        Costs one extra request per candidate build for its version info.

        Returns:
            List[Release]: Releases in server order. Empty when the job cannot be read.
        """
        try:
            job = self.client.fetch_job(self.job_path, JENKINS_API_FILTER)
            releases = []
            for build, archive_url in _archive_candidates(job):
                release = self._release_for(build, archive_url)
                if release is not None:
                    releases.append(release)
        except (RemoteFetchError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to fetch releases from {self.job_path}: {e}")
            return []

        logger.debug(f"Job {self.job_path} offered {len(releases)} releases")
        return releases
