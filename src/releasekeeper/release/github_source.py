"""
GitHub Release Source

Lists the game repository's GitHub releases and maps each one with a parsable
tag and a game archive asset onto a FULL-profile release. Prereleases land on
the NIGHTLY channel, everything else on STABLE.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests  # type: ignore[import-untyped]

from releasekeeper.constants import (
    DEFAULT_GITHUB_REPOSITORY,
    GAME_ARCHIVE_PATTERN,
    GITHUB_API_BASE,
    GITHUB_MAX_PER_PAGE,
)
from releasekeeper.exceptions import RemoteFetchError
from releasekeeper.log_utils import logger
from releasekeeper.utils import (
    create_catalog_session,
    get_effective_github_token,
    get_user_agent,
    request_json,
)

from .model import (
    EPOCH,
    BuildChannel,
    Profile,
    Release,
    ReleaseIdentifier,
    ReleaseMetadata,
    SourceKind,
)
from .version import parse_engine_version


def _parse_published_at(value: Optional[str]) -> datetime:
    if not value:
        return EPOCH
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparsable release timestamp: {value}")
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class GithubReleaseSource:
    """
    Release source backed by the GitHub releases API.

    Usage:
        source = GithubReleaseSource("MovingBlocks/Terasology", github_token=token)
        releases = source.fetch_releases()
    """

    kind = SourceKind.GITHUB

    def __init__(
        self,
        repository: str = DEFAULT_GITHUB_REPOSITORY,
        github_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the GitHub release source.

        Parameters:
            repository (str): `owner/name` of the repository to list.
            github_token (Optional[str]): Token for authenticated requests; falls back to
                the GITHUB_TOKEN environment variable.
            session (Optional[requests.Session]): Session to reuse; a catalog session is created otherwise.
            timeout (Optional[float]): Read timeout in seconds for the API call.
        """
        self.repository = repository
        self.github_token = github_token
        self.session = session or create_catalog_session()
        self.timeout = timeout

    @property
    def releases_url(self) -> str:
        return f"{GITHUB_API_BASE}/{self.repository}/releases"

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": get_user_agent(),
        }
        effective_token = get_effective_github_token(self.github_token)
        if effective_token:
            headers["Authorization"] = f"token {effective_token}"
            logger.debug("Using GitHub token for API authentication")
        return headers

    def parse_release(self, release_data: Dict[str, Any]) -> Optional[Release]:
        """
        Map one raw release object to a Release.

        Returns:
            Optional[Release]: None when the tag does not parse as a version or no
            asset matches the game archive pattern. Both cases are logged at info.
        """
        tag = release_data.get("tag_name") or ""
        engine_version = parse_engine_version(tag)
        if engine_version is None:
            logger.info(f"Skipping GitHub release with unparsable tag {tag!r}")
            return None

        pattern = re.compile(GAME_ARCHIVE_PATTERN)
        archive_url = next(
            (
                asset.get("browser_download_url")
                for asset in release_data.get("assets") or []
                if isinstance(asset, dict)
                and pattern.fullmatch(asset.get("name") or "")
                and asset.get("browser_download_url")
            ),
            None,
        )
        if archive_url is None:
            logger.info(f"Skipping GitHub release {tag}: no asset matching {GAME_ARCHIVE_PATTERN}")
            return None

        display_version = tag.strip()
        if display_version.lower().startswith("v"):
            display_version = display_version[1:]

        channel = BuildChannel.NIGHTLY if release_data.get("prerelease") else BuildChannel.STABLE
        identifier = ReleaseIdentifier(
            display_version=display_version,
            channel=channel,
            profile=Profile.FULL,
            engine_version=engine_version,
        )
        body = release_data.get("body") or ""
        metadata = ReleaseMetadata(
            changelog=tuple(body.splitlines()),
            published_at=_parse_published_at(release_data.get("published_at")),
            is_compatible_binary_format=True,
        )
        return Release(identifier, archive_url, metadata)

    def fetch_releases(self) -> List[Release]:
        """
        Fetch the repository's releases.

        Returns:
            List[Release]: Parsed releases in API order. Empty on any fetch or parse failure.
        """
        try:
            releases_data = request_json(
                self.session,
                self.releases_url,
                timeout=self.timeout,
                headers=self._headers(),
                params={"per_page": GITHUB_MAX_PER_PAGE},
            )
        except RemoteFetchError as e:
            logger.warning(f"Failed to fetch releases from {self.releases_url}: {e}")
            return []

        if not isinstance(releases_data, list):
            logger.warning(f"Invalid releases data received from {self.releases_url}")
            return []

        releases: List[Release] = []
        for release_data in releases_data:
            if not isinstance(release_data, dict):
                logger.warning(
                    "Skipping malformed release entry from %s: expected dict, got %s",
                    self.releases_url,
                    type(release_data).__name__,
                )
                continue
            try:
                release = self.parse_release(release_data)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "Skipping malformed release entry from %s: %s",
                    self.releases_url,
                    exc,
                )
                continue
            if release is not None:
                releases.append(release)

        logger.debug(f"GitHub repository {self.repository} offered {len(releases)} releases")
        return releases
