"""
Engine version parsing and binary-format compatibility lookup.
"""

import re
from typing import Optional

from packaging.version import InvalidVersion, Version
from packaging.version import parse as parse_version

from releasekeeper.constants import COMPATIBLE_BUILD_THRESHOLDS

from .model import BuildChannel, Profile

PRERELEASE_VERSION_RX = re.compile(
    r"^(\d+(?:\.\d+)*)[.-](rc|dev|alpha|beta|b)\.?(\d*)$", re.IGNORECASE
)
SNAPSHOT_VERSION_RX = re.compile(r"^(\d+(?:\.\d+)*)-SNAPSHOT$", re.IGNORECASE)
HASH_SUFFIX_VERSION_RX = re.compile(r"^(\d+(?:\.\d+)*)\.([A-Za-z0-9][A-Za-z0-9.-]*)$")


def parse_engine_version(version: Optional[str]) -> Optional[Version]:
    """
    Parse a tag or declared engine version into a PEP 440 Version.

    Strips an optional leading "v", then tries packaging's parser. Failing that,
    Maven style "-SNAPSHOT" suffixes become dev releases, spelled out prerelease
    words ("alpha", "beta") become their PEP 440 short forms, and a trailing
    hash-like segment becomes a local version label.

    Returns:
        Optional[Version]: The parsed version, or None for empty or unparsable input.
    """
    if version is None:
        return None

    trimmed = version.strip()
    if not trimmed:
        return None

    if trimmed.lower().startswith("v"):
        trimmed = trimmed[1:]

    try:
        return parse_version(trimmed)
    except InvalidVersion:
        pass

    m_snapshot = SNAPSHOT_VERSION_RX.match(trimmed)
    if m_snapshot:
        return _try_parse(f"{m_snapshot.group(1)}.dev0")

    m_pr = PRERELEASE_VERSION_RX.match(trimmed)
    if m_pr:
        pr_kind_lower = m_pr.group(2).lower()
        kind = {"alpha": "a", "beta": "b"}.get(pr_kind_lower, pr_kind_lower)
        num = m_pr.group(3) or "0"
        return _try_parse(f"{m_pr.group(1)}{kind}{num}")

    m_hash = HASH_SUFFIX_VERSION_RX.match(trimmed)
    if m_hash:
        return _try_parse(f"{m_hash.group(1)}+{m_hash.group(2)}")

    return None


def _try_parse(candidate: str) -> Optional[Version]:
    try:
        return parse_version(candidate)
    except InvalidVersion:
        return None


def is_compatible_build(profile: Profile, channel: BuildChannel, build_number: int) -> bool:
    """
    Whether a legacy build uses the current binary format.

    Builds at or above the first-compatible build number for their
    profile/channel are compatible; combinations missing from the table are
    assumed compatible.
    """
    threshold = COMPATIBLE_BUILD_THRESHOLDS.get((profile.name, channel.name))
    if threshold is None:
        return True
    return build_number >= threshold
