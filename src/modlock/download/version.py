"""
Version Classification for the modlock Download Subsystem

Go module versions are either tagged releases (`v1.2.3`, `v2.0.0-rc.1`,
`v3.1.0+incompatible`) or snapshot pseudo-versions that embed a commit
(`v0.0.0-20231201120000-abcdef123456`). The resolver uses this distinction to
decide whether to look for a tag or a commit.
"""

import re
from dataclasses import dataclass
from typing import Optional, Union

from packaging.version import InvalidVersion, Version

from modlock.constants import INCOMPATIBLE_SUFFIX, SNAPSHOT_PREFIX

# Semantic version with optional pre-release and build metadata
SEMVER_RX = re.compile(
    r"^v?(?P<core>\d+(?:\.\d+){0,2})"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)
TIMESTAMP_RX = re.compile(r"(\d{14})")


@dataclass(frozen=True)
class Tagged:
    """A released version identified by its tag name."""

    name: str

    @property
    def incompatible(self) -> bool:
        """Whether the version carries the `+incompatible` marker."""
        return self.name.endswith(INCOMPATIBLE_SUFFIX)

    @property
    def prerelease(self) -> bool:
        """Whether the semver core carries a pre-release part."""
        return is_prerelease(self.name)

    @property
    def kind(self) -> str:
        if self.incompatible:
            return "incompatible"
        if self.prerelease:
            return "prerelease"
        return "release"


@dataclass(frozen=True)
class Snapshot:
    """A pseudo-version pinned to a commit."""

    timestamp: Optional[str]
    """14-digit UTC timestamp (yyyymmddhhmmss), when present"""

    commit_prefix: str
    """Commit hash prefix, typically 12 hex characters"""

    kind = "snapshot"


VersionKind = Union[Tagged, Snapshot]


def _strip_build_metadata(version: str) -> str:
    return version.split("+", 1)[0]


def is_prerelease(version: str) -> bool:
    """
    Determine whether a tagged version is a pre-release.

    PEP 440-parsable tags are checked with `packaging`, which also understands
    forms such as `v1.0.0rc1`. Anything else falls back to the semver rule: a
    `-` suffix on the core version marks a pre-release.

    Parameters:
        version (str): Tag name, with or without a leading "v".

    Returns:
        bool: True for a pre-release, False otherwise (including unparsable input).
    """
    if not version:
        return False
    core = _strip_build_metadata(version)
    match = SEMVER_RX.match(core)
    if match and match.group("pre"):
        return True
    try:
        return Version(core.lstrip("vV")).is_prerelease
    except InvalidVersion:
        return False


def classify_version(version: str) -> VersionKind:
    """
    Classify a module version as a snapshot or a tagged version.

    Any version beginning with `v0.0.0-` is a snapshot, regardless of other
    suffixes. The commit prefix is whatever follows the last hyphen. Every other
    string, including the empty string, is tagged. Never raises.

    Parameters:
        version (str): Module version string.

    Returns:
        Tagged | Snapshot: The classification.
    """
    if version.startswith(SNAPSHOT_PREFIX):
        remainder = version[len(SNAPSHOT_PREFIX) :]
        commit_prefix = _strip_build_metadata(version).rsplit("-", 1)[-1]
        timestamp_match = TIMESTAMP_RX.search(remainder)
        return Snapshot(
            timestamp=timestamp_match.group(1) if timestamp_match else None,
            commit_prefix=commit_prefix,
        )
    return Tagged(version)
