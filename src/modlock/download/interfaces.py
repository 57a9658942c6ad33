"""
Core Interfaces for the modlock Download Subsystem

This module defines the data structures shared by the resolver, the fetcher
and the cache.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


@dataclass(frozen=True)
class PackageRef:
    """Identity of a module at one version."""

    path: str
    """Slash-delimited module path whose first segment is a host (e.g., 'github.com/foo/bar')"""

    version: str
    """Module version (e.g., 'v1.2.3' or 'v0.0.0-20230101120000-abcdef123456')"""

    @property
    def host(self) -> str:
        """First path segment of the module path."""
        return self.path.split("/", 1)[0]

    def __str__(self) -> str:
        return f"{self.path}@{self.version}"


class StrategyKind(Enum):
    """How a source candidate obtains the module archive."""

    PROXY = "proxy"
    VCS_ARCHIVE = "vcs-archive"
    VCS_PINNED_COMMIT = "vcs-pinned-commit"
    REGISTRY_PATH = "registry-path"


@dataclass(frozen=True)
class SourceCandidate:
    """One place a module archive can be downloaded from."""

    kind: StrategyKind
    """Strategy that produced this candidate"""

    url: str
    """Absolute URL of the zip archive"""

    auth_host: str
    """Host used for the credential lookup"""

    pinned_commit: Optional[str] = None
    """Full commit hash the archive is pinned to, for vcs-pinned-commit candidates"""


@dataclass
class Origin:
    """Provenance metadata for a module version."""

    vcs: str
    """Version control system name (e.g., 'git')"""

    url: str
    """Repository URL"""

    ref: Optional[str] = None
    """Fully qualified reference (e.g., 'refs/tags/v1.2.3')"""

    hash: Optional[str] = None
    """Commit hash, possibly truncated"""

    subdir: Optional[str] = None
    """Module subdirectory within the repository"""


@dataclass
class ModuleInfo:
    """Version metadata as served by a proxy `.info` endpoint or `go list -m -json`."""

    version: str
    time: Optional[str] = None
    origin: Optional[Origin] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ModuleInfo":
        """
        Build a ModuleInfo from its JSON document.

        Unknown keys are ignored. An `Origin` object missing its VCS or URL is dropped.
        """
        origin = None
        origin_data = data.get("Origin")
        if isinstance(origin_data, dict) and origin_data.get("VCS") and origin_data.get("URL"):
            origin = Origin(
                vcs=str(origin_data["VCS"]),
                url=str(origin_data["URL"]),
                ref=origin_data.get("Ref") or None,
                hash=origin_data.get("Hash") or None,
                subdir=origin_data.get("Subdir") or None,
            )
        return cls(
            version=str(data.get("Version", "")),
            time=data.get("Time") or None,
            origin=origin,
        )


@dataclass
class Resolution:
    """Result of resolving a PackageRef into download candidates."""

    ref: PackageRef
    private: bool
    candidates: List[SourceCandidate] = field(default_factory=list)
    origin: Optional[Origin] = None


@dataclass
class CacheEntry:
    """A committed module in the cache."""

    extracted_dir: str
    """Directory holding the extracted module tree"""

    archive_hash: str
    """SRI hash of the downloaded archive"""

    source_url: Optional[str] = None
    """URL the archive was downloaded from"""

    pinned_revision: Optional[str] = None
    """Full commit hash, when known"""


@dataclass
class FetchResult:
    """Outcome of fetching one module."""

    path: str
    version: str
    extracted_dir: str
    archive_hash: str
    source_url: Optional[str] = None
    pinned_revision: Optional[str] = None
    from_cache: bool = False
    """Whether the result was served from the cache without downloading"""

    @property
    def ref(self) -> PackageRef:
        return PackageRef(self.path, self.version)
