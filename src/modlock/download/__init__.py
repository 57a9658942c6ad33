"""
modlock Download Subsystem

Resolves, fetches and content-addresses Go modules.

Core Components:
- interfaces: Data model shared by the subsystem
- version: Tagged vs snapshot version classification
- privacy: Private module pattern matching
- netrc: Credential store for private hosts
- resolver: Ordered download candidates per module
- fetcher: Download, extraction and cache orchestration
- cache: On-disk module cache
- hashing: Archive and NAR tree hashes
- files: Atomic writes and safe archive extraction
"""

from .cache import ModuleCache
from .fetcher import ModuleFetcher
from .hashing import archive_hash, h1_to_sri, tree_hash, validate_sri
from .interfaces import (
    CacheEntry,
    FetchResult,
    ModuleInfo,
    Origin,
    PackageRef,
    Resolution,
    SourceCandidate,
    StrategyKind,
)
from .netrc import CredentialEntry, CredentialStore
from .privacy import PrivacyMatcher, match_pattern
from .resolver import SourceResolver
from .version import Snapshot, Tagged, classify_version

__all__ = [
    # Interfaces
    "PackageRef",
    "StrategyKind",
    "SourceCandidate",
    "Origin",
    "ModuleInfo",
    "Resolution",
    "CacheEntry",
    "FetchResult",
    # Classification and routing
    "classify_version",
    "Tagged",
    "Snapshot",
    "PrivacyMatcher",
    "match_pattern",
    "CredentialEntry",
    "CredentialStore",
    # Resolution and fetching
    "SourceResolver",
    "ModuleFetcher",
    "ModuleCache",
    # Hashing
    "archive_hash",
    "tree_hash",
    "validate_sri",
    "h1_to_sri",
]
