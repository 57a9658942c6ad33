"""
Source Resolution for the modlock Download Subsystem

Turns a (path, version) pair into an ordered list of download candidates:

1. the shared module proxy, for public modules when a proxy is configured;
2. a commit-pinned archive from the version-control host, when the full
   commit hash is known;
3. a tag, branch or short-commit archive from the version-control host;
4. a registry path on the module's own host.

Provenance for version-control hosts comes from an ordered chain of origin
providers; the first one that yields an acceptable origin wins.
"""

import json
import re
import subprocess
from typing import Callable, List, Optional, Sequence

import requests

from modlock.constants import (
    DEFAULT_VCS_HOSTS,
    FULL_COMMIT_HASH_LENGTH,
    GO_LIST_TIMEOUT,
    METADATA_REQUEST_TIMEOUT,
    SCHEMA_REGISTRY_INFIX,
)
from modlock.exceptions import ResolutionError
from modlock.log_utils import logger
from modlock.utils import escape_path, escape_version, extract_host, split_module_path

from .interfaces import (
    ModuleInfo,
    Origin,
    PackageRef,
    Resolution,
    SourceCandidate,
    StrategyKind,
)
from .privacy import PrivacyMatcher
from .version import Snapshot, classify_version

FULL_COMMIT_RX = re.compile(r"^[0-9a-fA-F]{%d}$" % FULL_COMMIT_HASH_LENGTH)

TAG_REF_PREFIX = "refs/tags/"
BRANCH_REF_PREFIX = "refs/heads/"

# (ref, private) -> Optional[ModuleInfo]
OriginProvider = Callable[[PackageRef, bool], Optional[ModuleInfo]]


def is_full_commit(value: Optional[str]) -> bool:
    """Whether `value` is a full 40-character hexadecimal commit hash."""
    return bool(value) and bool(FULL_COMMIT_RX.match(value))


class ProxyInfoProvider:
    """
    Reads `{proxy}/{path}/@v/{version}.info` from the module proxy.

    Skipped for private modules and when no proxy is configured. Every failure
    is non-fatal and yields None.
    """

    def __init__(
        self,
        proxy: Optional[str],
        session: Optional[requests.Session] = None,
        timeout: float = METADATA_REQUEST_TIMEOUT,
    ):
        self.proxy = proxy
        self.session = session or requests.Session()
        self.timeout = timeout

    def __call__(self, ref: PackageRef, private: bool) -> Optional[ModuleInfo]:
        if private or not self.proxy:
            return None
        info_url = (
            f"{self.proxy}/{escape_path(ref.path)}/@v/{escape_version(ref.version)}.info"
        )
        try:
            response = self.session.get(info_url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.debug(f"Proxy metadata request failed for {ref}: {e}")
            return None

        with response:
            if response.status_code != 200:
                logger.debug(
                    f"Proxy metadata for {ref} unavailable (HTTP {response.status_code})"
                )
                return None
            try:
                data = response.json()
            except ValueError as e:
                logger.debug(f"Proxy metadata for {ref} is not valid JSON: {e}")
                return None
        if not isinstance(data, dict):
            return None
        return ModuleInfo.from_dict(data)


class GoListProvider:
    """
    Asks the Go toolchain (`go list -m -json path@version`) for module metadata.

    Works for private modules because the toolchain uses the user's own VCS
    credentials, and reports the full commit hash. A missing `go` binary, a
    non-zero exit, a timeout or unparsable output all yield None.
    """

    def __init__(self, timeout: float = GO_LIST_TIMEOUT, runner=subprocess.run):
        self.timeout = timeout
        self.runner = runner

    def __call__(self, ref: PackageRef, private: bool) -> Optional[ModuleInfo]:
        command = ["go", "list", "-m", "-json", f"{ref.path}@{ref.version}"]
        try:
            completed = self.runner(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"go list unavailable for {ref}: {e}")
            return None

        if completed.returncode != 0:
            logger.debug(
                f"go list failed for {ref} (exit {completed.returncode}): {completed.stderr.strip()}"
            )
            return None
        try:
            data = json.loads(completed.stdout)
        except (TypeError, ValueError) as e:
            logger.debug(f"go list returned invalid JSON for {ref}: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return ModuleInfo.from_dict(data)


def infer_origin_from_version(ref: PackageRef, private: bool) -> Optional[ModuleInfo]:
    """
    Derive provenance from the path and version alone.

    The repository is `https://{host}/{owner}/{repo}`. A snapshot version
    contributes its commit prefix; a tagged version becomes `refs/tags/{version}`.
    Paths without owner and repo segments yield None.
    """
    segments = split_module_path(ref.path)
    if len(segments) < 3:
        return None
    host, owner, repo = segments[:3]
    origin = Origin(vcs="git", url=f"https://{host}/{owner}/{repo}")

    kind = classify_version(ref.version)
    if isinstance(kind, Snapshot):
        origin.hash = kind.commit_prefix or None
    else:
        origin.ref = TAG_REF_PREFIX + ref.version
    return ModuleInfo(version=ref.version, origin=origin)


class SourceResolver:
    """
    Builds the ordered candidate list for a module.

    Parameters:
        proxy (Optional[str]): Module proxy base URL, or None when disabled.
        privacy (Optional[PrivacyMatcher]): Decides which modules bypass the proxy.
        vcs_hosts (Sequence[str]): Hosts whose archive URL scheme is understood.
        providers (Optional[Sequence[OriginProvider]]): Origin provider chain; defaults to proxy metadata, then `go list`, then version inference.
        session (Optional[requests.Session]): Session used by the default proxy metadata provider.
        use_go_list (bool): Whether the default chain includes the `go list` provider.
    """

    def __init__(
        self,
        proxy: Optional[str] = None,
        privacy: Optional[PrivacyMatcher] = None,
        vcs_hosts: Sequence[str] = DEFAULT_VCS_HOSTS,
        providers: Optional[Sequence[OriginProvider]] = None,
        session: Optional[requests.Session] = None,
        use_go_list: bool = True,
    ):
        self.proxy = proxy.rstrip("/") if proxy else None
        self.privacy = privacy if privacy is not None else PrivacyMatcher()
        self.vcs_hosts = tuple(host.lower() for host in vcs_hosts)
        if providers is None:
            providers = [ProxyInfoProvider(self.proxy, session)]
            if use_go_list:
                providers.append(GoListProvider())
            providers.append(infer_origin_from_version)
        self.providers: List[OriginProvider] = list(providers)

    def resolve(self, path: str, version: str) -> Resolution:
        """
        Resolve a module into its ordered download candidates.

        Raises:
            ResolutionError: If the path, its host segment, or the version is empty.
        """
        if not path or not version:
            raise ResolutionError(
                "No viable source: module path and version are required",
                path=path,
                version=version,
            )
        host = path.split("/", 1)[0]
        if not host:
            raise ResolutionError(
                "No viable source: module path has no host", path=path, version=version
            )

        ref = PackageRef(path, version)
        private = self.privacy.is_private(path)
        candidates: List[SourceCandidate] = []
        escaped_path = escape_path(path)
        escaped_version = escape_version(version)

        if not private and self.proxy:
            candidates.append(
                self._candidate(
                    StrategyKind.PROXY,
                    f"{self.proxy}/{escaped_path}/@v/{escaped_version}.zip",
                )
            )

        origin = None
        vcs_candidates: List[SourceCandidate] = []
        if host.lower() in self.vcs_hosts:
            origin = self.find_origin(ref, private)
            if origin is not None:
                vcs_candidates = self.archive_candidates(origin)
                candidates.extend(vcs_candidates)

        if SCHEMA_REGISTRY_INFIX in path:
            candidates.append(
                self._candidate(
                    StrategyKind.REGISTRY_PATH,
                    f"https://{host}{SCHEMA_REGISTRY_INFIX}{escaped_path}/@v/{escaped_version}.zip",
                )
            )
        elif not vcs_candidates:
            candidates.append(
                self._candidate(
                    StrategyKind.REGISTRY_PATH,
                    f"https://{host}/{escaped_path}/@v/{escaped_version}.zip",
                )
            )

        candidates = _dedupe(candidates)
        if not candidates:
            raise ResolutionError("No viable source", path=path, version=version)

        logger.debug(
            f"Resolved {ref} (private={private}) to "
            + ", ".join(f"{c.kind.value}:{c.url}" for c in candidates)
        )
        return Resolution(ref=ref, private=private, candidates=candidates, origin=origin)

    def find_origin(self, ref: PackageRef, private: bool) -> Optional[Origin]:
        """Return the first acceptable origin produced by the provider chain."""
        host = ref.host.lower()
        for provider in self.providers:
            info = provider(ref, private)
            if info is None or info.origin is None:
                continue
            if self._accepts(info.origin, host):
                return info.origin
            logger.debug(
                f"Ignoring origin {info.origin.vcs} {info.origin.url} for {ref}: not a git repository on {host}"
            )
        return None

    @staticmethod
    def _accepts(origin: Origin, host: str) -> bool:
        if origin.vcs != "git":
            return False
        if not origin.url.startswith("https://"):
            return False
        return (extract_host(origin.url) or "") == host

    def archive_candidates(self, origin: Origin) -> List[SourceCandidate]:
        """
        Build archive candidates from an accepted origin.

        A full commit gives a pinned candidate first. A tag or branch ref gives
        a ref archive; failing that, any commit hash (even truncated) gives a
        commit archive.
        """
        repo_url = origin.url.rstrip("/")
        if repo_url.endswith(".git"):
            repo_url = repo_url[: -len(".git")]

        candidates: List[SourceCandidate] = []
        commit = origin.hash or ""
        ref = origin.ref or ""

        if is_full_commit(commit):
            candidates.append(
                self._candidate(
                    StrategyKind.VCS_PINNED_COMMIT,
                    f"{repo_url}/archive/{commit}.zip",
                    pinned_commit=commit,
                )
            )

        if ref.startswith(TAG_REF_PREFIX):
            name = ref[len(TAG_REF_PREFIX) :]
            candidates.append(
                self._candidate(
                    StrategyKind.VCS_ARCHIVE,
                    f"{repo_url}/archive/refs/tags/{escape_version(name)}.zip",
                )
            )
        elif ref.startswith(BRANCH_REF_PREFIX):
            name = ref[len(BRANCH_REF_PREFIX) :]
            candidates.append(
                self._candidate(
                    StrategyKind.VCS_ARCHIVE,
                    f"{repo_url}/archive/refs/heads/{escape_version(name)}.zip",
                )
            )
        elif commit:
            candidates.append(
                self._candidate(
                    StrategyKind.VCS_ARCHIVE, f"{repo_url}/archive/{commit}.zip"
                )
            )
        return candidates

    @staticmethod
    def _candidate(
        kind: StrategyKind, url: str, pinned_commit: Optional[str] = None
    ) -> SourceCandidate:
        return SourceCandidate(
            kind=kind,
            url=url,
            auth_host=extract_host(url) or "",
            pinned_commit=pinned_commit,
        )


def _dedupe(candidates: List[SourceCandidate]) -> List[SourceCandidate]:
    seen = set()
    unique = []
    for candidate in candidates:
        if candidate.url in seen:
            continue
        seen.add(candidate.url)
        unique.append(candidate)
    return unique
