"""
Fetch Orchestration for the modlock Download Subsystem

The fetcher is the aggregation boundary for download failures: individual
candidate failures are logged and skipped, and only the exhaustion of every
candidate surfaces as an error to the caller.
"""

import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, Optional, Tuple

import requests

from modlock.config import FetchConfig
from modlock.constants import DEFAULT_CHUNK_SIZE, ZIP_EXTENSION
from modlock.exceptions import ExtractionError, ModlockError, TransferError
from modlock.log_utils import logger
from modlock.utils import build_session

from .cache import ModuleCache
from .files import extract_module_zip
from .hashing import archive_hash
from .interfaces import (
    CacheEntry,
    FetchResult,
    PackageRef,
    Resolution,
    SourceCandidate,
    StrategyKind,
)
from .netrc import CredentialStore
from .privacy import PrivacyMatcher
from .resolver import SourceResolver, is_full_commit

_STRATEGY_LABELS = {
    StrategyKind.PROXY: "module proxy",
    StrategyKind.VCS_PINNED_COMMIT: "pinned commit archive",
    StrategyKind.VCS_ARCHIVE: "repository archive",
    StrategyKind.REGISTRY_PATH: "registry path",
}


def describe_strategy(kind: StrategyKind) -> str:
    return _STRATEGY_LABELS[kind]


class ModuleFetcher:
    """
    Downloads, hashes, extracts and caches modules.

    Every collaborator can be injected; anything omitted is built from the
    configuration.

    Parameters:
        config (Optional[FetchConfig]): Effective settings; defaults to FetchConfig().
        cache (Optional[ModuleCache]): Cache handle; defaults to one rooted at `config.cache_dir`.
        resolver (Optional[SourceResolver]): Candidate resolver.
        credentials (Optional[CredentialStore]): Credentials for private modules; defaults to loading `config.netrc_path`.
        session (Optional[requests.Session]): HTTP session shared by all workers.
    """

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        cache: Optional[ModuleCache] = None,
        resolver: Optional[SourceResolver] = None,
        credentials: Optional[CredentialStore] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or FetchConfig()
        self.session = session or build_session(self.config.max_workers)
        self.cache = cache or ModuleCache(self.config.cache_dir)
        self.resolver = resolver or SourceResolver(
            proxy=self.config.proxy,
            privacy=PrivacyMatcher(self.config.private_patterns),
            vcs_hosts=self.config.vcs_hosts,
            session=self.session,
            use_go_list=self.config.use_go_list,
        )
        if credentials is None:
            credentials = CredentialStore.load(self.config.netrc_path)
        self.credentials = credentials

    def fetch(self, path: str, version: str) -> FetchResult:
        """
        Fetch one module, serving it from the cache when possible.

        Parameters:
            path (str): Module path.
            version (str): Module version.

        Returns:
            FetchResult: The extracted directory, archive hash, source URL and pinned revision.

        Raises:
            ResolutionError: If no candidate can be built.
            TransferError: If every candidate failed to download.
            ExtractionError: If the downloaded archive is corrupt.
        """
        key = self.cache.key(path, version)
        cached = self.cache.lookup(path, version)
        if cached is not None:
            logger.debug(f"Cache hit for {path}@{version}")
            return self._result(path, version, cached, from_cache=True)

        with self.cache.key_lock(key):
            # another thread may have finished while we waited
            cached = self.cache.lookup(path, version)
            if cached is not None:
                logger.debug(f"Cache hit for {path}@{version} after waiting")
                return self._result(path, version, cached, from_cache=True)

            resolution = self.resolver.resolve(path, version)
            candidate, zip_path = self._download(resolution)
            try:
                digest = archive_hash(zip_path)
                staging_dir = self.cache.new_staging_dir()
                try:
                    extract_module_zip(zip_path, staging_dir, path, version)
                except ExtractionError:
                    self.cache.discard(staging_dir)
                    raise
                final_dir, won = self.cache.commit(staging_dir, key)
            except OSError as e:
                raise ModlockError(
                    f"Failed to store {path}@{version} in the cache", details=str(e)
                ) from e
            finally:
                self.cache.discard(zip_path)

            pinned = candidate.pinned_commit
            if pinned is None and resolution.origin is not None:
                if is_full_commit(resolution.origin.hash):
                    pinned = resolution.origin.hash

            entry = CacheEntry(
                extracted_dir=final_dir,
                archive_hash=digest,
                source_url=candidate.url,
                pinned_revision=pinned,
            )
            self.cache.write_sidecars(key, entry)
            logger.info(
                f"Fetched {path}@{version} via {describe_strategy(candidate.kind)}"
                + ("" if won else " (adopted concurrent download)")
            )
            return self._result(path, version, entry, from_cache=False)

    def fetch_many(
        self, refs: Iterable[PackageRef], max_workers: Optional[int] = None
    ) -> Tuple[Dict[PackageRef, FetchResult], Dict[PackageRef, ModlockError]]:
        """
        Fetch several modules concurrently.

        Duplicate refs are fetched once. A failure does not cancel the others.

        Returns:
            Tuple of (successes, failures), each keyed by PackageRef.
        """
        unique_refs = list(dict.fromkeys(refs))
        workers = max(1, max_workers or self.config.max_workers)
        results: Dict[PackageRef, FetchResult] = {}
        failures: Dict[PackageRef, ModlockError] = {}
        if not unique_refs:
            return results, failures

        with ThreadPoolExecutor(max_workers=min(workers, len(unique_refs))) as executor:
            futures = {
                executor.submit(self.fetch, ref.path, ref.version): ref
                for ref in unique_refs
            }
            for future in as_completed(futures):
                ref = futures[future]
                try:
                    results[ref] = future.result()
                except ModlockError as e:
                    logger.error(f"Failed to fetch {ref}: {e}")
                    failures[ref] = e
        return results, failures

    def _download(self, resolution: Resolution) -> Tuple[SourceCandidate, str]:
        """Try each candidate in order; return the winner and its downloaded archive path."""
        last_error: Optional[TransferError] = None
        for candidate in resolution.candidates:
            try:
                zip_path = self._download_candidate(candidate, resolution.private)
            except TransferError as e:
                logger.debug(
                    f"{describe_strategy(candidate.kind)} failed for {resolution.ref}: {e}"
                )
                last_error = e
                continue
            return candidate, zip_path

        message = f"Failed to fetch {resolution.ref}"
        if last_error is not None and last_error.strategy:
            message += f" (last strategy: {last_error.strategy})"
        details = str(last_error) if last_error else "no candidates"
        if resolution.private:
            details += (
                "; the module matches a private pattern, check GOPRIVATE and the "
                "credentials for its host in your netrc file"
            )
        raise TransferError(
            message,
            url=last_error.url if last_error else None,
            strategy=last_error.strategy if last_error else None,
            status_code=last_error.status_code if last_error else None,
            details=details,
        )

    def _auth_for(self, candidate: SourceCandidate, private: bool):
        if not private:
            return None
        entry = self.credentials.lookup(candidate.auth_host)
        if entry is None:
            logger.debug(f"No credentials for {candidate.auth_host}; trying anonymously")
            return None
        return (entry.login, entry.secret)

    def _download_candidate(self, candidate: SourceCandidate, private: bool) -> str:
        strategy = candidate.kind.value
        logger.debug(f"Downloading {candidate.url}")
        try:
            response = self.session.get(
                candidate.url,
                stream=True,
                timeout=self.config.request_timeout,
                auth=self._auth_for(candidate, private),
            )
        except requests.exceptions.RequestException as e:
            raise TransferError(
                f"Request to {candidate.url} failed",
                url=candidate.url,
                strategy=strategy,
                details=str(e),
            ) from e

        with response:
            if response.status_code != 200:
                raise TransferError(
                    f"Unexpected status {response.status_code} from {candidate.url}",
                    url=candidate.url,
                    strategy=strategy,
                    status_code=response.status_code,
                )

            fd, zip_path = self.cache.new_temp_file(suffix=ZIP_EXTENSION)
            try:
                with os.fdopen(fd, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DEFAULT_CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
            except (requests.exceptions.RequestException, OSError) as e:
                self.cache.discard(zip_path)
                raise TransferError(
                    f"Download from {candidate.url} was interrupted",
                    url=candidate.url,
                    strategy=strategy,
                    status_code=response.status_code,
                    details=str(e),
                ) from e
        return zip_path

    @staticmethod
    def _result(
        path: str, version: str, entry: CacheEntry, from_cache: bool
    ) -> FetchResult:
        return FetchResult(
            path=path,
            version=version,
            extracted_dir=entry.extracted_dir,
            archive_hash=entry.archive_hash,
            source_url=entry.source_url,
            pinned_revision=entry.pinned_revision,
            from_cache=from_cache,
        )
