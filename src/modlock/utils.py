import importlib.metadata
from typing import Optional
from urllib.parse import quote, urlsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry  # type: ignore

from modlock.constants import (
    CASE_ESCAPE_CHAR,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_MAX_WORKERS,
    VERSION_SAFE_CHARS,
)

# Cache for the User-Agent string to avoid repeated metadata lookups
_USER_AGENT_CACHE = None


def get_user_agent() -> str:
    """
    Get the User-Agent string used for HTTP requests.

    Returns:
        The string `modlock/{version}`, where `{version}` is the installed package version or `unknown` if the version cannot be determined.
    """
    global _USER_AGENT_CACHE

    if _USER_AGENT_CACHE is None:
        try:
            app_version = importlib.metadata.version("modlock")
        except importlib.metadata.PackageNotFoundError:
            app_version = "unknown"

        _USER_AGENT_CACHE = f"modlock/{app_version}"

    return _USER_AGENT_CACHE


def get_app_version() -> str:
    """Return the installed modlock version, or "unknown" when not installed."""
    try:
        return importlib.metadata.version("modlock")
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def build_session(pool_size: int = DEFAULT_MAX_WORKERS) -> requests.Session:
    """
    Create a requests Session tuned for module archive downloads.

    The mounted adapter keeps one pooled connection per worker and follows
    redirects (archive hosts redirect to their CDN), but never retries a failed
    connect, read or status: a failed candidate falls through to the next one.

    Parameters:
        pool_size (int): Connection pool size; normally the worker count.

    Returns:
        requests.Session: Session with the adapter mounted for http and https.
    """
    retry_strategy: Retry = Retry(
        total=None,
        connect=0,
        read=0,
        status=0,
        other=0,
        redirect=DEFAULT_MAX_REDIRECTS,
        raise_on_redirect=True,
        raise_on_status=False,
    )
    size = max(1, pool_size)
    adapter = HTTPAdapter(
        pool_connections=size, pool_maxsize=size, max_retries=retry_strategy
    )
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": get_user_agent()})
    return session


def escape_path(path: str) -> str:
    """
    Escape a module path for use in proxy and cache paths.

    Every uppercase letter is replaced by "!" followed by its lowercase form,
    so "github.com/Azure/go" becomes "github.com/!azure/go". This keeps paths
    distinct on case-insensitive filesystems.
    """
    escaped = []
    for char in path:
        if "A" <= char <= "Z":
            escaped.append(CASE_ESCAPE_CHAR)
            escaped.append(char.lower())
        else:
            escaped.append(char)
    return "".join(escaped)


def escape_version(version: str) -> str:
    """Escape a version as a single URL path segment, keeping `+incompatible` intact."""
    return quote(version, safe=VERSION_SAFE_CHARS)


def extract_host(url: str) -> Optional[str]:
    """
    Return the hostname of `url`, or None when it has none.

    Parameters:
        url (str): Absolute URL.

    Returns:
        Optional[str]: Lowercased host name without port, or None.
    """
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


def split_module_path(path: str) -> list:
    """Split a module path into its non-empty slash-delimited segments."""
    return [segment for segment in path.split("/") if segment]
