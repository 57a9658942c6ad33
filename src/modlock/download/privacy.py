"""
Private module detection.

Patterns follow the GOPRIVATE convention: a comma-separated list of module
path prefixes, optionally ending in `/*` or `*`.
"""

from typing import Iterable, List, Optional, Union

from modlock.log_utils import logger


def match_pattern(pattern: str, path: str) -> bool:
    """
    Check whether a module path matches one privacy pattern.

    - `prefix/*` matches the prefix itself and anything below it.
    - `prefix*` matches anything starting with the prefix.
    - any other pattern matches paths starting with the literal pattern.
    """
    if pattern.endswith("/*"):
        prefix = pattern[:-2]
        return path == prefix or path.startswith(prefix + "/")
    if pattern.endswith("*"):
        return path.startswith(pattern[:-1])
    return path.startswith(pattern)


def _split(patterns: Union[str, Iterable[str], None]) -> List[str]:
    if not patterns:
        return []
    if isinstance(patterns, str):
        patterns = patterns.split(",")
    return [p.strip() for p in patterns if p and p.strip()]


class PrivacyMatcher:
    """
    Decides whether a module must bypass the shared proxy.

    Parameters:
        patterns (str | Iterable[str] | None): Comma-separated pattern string or an iterable of patterns. Empty items are skipped; an empty list means nothing is private.
    """

    def __init__(self, patterns: Optional[Union[str, Iterable[str]]] = None):
        self.patterns = _split(patterns)

    def is_private(self, path: str) -> bool:
        for pattern in self.patterns:
            if match_pattern(pattern, path):
                logger.debug(f"{path} matches private pattern {pattern}")
                return True
        return False

    def __repr__(self) -> str:
        return f"PrivacyMatcher({','.join(self.patterns)!r})"
