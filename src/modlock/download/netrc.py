"""
Credential store backed by a netrc file.

Only the subset of the netrc format needed for HTTP basic authentication is
understood: `machine`, `default`, `login`, `password`, and `account` (ignored).
A `macdef` token ends parsing, since macro bodies are not credentials.
"""

import os
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from modlock.exceptions import ParseError
from modlock.log_utils import logger

_VALUE_TOKENS = ("machine", "login", "password", "account")


@dataclass(frozen=True)
class CredentialEntry:
    """Login and secret for one host. An empty host denotes the `default` entry."""

    host: str
    login: str
    secret: str

    @property
    def is_default(self) -> bool:
        return self.host == ""


def _split_line(line: str) -> List[str]:
    """
    Split one line on spaces and tabs.

    Double quotes group whitespace into a token and are dropped; no other
    character is special, so secrets may contain `'` and `\\` verbatim. An
    unterminated quote runs to the end of the line.
    """
    tokens: List[str] = []
    current: List[str] = []
    in_quote = False
    for char in line:
        if char == '"':
            in_quote = not in_quote
        elif char in (" ", "\t") and not in_quote:
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)
    if current:
        tokens.append("".join(current))
    return tokens


def _tokenize(text: str) -> Iterator[tuple]:
    """Yield (line_number, token) pairs, skipping blank and comment lines."""
    for line_number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        for token in _split_line(stripped):
            yield line_number, token


class CredentialStore:
    """Read-only lookup table of credentials keyed by host."""

    def __init__(self, entries: Optional[List[CredentialEntry]] = None):
        self._machines: Dict[str, CredentialEntry] = {}
        self._default: Optional[CredentialEntry] = None
        for entry in entries or []:
            if entry.is_default:
                if self._default is None:
                    self._default = entry
            else:
                # first entry for a host wins
                self._machines.setdefault(entry.host, entry)

    @classmethod
    def parse(cls, text: str, source: str = "<netrc>") -> "CredentialStore":
        """
        Parse netrc-formatted text.

        Parameters:
            text (str): File contents.
            source (str): Name used in error messages.

        Returns:
            CredentialStore: Store holding every complete entry parsed before EOF or `macdef`.

        Raises:
            ParseError: If a token that takes a value has none.
        """
        entries: List[CredentialEntry] = []
        current: Optional[Dict[str, str]] = None

        def flush() -> None:
            if current is not None:
                entries.append(
                    CredentialEntry(
                        host=current["host"],
                        login=current.get("login", ""),
                        secret=current.get("password", ""),
                    )
                )

        tokens = _tokenize(text)
        for line_number, token in tokens:
            if token == "macdef":
                break
            if token == "default":
                flush()
                current = {"host": ""}
                continue
            if token not in _VALUE_TOKENS:
                logger.debug(f"Ignoring unknown netrc token '{token}' in {source}")
                continue

            value_pair = next(tokens, None)
            if value_pair is None:
                raise ParseError(
                    f"Missing value for '{token}'", source=source, line=line_number
                )
            value = value_pair[1]

            if token == "machine":
                flush()
                current = {"host": value}
            elif token == "account":
                continue
            elif current is not None:
                current[token] = value

        flush()
        return cls(entries)

    @classmethod
    def load(cls, path: str) -> "CredentialStore":
        """
        Load credentials from a netrc file.

        A missing file yields an empty store. Any other read failure raises ParseError.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                text = f.read()
        except FileNotFoundError:
            logger.debug(f"No credential file at {path}")
            return cls()
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(
                "Could not read credential file", source=path, details=str(e)
            ) from e
        return cls.parse(text, source=os.fspath(path))

    def lookup(self, host: str) -> Optional[CredentialEntry]:
        """Return the entry for `host`, else the default entry, else None."""
        entry = self._machines.get(host)
        if entry is not None:
            return entry
        return self._default

    def __len__(self) -> int:
        return len(self._machines) + (1 if self._default else 0)
