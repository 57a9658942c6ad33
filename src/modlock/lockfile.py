"""
The modlock lockfile (`modlock.lock.yaml`).

Records, for every required module, the exact version and the SRI hash of
its archive, plus how each `replace` directive was resolved.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from modlock.constants import LOCKFILE_NAME, LOCKFILE_SCHEMA_VERSION
from modlock.download.files import _atomic_write
from modlock.exceptions import ModlockError, ParseError
from modlock.log_utils import logger


@dataclass
class LockedModule:
    """A pinned module."""

    version: str
    hash: str
    url: Optional[str] = None
    rev: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        data = {"version": self.version, "hash": self.hash}
        if self.url:
            data["url"] = self.url
        if self.rev:
            data["rev"] = self.rev
        return data


@dataclass
class LockedReplace:
    """
    A resolved replace directive.

    Exactly one form is populated: remote (`new`, `version` and `hash`, with
    optional `old`, `old_version`, `url`, `rev`) or local (`path`).
    """

    old: Optional[str] = None
    old_version: Optional[str] = None
    new: Optional[str] = None
    version: Optional[str] = None
    hash: Optional[str] = None
    url: Optional[str] = None
    rev: Optional[str] = None
    path: Optional[str] = None

    @property
    def is_local(self) -> bool:
        return bool(self.path)

    @property
    def is_remote(self) -> bool:
        return bool(self.new and self.version and self.hash)

    def validate(self, key: str, source: Optional[str] = None) -> None:
        """
        Raises:
            ParseError: If both or neither of the remote and local forms are populated.
        """
        remote_fields = (self.new, self.version, self.hash, self.url, self.rev)
        if self.is_local and any(remote_fields):
            raise ParseError(
                f"Replacement for {key} sets both a local path and a remote module",
                source=source,
            )
        if not self.is_local and not self.is_remote:
            raise ParseError(
                f"Replacement for {key} needs either 'path' or 'new', 'version' and 'hash'",
                source=source,
            )

    def to_dict(self) -> Dict[str, str]:
        if self.is_local:
            return {"path": self.path}
        data = {}
        for key, value in (
            ("old", self.old),
            ("oldVersion", self.old_version),
            ("new", self.new),
            ("version", self.version),
            ("hash", self.hash),
            ("url", self.url),
            ("rev", self.rev),
        ):
            if value:
                data[key] = value
        return data


def _require_mapping(value: Any, what: str, source: Optional[str]) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ParseError(f"'{what}' must be a mapping", source=source)
    return value


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


@dataclass
class Lockfile:
    go: str = ""
    schema: int = LOCKFILE_SCHEMA_VERSION
    modules: Dict[str, LockedModule] = field(default_factory=dict)
    replace: Dict[str, LockedReplace] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any, source: Optional[str] = None) -> "Lockfile":
        """
        Build a Lockfile from its parsed YAML document.

        Raises:
            ParseError: On a schema mismatch, a malformed entry, or an invalid replace entry.
        """
        if not isinstance(data, dict):
            raise ParseError("Lockfile must be a mapping", source=source)
        schema = data.get("schema")
        if schema != LOCKFILE_SCHEMA_VERSION:
            raise ParseError(
                f"Unsupported lockfile schema {schema!r}",
                source=source,
                details=f"expected {LOCKFILE_SCHEMA_VERSION}",
            )

        modules = {}
        for path, entry in _require_mapping(data.get("modules"), "modules", source).items():
            entry = _require_mapping(entry, f"modules.{path}", source)
            if not entry.get("version") or not entry.get("hash"):
                raise ParseError(
                    f"Module {path} needs 'version' and 'hash'", source=source
                )
            modules[str(path)] = LockedModule(
                version=str(entry["version"]),
                hash=str(entry["hash"]),
                url=_optional_str(entry.get("url")),
                rev=_optional_str(entry.get("rev")),
            )

        replace = {}
        for path, entry in _require_mapping(data.get("replace"), "replace", source).items():
            entry = _require_mapping(entry, f"replace.{path}", source)
            locked = LockedReplace(
                old=_optional_str(entry.get("old")),
                old_version=_optional_str(entry.get("oldVersion")),
                new=_optional_str(entry.get("new")),
                version=_optional_str(entry.get("version")),
                hash=_optional_str(entry.get("hash")),
                url=_optional_str(entry.get("url")),
                rev=_optional_str(entry.get("rev")),
                path=_optional_str(entry.get("path")),
            )
            locked.validate(str(path), source)
            replace[str(path)] = locked

        go_version = data.get("go")
        return cls(
            go="" if go_version is None else str(go_version),
            schema=schema,
            modules=modules,
            replace=replace,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"schema": self.schema, "go": self.go}
        if self.modules:
            data["modules"] = {
                path: self.modules[path].to_dict() for path in sorted(self.modules)
            }
        if self.replace:
            data["replace"] = {
                path: self.replace[path].to_dict() for path in sorted(self.replace)
            }
        return data

    @classmethod
    def load(cls, path: str) -> "Lockfile":
        """
        Read a lockfile from `path`.

        Raises:
            ParseError: If the file is unreadable, is not valid YAML, or fails validation.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ParseError("Could not read lockfile", source=path, details=str(e)) from e
        except yaml.YAMLError as e:
            raise ParseError("Invalid lockfile YAML", source=path, details=str(e)) from e
        return cls.from_dict(data, source=path)

    def save(self, directory: str) -> str:
        """
        Atomically write the lockfile into `directory` with sorted keys.

        Returns:
            str: Path of the written file.

        Raises:
            ModlockError: If the file cannot be written.
        """
        target = os.path.join(directory, LOCKFILE_NAME)
        document = self.to_dict()

        def _write(f):
            yaml.safe_dump(document, f, sort_keys=True, default_flow_style=False)

        if not _atomic_write(target, _write, suffix=".yaml"):
            raise ModlockError(f"Could not write lockfile {target}")
        logger.debug(f"Wrote lockfile {target}")
        return target
