"""
Readers for go.mod and go.sum.

Only the directives needed to build a lockfile are interpreted: `module`,
`go`, `require` and `replace`. Other directives (`exclude`, `retract`,
`toolchain`, `godebug`, ...) are accepted and ignored.
"""

import os
import shlex
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from modlock.exceptions import ParseError
from modlock.log_utils import logger

LOCAL_PATH_PREFIXES = ("./", "../", "/")
INDIRECT_MARKER = "indirect"
GO_MOD_SUFFIX = "/go.mod"


@dataclass
class Require:
    path: str
    version: str
    indirect: bool = False


@dataclass
class Replace:
    old: str
    new: str
    old_version: Optional[str] = None
    new_version: Optional[str] = None

    @property
    def is_local(self) -> bool:
        """Whether the replacement target is a filesystem path."""
        return self.new.startswith(LOCAL_PATH_PREFIXES) or os.path.isabs(self.new)


@dataclass
class ModInfo:
    module_path: str
    go_version: Optional[str] = None
    requires: List[Require] = field(default_factory=list)
    replaces: List[Replace] = field(default_factory=list)

    def replacement_for(self, path: str, version: str) -> Optional[Replace]:
        """Return the replace directive that applies to `path@version`, if any."""
        versioned = None
        unversioned = None
        for rep in self.replaces:
            if rep.old != path:
                continue
            if rep.old_version == version:
                versioned = rep
            elif rep.old_version is None:
                unversioned = rep
        return versioned or unversioned


@dataclass
class SumEntry:
    path: str
    version: str
    hash: str


def _split_comment(line: str) -> Tuple[str, str]:
    """Split a line into its code part and its `//` comment (outside quotes)."""
    quote = None
    for index, char in enumerate(line):
        if quote:
            if char == quote and (quote == "`" or line[index - 1] != "\\"):
                quote = None
            continue
        if char in ('"', "`"):
            quote = char
        elif line.startswith("//", index):
            return line[:index], line[index + 2 :].strip()
    return line, ""


def _tokens(code: str, source: str, line_number: int) -> List[str]:
    lexer = shlex.shlex(code.replace("`", '"'), posix=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    lexer.escape = ""
    try:
        return list(lexer)
    except ValueError as e:
        raise ParseError(
            "Unbalanced quotes", source=source, line=line_number, details=str(e)
        ) from e


def _parse_require(args: List[str], comment: str, source: str, line_number: int) -> Require:
    if len(args) != 2:
        raise ParseError(
            "Usage: require module/path v1.2.3", source=source, line=line_number
        )
    indirect = INDIRECT_MARKER in comment.split(";")[0].split()
    return Require(path=args[0], version=args[1], indirect=indirect)


def _parse_replace(args: List[str], source: str, line_number: int) -> Replace:
    if "=>" not in args:
        raise ParseError(
            "Usage: replace old [v] => new [v]", source=source, line=line_number
        )
    arrow = args.index("=>")
    left, right = args[:arrow], args[arrow + 1 :]
    if len(left) not in (1, 2) or len(right) not in (1, 2):
        raise ParseError(
            "Usage: replace old [v] => new [v]", source=source, line=line_number
        )
    replace = Replace(
        old=left[0],
        old_version=left[1] if len(left) == 2 else None,
        new=right[0],
        new_version=right[1] if len(right) == 2 else None,
    )
    if not replace.is_local and replace.new_version is None:
        raise ParseError(
            f"Replacement module {replace.new} requires a version",
            source=source,
            line=line_number,
        )
    return replace


def parse_go_mod_text(text: str, source: str = "go.mod") -> ModInfo:
    """
    Parse go.mod content.

    Raises:
        ParseError: On a malformed directive or a missing `module` directive.
    """
    module_path = None
    go_version = None
    requires: List[Require] = []
    replaces: List[Replace] = []
    block: Optional[str] = None

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        code, comment = _split_comment(raw_line)
        args = _tokens(code, source, line_number)
        if not args:
            continue

        if block is not None:
            if args == [")"]:
                block = None
                continue
            directive = block
        else:
            directive, args = args[0], args[1:]
            if args == ["("]:
                block = directive
                continue

        if directive == "module":
            if len(args) != 1:
                raise ParseError("Usage: module module/path", source=source, line=line_number)
            module_path = args[0]
        elif directive == "go":
            if len(args) != 1:
                raise ParseError("Usage: go 1.22", source=source, line=line_number)
            go_version = args[0]
        elif directive == "require":
            requires.append(_parse_require(args, comment, source, line_number))
        elif directive == "replace":
            replaces.append(_parse_replace(args, source, line_number))
        else:
            logger.debug(f"Ignoring '{directive}' directive at {source}:{line_number}")

    if block is not None:
        raise ParseError(f"Unterminated '{block}' block", source=source)
    if not module_path:
        raise ParseError("Missing module directive", source=source)

    return ModInfo(
        module_path=module_path,
        go_version=go_version,
        requires=requires,
        replaces=replaces,
    )


def parse_go_mod(path: str) -> ModInfo:
    """
    Read and parse a go.mod file.

    Raises:
        ParseError: If the file is missing, unreadable or malformed.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError("Could not read go.mod", source=path, details=str(e)) from e
    return parse_go_mod_text(text, source=path)


def parse_go_sum(path: str) -> List[SumEntry]:
    """
    Read go.sum and return its module archive entries.

    `/go.mod` entries and lines that do not have exactly three fields are skipped.

    Raises:
        ParseError: If the file is missing or unreadable.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError("Could not read go.sum", source=path, details=str(e)) from e

    entries = []
    for line_number, raw_line in enumerate(lines, start=1):
        line = raw_line.strip()
        if not line or line.startswith("//"):
            continue
        parts = line.split()
        if len(parts) != 3:
            logger.debug(f"Skipping malformed go.sum line {line_number}: {line}")
            continue
        module_path, version, hash_value = parts
        if version.endswith(GO_MOD_SUFFIX):
            continue
        entries.append(SumEntry(path=module_path, version=version, hash=hash_value))
    return entries


def sum_map(entries: List[SumEntry]) -> dict:
    """Index go.sum entries by `path@version`."""
    return {f"{e.path}@{e.version}": e.hash for e in entries}
