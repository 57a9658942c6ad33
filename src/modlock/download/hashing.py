"""
Content hashing for fetched modules.

Two hashes are produced: the flat SRI hash of the downloaded archive bytes,
and the tree hash of the extracted directory, which is the sha256 of its NAR
(Nix Archive) serialization. The tree hash is what Nix's fixed-output
derivations pin, so it must be bit-for-bit what `nix hash path` computes.
"""

import base64
import binascii
import hashlib
import os
import stat
import struct
from typing import BinaryIO, Tuple

from modlock.constants import (
    DEFAULT_CHUNK_SIZE,
    HASH_ALGORITHM,
    NAR_MAGIC,
    SRI_DIGEST_SIZES,
)
from modlock.exceptions import ModlockError, ParseError

_PADDING = b"\x00" * 8


def to_sri(digest: bytes, algorithm: str = HASH_ALGORITHM) -> str:
    """Encode a raw digest as an SRI string (`algo-base64`)."""
    return f"{algorithm}-{base64.b64encode(digest).decode('ascii')}"


def parse_sri(sri: str) -> Tuple[str, bytes]:
    """
    Split an SRI string into its algorithm and digest bytes.

    The digest is decoded as base64, falling back to hex.

    Raises:
        ParseError: If the string has no `algo-` prefix or the digest decodes as neither.
    """
    algorithm, sep, encoded = sri.partition("-")
    if not sep or not algorithm or not encoded:
        raise ParseError(f"Invalid SRI format: {sri}")
    try:
        return algorithm, base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        pass
    try:
        return algorithm, bytes.fromhex(encoded)
    except ValueError as e:
        raise ParseError(f"Could not decode SRI digest: {sri}", details=str(e)) from e


def validate_sri(sri: str) -> None:
    """
    Check that an SRI string names a supported algorithm with a digest of the right size.

    Raises:
        ParseError: If the string is malformed, the algorithm is unsupported, or the digest length is wrong.
    """
    algorithm, digest = parse_sri(sri)
    expected = SRI_DIGEST_SIZES.get(algorithm)
    if expected is None:
        raise ParseError(f"Unsupported hash algorithm: {algorithm}")
    if len(digest) != expected:
        raise ParseError(
            f"{algorithm} hash must be {expected} bytes, got {len(digest)}"
        )


def is_valid_sri(sri: str) -> bool:
    try:
        validate_sri(sri)
    except ParseError:
        return False
    return True


def h1_to_sri(h1: str) -> str:
    """
    Convert a go.sum `h1:` value to SRI notation.

    The h1 hash covers Go's own file listing, not the NAR serialization, so
    the result never matches a tree hash. Useful for display and comparison only.
    """
    if not h1.startswith("h1:"):
        raise ParseError(f"Invalid h1 hash format: {h1}")
    encoded = h1[3:]
    try:
        digest = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ParseError(f"Could not decode h1 hash: {h1}", details=str(e)) from e
    if len(digest) != SRI_DIGEST_SIZES[HASH_ALGORITHM]:
        raise ParseError(f"Invalid h1 hash length: {len(digest)}")
    return to_sri(digest)


def _hash_stream(stream: BinaryIO) -> "hashlib._Hash":
    hasher = hashlib.new(HASH_ALGORITHM)
    for chunk in iter(lambda: stream.read(DEFAULT_CHUNK_SIZE), b""):
        hasher.update(chunk)
    return hasher


def archive_hash(path: str) -> str:
    """Return the SRI hash of a file's bytes."""
    with open(path, "rb") as f:
        return to_sri(_hash_stream(f).digest())


def archive_hash_bytes(data: bytes) -> str:
    """Return the SRI hash of an in-memory byte string."""
    return to_sri(hashlib.new(HASH_ALGORITHM, data).digest())


class NarWriter:
    """
    Streams the NAR serialization of a filesystem tree into a sink.

    The sink is anything with an `update(bytes)` method, typically a hashlib
    object, so the archive is never held in memory.
    """

    def __init__(self, sink):
        self.sink = sink

    def _write_bytes(self, data: bytes) -> None:
        self.sink.update(struct.pack("<Q", len(data)))
        self.sink.update(data)
        remainder = len(data) % 8
        if remainder:
            self.sink.update(_PADDING[: 8 - remainder])

    def _write_str(self, value: str) -> None:
        self._write_bytes(value.encode("utf-8"))

    def _write_contents(self, path: str, size: int) -> None:
        self.sink.update(struct.pack("<Q", size))
        written = 0
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(DEFAULT_CHUNK_SIZE), b""):
                self.sink.update(chunk)
                written += len(chunk)
        if written != size:
            raise ModlockError(f"File changed while hashing: {path}")
        remainder = size % 8
        if remainder:
            self.sink.update(_PADDING[: 8 - remainder])

    def write(self, path: str) -> None:
        self._write_str(NAR_MAGIC)
        self._write_node(path)

    def _write_node(self, path: str) -> None:
        info = os.lstat(path)
        mode = info.st_mode
        self._write_str("(")
        self._write_str("type")

        if stat.S_ISREG(mode):
            self._write_str("regular")
            if mode & stat.S_IXUSR:
                self._write_str("executable")
                self._write_str("")
            self._write_str("contents")
            self._write_contents(path, info.st_size)
        elif stat.S_ISDIR(mode):
            self._write_str("directory")
            names = sorted(os.listdir(os.fsencode(path)))
            for raw_name in names:
                self._write_str("entry")
                self._write_str("(")
                self._write_str("name")
                self._write_bytes(raw_name)
                self._write_str("node")
                self._write_node(os.path.join(path, os.fsdecode(raw_name)))
                self._write_str(")")
        elif stat.S_ISLNK(mode):
            self._write_str("symlink")
            self._write_str("target")
            self._write_bytes(os.fsencode(os.readlink(path)))
        else:
            raise ModlockError(f"Unsupported file type for tree hash: {path}")

        self._write_str(")")


def tree_hash(path: str) -> str:
    """
    Compute the SRI tree hash of a directory (or file) using the NAR format.

    Directory entries are ordered byte-wise by their raw names. Only regular
    files, directories and symlinks are supported; the owner, timestamps and
    every permission bit except "any executable bit" are ignored.

    Parameters:
        path (str): Root of the tree to hash.

    Returns:
        str: `sha256-<base64>` digest of the NAR serialization.

    Raises:
        ModlockError: If the tree contains an unsupported file type.
        OSError: If the tree cannot be read.
    """
    hasher = hashlib.new(HASH_ALGORITHM)
    NarWriter(hasher).write(os.fspath(path))
    return to_sri(hasher.digest())


def nar_serialize(path: str) -> bytes:
    """Return the full NAR serialization of `path` as bytes."""

    class _Collector:
        def __init__(self):
            self.parts = []

        def update(self, data: bytes) -> None:
            self.parts.append(data)

    collector = _Collector()
    NarWriter(collector).write(os.fspath(path))
    return b"".join(collector.parts)
