"""Digest helpers for content-addressed artifacts.

Digests are rendered as ``sha256:<hex>``, the format advertised in an
ExternalArtifact's ``status.artifact.digest``.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

DIGEST_ALGORITHM = "sha256"
_CHUNK_SIZE = 64 * 1024


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file, read in chunks."""
    h = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def format_digest(hex_digest: str) -> str:
    """Prefix a hex digest with its algorithm: ``sha256:<hex>``."""
    return f"{DIGEST_ALGORITHM}:{hex_digest}"


def strip_digest(digest: str) -> str:
    """Strip the ``sha256:`` prefix from a digest, if present."""
    return digest.removeprefix(f"{DIGEST_ALGORITHM}:")
