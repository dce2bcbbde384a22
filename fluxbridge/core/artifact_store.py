"""Deterministic tar.gz artifact storage.

Storage layout: {storage_path}/{owner}/{namespace}/{name}/{revision}.tar.gz

Each archive holds the payload as a single ``data.yaml`` member.  Archives
are byte-for-byte reproducible: members are sorted, timestamps and
ownership are zeroed, and the gzip header carries no name or mtime.  The
same ``(name, revision, content)`` therefore always yields the same digest.

The store only computes the advertised URL; serving the files over HTTP is
the job of a separate artifact server.
"""

from __future__ import annotations

import gzip
import io
import logging
import os
import shutil
import tarfile
import tempfile
import time
from pathlib import Path

from fluxbridge.core.hasher import format_digest, sha256_file, sha256_hex, strip_digest
from fluxbridge.errors import InvalidArgumentError, StorageIOError
from fluxbridge.models.artifacts import Artifact

logger = logging.getLogger(__name__)

DATA_FILE_NAME = "data.yaml"
ARTIFACT_SUFFIX = ".tar.gz"


class ArtifactStore:
    """Writes, reads and collects archived configuration revisions.

    Parameters
    ----------
    storage_path:
        Root directory for artifact storage.  Created if missing.
    storage_address:
        ``host:port`` the artifact server listens on.  A bare ``:port`` is
        advertised as ``localhost:port``.
    namespace:
        Namespace segment of every artifact path.
    owner:
        Leading path segment identifying who produced the artifacts.
    advertised_address:
        Overrides ``storage_address`` in artifact URLs (e.g. a cluster
        service DNS name).
    """

    def __init__(
        self,
        storage_path: Path,
        storage_address: str,
        *,
        namespace: str,
        owner: str = "confighub",
        advertised_address: str | None = None,
    ) -> None:
        self._root = Path(storage_path)
        self._root.mkdir(parents=True, exist_ok=True)
        self._namespace = namespace
        self._owner = owner.lower()
        address = advertised_address or storage_address
        if address.startswith(":"):
            address = f"localhost{address}"
        self._address = address.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _relative_dir(self, name: str) -> str:
        return f"{self._owner}/{self._namespace}/{name}"

    def _artifact_dir(self, name: str) -> Path:
        return self._root / self._relative_dir(name)

    def local_path(self, artifact: Artifact) -> Path:
        """Absolute path of an artifact's blob, confined to the storage root."""
        path = (self._root / artifact.path).resolve()
        if not path.is_relative_to(self._root.resolve()):
            raise StorageIOError(f"artifact path escapes storage root: {artifact.path}")
        return path

    def url_for(self, relative_path: str) -> str:
        return f"http://{self._address}/{relative_path}"

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, name: str, revision: str, content: bytes) -> Artifact:
        """Archive ``content`` as a new artifact for ``name`` at ``revision``.

        Writing the same revision twice replaces the blob atomically.
        """
        _check_segment("name", name)
        _check_segment("revision", revision)

        relative_path = f"{self._relative_dir(name)}/{revision}{ARTIFACT_SUFFIX}"
        target = self._root / relative_path
        try:
            with tempfile.TemporaryDirectory() as staging:
                staged = Path(staging) / DATA_FILE_NAME
                staged.write_bytes(content)
                archive = build_archive(Path(staging))
            target.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(target, archive)
        except (OSError, tarfile.TarError) as exc:
            raise StorageIOError(f"failed to write artifact {relative_path}: {exc}") from exc

        artifact = Artifact(
            name=name,
            revision=revision,
            digest=format_digest(sha256_hex(archive)),
            path=relative_path,
            url=self.url_for(relative_path),
            size=len(archive),
        )
        logger.debug(
            "ArtifactStore: wrote %s (%d bytes, %s)", relative_path, artifact.size, artifact.digest
        )
        return artifact

    # ------------------------------------------------------------------
    # Read and verify
    # ------------------------------------------------------------------

    def exists(self, artifact: Artifact) -> bool:
        """Check whether the artifact's blob is present."""
        try:
            return self.local_path(artifact).is_file()
        except StorageIOError:
            return False

    def verify(self, artifact: Artifact) -> bool:
        """Re-hash the stored blob and compare against ``artifact.digest``."""
        if not self.exists(artifact):
            return False
        try:
            return sha256_file(self.local_path(artifact)) == strip_digest(artifact.digest)
        except OSError as exc:
            raise StorageIOError(f"failed to read artifact {artifact.path}: {exc}") from exc

    def fetch(self, artifact: Artifact, target_file: str = DATA_FILE_NAME) -> bytes:
        """Extract a single member from the artifact's archive."""
        path = self.local_path(artifact)
        try:
            with tarfile.open(path, mode="r:gz") as tar:
                try:
                    member = tar.getmember(target_file)
                except KeyError as exc:
                    raise StorageIOError(
                        f"{target_file} not found in artifact {artifact.path}"
                    ) from exc
                fh = tar.extractfile(member)
                if fh is None:
                    raise StorageIOError(f"{target_file} in {artifact.path} is not a file")
                with fh:
                    return fh.read()
        except StorageIOError:
            raise
        except (OSError, EOFError, tarfile.TarError) as exc:
            raise StorageIOError(f"failed to read artifact {artifact.path}: {exc}") from exc

    def list_artifacts(self, name: str) -> list[Path]:
        """Return retained artifact blobs for ``name``, oldest first."""
        directory = self._artifact_dir(name)
        if not directory.is_dir():
            return []
        try:
            blobs = [p for p in directory.iterdir() if p.name.endswith(ARTIFACT_SUFFIX)]
            return sorted(blobs, key=lambda p: (p.stat().st_mtime, p.name))
        except OSError as exc:
            raise StorageIOError(f"failed to list artifacts for {name}: {exc}") from exc

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def garbage_collect(self, name: str, keep: Artifact, grace_window: float) -> list[Path]:
        """Remove every retained artifact for ``name`` except ``keep``.

        ``grace_window`` bounds the time spent collecting, in seconds.
        Files vanishing underneath the collector are ignored.

        Returns the removed paths.
        """
        deadline = time.monotonic() + grace_window
        keep_path = self.local_path(keep)
        directory = self._artifact_dir(name)
        if not directory.is_dir():
            return []

        removed: list[Path] = []
        try:
            candidates = sorted(p for p in directory.iterdir() if p.is_file())
        except OSError as exc:
            raise StorageIOError(f"failed to list artifacts for {name}: {exc}") from exc

        for path in candidates:
            if path.resolve() == keep_path:
                continue
            if time.monotonic() > deadline:
                raise StorageIOError(
                    f"garbage collection for {name} exceeded {grace_window}s; "
                    f"removed {len(removed)} of {len(candidates) - 1} files"
                )
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StorageIOError(f"failed to remove {path}: {exc}") from exc
            removed.append(path)

        if removed:
            logger.info(
                "ArtifactStore: garbage collected %d artifact(s) for %s", len(removed), name
            )
        return removed

    def remove_all(self, artifact: Artifact) -> int:
        """Remove the artifact and everything retained alongside it.

        A directory that is already gone is not an error.  Returns the
        number of files removed.
        """
        directory = self.local_path(artifact).parent
        if not directory.exists():
            return 0
        try:
            count = sum(1 for p in directory.rglob("*") if p.is_file())
            shutil.rmtree(directory)
        except FileNotFoundError:
            return 0
        except OSError as exc:
            raise StorageIOError(f"failed to remove {directory}: {exc}") from exc
        logger.info("ArtifactStore: removed %d file(s) under %s", count, directory)
        return count


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_archive(source_dir: Path) -> bytes:
    """Build a reproducible tar.gz of every regular file under ``source_dir``."""
    raw = io.BytesIO()
    with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.USTAR_FORMAT) as tar:
            for path in sorted(source_dir.rglob("*")):
                if not path.is_file():
                    continue
                info = tarfile.TarInfo(path.relative_to(source_dir).as_posix())
                info.size = path.stat().st_size
                info.mode = 0o644
                info.mtime = 0
                info.uid = info.gid = 0
                info.uname = info.gname = ""
                with path.open("rb") as fh:
                    tar.addfile(info, fh)
    return raw.getvalue()


def _atomic_write(target: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=ARTIFACT_SUFFIX)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _check_segment(field: str, value: str) -> None:
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise InvalidArgumentError(f"{field} {value!r} is not a valid path segment")
