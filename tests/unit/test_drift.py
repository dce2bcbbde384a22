"""Tests for DriftDetector.diff — one case per decision, first failing check wins."""

from __future__ import annotations

from typing import Any

import pytest

from fluxbridge.backend.memory import InMemoryBackend
from fluxbridge.core.artifact_store import ArtifactStore
from fluxbridge.core.controller import FluxController
from fluxbridge.core.drift import NO_DRIFT_MESSAGE, DriftDetector
from fluxbridge.errors import BackendIOError, StorageIOError
from fluxbridge.models.descriptors import DeploymentDescriptor, SourceDescriptor

NS = "confighub"


@pytest.fixture
def applied(controller: FluxController) -> FluxController:
    """A controller with ``foo`` applied at ``dev-1`` with ``Hello World``."""
    controller.apply("foo", "dev-1", b"Hello World")
    return controller


def _detector(controller: FluxController) -> DriftDetector:
    return DriftDetector(controller.backend, controller.store, namespace=NS)


def _patch_status(backend: InMemoryBackend, kind: str, status: dict[str, Any]) -> None:
    info = DeploymentDescriptor if kind == DeploymentDescriptor.KIND else SourceDescriptor
    backend.apply_status(
        {
            "apiVersion": info.API_VERSION,
            "kind": kind,
            "metadata": {"name": "foo", "namespace": NS},
            "status": status,
        },
        field_manager="tamperer",
    )


class TestDiff:
    def test_no_drift(self, applied: FluxController):
        assert _detector(applied).diff("foo", b"Hello World") == (False, NO_DRIFT_MESSAGE)

    def test_content_changed(self, applied: FluxController):
        assert _detector(applied).diff("foo", b"Goodbye") == (
            True,
            "External Artifact current data does not match expected data",
        )

    def test_deployment_missing(self, controller: FluxController):
        assert _detector(controller).diff("foo", b"x") == (
            True,
            "Kustomization foo could not be found",
        )

    def test_source_missing(self, applied: FluxController):
        applied.backend.delete(SourceDescriptor.KIND, NS, "foo")
        assert _detector(applied).diff("foo", b"Hello World") == (
            True,
            "External Artifact foo could not be found",
        )

    def test_source_status_empty(self, controller: FluxController):
        backend = controller.backend
        backend.apply(
            {
                "apiVersion": SourceDescriptor.API_VERSION,
                "kind": SourceDescriptor.KIND,
                "metadata": {"name": "foo", "namespace": NS},
            },
            field_manager="flux-bridge",
        )
        backend.apply(
            {
                "apiVersion": DeploymentDescriptor.API_VERSION,
                "kind": DeploymentDescriptor.KIND,
                "metadata": {"name": "foo", "namespace": NS},
                "spec": {"sourceRef": {"kind": "ExternalArtifact", "name": "foo", "namespace": NS}},
            },
            field_manager="flux-bridge",
        )
        assert _detector(controller).diff("foo", b"x") == (
            True,
            "External Artifact status is empty",
        )

    def test_blob_missing(self, applied: FluxController):
        source = SourceDescriptor.from_manifest(
            applied.backend.get(SourceDescriptor.KIND, NS, "foo")
        )
        applied.store.local_path(source.status.artifact).unlink()
        assert _detector(applied).diff("foo", b"Hello World") == (
            True,
            "Artifact does not exist on disk",
        )

    def test_revision_mismatch(self, applied: FluxController, artifact_store: ArtifactStore):
        newer = artifact_store.create("foo", "dev-2", b"Hello World")
        backend = applied.backend
        backend.reactors.clear()
        _patch_status(backend, SourceDescriptor.KIND, {"artifact": newer.to_status()})
        assert _detector(applied).diff("foo", b"Hello World") == (
            True,
            "External Artifact revision does not match Kustomization last applied revision",
        )

    def test_backend_error_propagates(self, applied: FluxController):
        applied.backend.inject_error(
            "get", SourceDescriptor.KIND, BackendIOError("timeout", status_code=504)
        )
        with pytest.raises(BackendIOError, match="timeout"):
            _detector(applied).diff("foo", b"Hello World")

    def test_corrupt_blob_propagates(self, applied: FluxController):
        source = SourceDescriptor.from_manifest(
            applied.backend.get(SourceDescriptor.KIND, NS, "foo")
        )
        applied.store.local_path(source.status.artifact).write_bytes(b"garbage")
        with pytest.raises(StorageIOError):
            _detector(applied).diff("foo", b"Hello World")

    def test_diff_is_read_only(self, applied: FluxController):
        backend = applied.backend
        backend.reactors.clear()
        before = len(backend.calls)
        _detector(applied).diff("foo", b"Hello World")
        assert {op for op, _, _ in backend.calls[before:]} == {"get"}


class TestPartialStatus:
    """Fields Flux leaves optional must not break a diff."""

    @pytest.fixture
    def bare(self) -> InMemoryBackend:
        backend = InMemoryBackend()
        for info, extra in (
            (SourceDescriptor, {}),
            (
                DeploymentDescriptor,
                {"spec": {"sourceRef": {"kind": "ExternalArtifact", "name": "foo", "namespace": NS}}},
            ),
        ):
            backend.apply(
                {
                    "apiVersion": info.API_VERSION,
                    "kind": info.KIND,
                    "metadata": {"name": "foo", "namespace": NS},
                    **extra,
                },
                field_manager="flux-bridge",
            )
        _patch_status(backend, DeploymentDescriptor.KIND, {"lastAppliedRevision": "dev-1"})
        return backend

    def test_artifact_without_digest(self, bare: InMemoryBackend, artifact_store: ArtifactStore):
        status = artifact_store.create("foo", "dev-1", b"Hello World").to_status()
        del status["digest"]
        _patch_status(bare, SourceDescriptor.KIND, {"artifact": status})
        detector = DriftDetector(bare, artifact_store, namespace=NS)
        assert detector.diff("foo", b"Hello World") == (False, NO_DRIFT_MESSAGE)

    def test_malformed_artifact_is_backend_error(
        self, bare: InMemoryBackend, artifact_store: ArtifactStore
    ):
        _patch_status(bare, SourceDescriptor.KIND, {"artifact": {"revision": "dev-1"}})
        detector = DriftDetector(bare, artifact_store, namespace=NS)
        with pytest.raises(BackendIOError, match="malformed ExternalArtifact"):
            detector.diff("foo", b"Hello World")
