"""Drift detection: does the live state still match the requested bytes?

Read-only.  Every check re-fetches backend state; a Diff racing a
concurrent Apply for the same name may see the source updated before the
deployment and report drift that resolves on the next check.
"""

from __future__ import annotations

import logging

from fluxbridge.backend.base import Backend
from fluxbridge.core.artifact_store import DATA_FILE_NAME, ArtifactStore
from fluxbridge.errors import NotFoundError
from fluxbridge.models.descriptors import DeploymentDescriptor, SourceDescriptor

logger = logging.getLogger(__name__)

NO_DRIFT_MESSAGE = "No drift detected"


class DriftDetector:
    """Compares requested content against the last converged state.

    Parameters
    ----------
    backend:
        Declarative backend holding the Flux objects.
    store:
        Artifact storage holding the served blobs.
    namespace:
        Namespace of both backend objects.
    """

    def __init__(self, backend: Backend, store: ArtifactStore, *, namespace: str) -> None:
        self._backend = backend
        self._store = store
        self._namespace = namespace

    def diff(self, name: str, expected: bytes) -> tuple[bool, str]:
        """Return ``(drift, message)`` for ``name``.

        The first failing check decides the verdict.  Backend or storage
        errors other than not-found propagate; an error is never a verdict.
        """
        try:
            deployment = DeploymentDescriptor.from_manifest(
                self._backend.get(DeploymentDescriptor.KIND, self._namespace, name)
            )
        except NotFoundError:
            return self._verdict(name, True, f"Kustomization {name} could not be found")

        try:
            source = SourceDescriptor.from_manifest(
                self._backend.get(SourceDescriptor.KIND, self._namespace, name)
            )
        except NotFoundError:
            return self._verdict(name, True, f"External Artifact {name} could not be found")

        artifact = source.status.artifact
        if artifact is None:
            return self._verdict(name, True, "External Artifact status is empty")
        if not self._store.exists(artifact):
            return self._verdict(name, True, "Artifact does not exist on disk")
        if artifact.revision != deployment.status.last_applied_revision:
            return self._verdict(
                name,
                True,
                "External Artifact revision does not match Kustomization last applied revision",
            )

        current = self._store.fetch(artifact, DATA_FILE_NAME)
        if current != expected:
            return self._verdict(
                name, True, "External Artifact current data does not match expected data"
            )
        return self._verdict(name, False, NO_DRIFT_MESSAGE)

    @staticmethod
    def _verdict(name: str, drift: bool, message: str) -> tuple[bool, str]:
        logger.debug("Diff %s: drift=%s (%s)", name, drift, message)
        return drift, message
