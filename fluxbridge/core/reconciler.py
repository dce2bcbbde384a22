"""Apply: publish an artifact, upsert the Flux objects, wait, collect.

The three side effects (artifact blob, ExternalArtifact, Kustomization) are
not transactional.  An artifact written before a failed upsert stays on
disk until the next successful Apply for the same name collects it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta

from fluxbridge.backend.base import Backend
from fluxbridge.core.artifact_store import ArtifactStore
from fluxbridge.core.context import Context
from fluxbridge.core.poller import ConvergencePoller
from fluxbridge.errors import (
    ApplyFailedError,
    ApplyPhase,
    CancelledError,
    InvalidArgumentError,
)
from fluxbridge.models.artifacts import Artifact
from fluxbridge.models.descriptors import (
    CONTROLLER_NAME,
    READY_CONDITION,
    SUCCEEDED_REASON,
    Condition,
    ConditionStatus,
    DeploymentDescriptor,
    DeploymentSpec,
    SourceDescriptor,
    SourceRef,
    SourceStatus,
    owned_metadata,
)

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = timedelta(minutes=1)
DEFAULT_TIMEOUT = timedelta(minutes=5)
DEFAULT_GC_GRACE_SECONDS = 5.0


@contextmanager
def _phase(phase: ApplyPhase) -> Iterator[None]:
    """Tag any failure inside the block with the Apply phase it came from."""
    try:
        yield
    except CancelledError:
        raise
    except Exception as exc:
        logger.warning("Apply failed during %s: %s", phase.value, exc)
        raise ApplyFailedError(phase, exc) from exc


class ReconciliationDriver:
    """Drives one name from configuration bytes to a converged deployment.

    Parameters
    ----------
    backend:
        Declarative backend holding the Flux objects.
    store:
        Artifact storage the source controller serves from.
    poller:
        Used to wait for the Kustomization to converge.
    namespace:
        Namespace for both backend objects.
    interval, timeout:
        Written into the Kustomization spec.  ``timeout`` also bounds the
        convergence wait.
    gc_grace_seconds:
        Time bound for collecting superseded artifacts.
    """

    def __init__(
        self,
        backend: Backend,
        store: ArtifactStore,
        poller: ConvergencePoller,
        *,
        namespace: str,
        interval: timedelta = DEFAULT_INTERVAL,
        timeout: timedelta = DEFAULT_TIMEOUT,
        gc_grace_seconds: float = DEFAULT_GC_GRACE_SECONDS,
        field_manager: str = CONTROLLER_NAME,
    ) -> None:
        self._backend = backend
        self._store = store
        self._poller = poller
        self._namespace = namespace
        self._interval = interval
        self._timeout = timeout
        self._gc_grace = gc_grace_seconds
        self._field_manager = field_manager

    def apply(self, ctx: Context, name: str, revision: str, content: bytes) -> Artifact:
        """Deploy ``content`` as ``revision`` of ``name`` and wait for it.

        Returns the artifact now being served.

        Raises
        ------
        InvalidArgumentError
            If ``name``, ``revision`` or ``content`` is empty.  Nothing has
            been written when this is raised.
        ApplyFailedError
            If any phase fails; ``phase`` names it and ``cause`` holds the
            underlying error.
        CancelledError
            If ``ctx`` is cancelled while waiting for convergence.
        """
        if not content:
            raise InvalidArgumentError("can't apply empty data")
        if not name:
            raise InvalidArgumentError("name can't be empty")
        if not revision:
            raise InvalidArgumentError("revision can't be empty")
        ctx.check()

        logger.info("Applying %s at revision %s (%d bytes)", name, revision, len(content))

        with _phase(ApplyPhase.ARTIFACT):
            artifact = self._store.create(name, revision, content)

        with _phase(ApplyPhase.SOURCE):
            self._upsert_source(name, artifact)

        with _phase(ApplyPhase.DEPLOYMENT):
            deployment = self._upsert_deployment(name)

        with _phase(ApplyPhase.CONVERGENCE):
            self._poller.wait(ctx, deployment, revision)

        with _phase(ApplyPhase.GARBAGE_COLLECT):
            self._store.garbage_collect(name, keep=artifact, grace_window=self._gc_grace)

        logger.info("Applied %s at revision %s (%s)", name, revision, artifact.digest)
        return artifact

    # ------------------------------------------------------------------
    # Upserts
    # ------------------------------------------------------------------

    def _upsert_source(self, name: str, artifact: Artifact) -> SourceDescriptor:
        source = SourceDescriptor(metadata=owned_metadata(name, self._namespace))
        applied = SourceDescriptor.from_manifest(
            self._backend.apply(
                source.to_manifest(), field_manager=self._field_manager, force=True
            )
        )

        status = SourceStatus(
            artifact=artifact,
            conditions=[
                Condition(
                    type=READY_CONDITION,
                    status=ConditionStatus.TRUE,
                    reason=SUCCEEDED_REASON,
                    message="Artifact is ready",
                    observed_generation=applied.metadata.generation,
                ),
            ],
        )
        updated = applied.model_copy(update={"status": status})
        result = self._backend.apply_status(
            updated.to_status_manifest(), field_manager=self._field_manager
        )
        logger.debug("Upserted %s %s/%s", SourceDescriptor.KIND, self._namespace, name)
        return SourceDescriptor.from_manifest(result)

    def _upsert_deployment(self, name: str) -> DeploymentDescriptor:
        deployment = DeploymentDescriptor(
            metadata=owned_metadata(name, self._namespace),
            spec=DeploymentSpec(
                source_ref=SourceRef(name=name, namespace=self._namespace),
                interval=self._interval,
                timeout=self._timeout,
                wait=True,
                prune=True,
            ),
        )
        result = self._backend.apply(
            deployment.to_manifest(), field_manager=self._field_manager, force=True
        )
        logger.debug("Upserted %s %s/%s", DeploymentDescriptor.KIND, self._namespace, name)
        return DeploymentDescriptor.from_manifest(result)
