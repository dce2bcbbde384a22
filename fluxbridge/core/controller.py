"""FluxController — the entry point upstream adapters call.

Wires the ArtifactStore, ConvergencePoller, ReconciliationDriver,
DriftDetector and TeardownDriver together from one ``BridgeConfig`` and
exposes the three caller operations: ``apply``, ``diff`` and ``delete``.

The controller keeps no state between calls beyond its collaborators;
every decision is made from freshly fetched backend state.
"""

from __future__ import annotations

import logging

from fluxbridge.backend.base import Backend
from fluxbridge.config import BridgeConfig
from fluxbridge.core.artifact_store import ArtifactStore
from fluxbridge.core.context import Context
from fluxbridge.core.drift import DriftDetector
from fluxbridge.core.poller import ConvergencePoller
from fluxbridge.core.reconciler import ReconciliationDriver
from fluxbridge.core.teardown import TeardownDriver
from fluxbridge.models.artifacts import Artifact, ConfigurationPayload
from fluxbridge.models.descriptors import (
    CONTROLLER_NAME,
    MANAGED_BY_LABEL_KEY,
    DeploymentDescriptor,
    SourceDescriptor,
)

logger = logging.getLogger(__name__)


class FluxController:
    """Apply, diff and delete configuration through Flux.

    Parameters
    ----------
    backend:
        Declarative backend (``KubeBackend`` or ``InMemoryBackend``).
    store:
        Artifact storage shared with the artifact server.
    config:
        Namespace, timing and Kustomization settings.
    """

    def __init__(self, backend: Backend, store: ArtifactStore, config: BridgeConfig) -> None:
        self.backend = backend
        self.store = store
        self.namespace = config.namespace

        self.poller = ConvergencePoller(backend, interval=config.poll_interval_seconds)
        self.reconciler = ReconciliationDriver(
            backend,
            store,
            self.poller,
            namespace=config.namespace,
            interval=config.deployment_interval,
            timeout=config.deployment_timeout,
            gc_grace_seconds=config.gc_grace_seconds,
        )
        self.drift_detector = DriftDetector(backend, store, namespace=config.namespace)
        self.teardown = TeardownDriver(
            backend, store, namespace=config.namespace, interval=config.poll_interval_seconds
        )

    @classmethod
    def connect(cls, backend: Backend, store: ArtifactStore, config: BridgeConfig) -> FluxController:
        """Build a controller after checking both Flux kinds can be listed.

        Fails fast with ``BackendIOError`` when the CRDs are missing or the
        credentials lack list permission in the namespace.
        """
        for kind in (DeploymentDescriptor.KIND, SourceDescriptor.KIND):
            items = backend.list(kind, config.namespace)
            logger.debug("Found %d %s object(s) in %s", len(items), kind, config.namespace)
        return cls(backend, store, config)

    # ------------------------------------------------------------------
    # Caller operations
    # ------------------------------------------------------------------

    def apply(
        self, name: str, revision: str, content: bytes, ctx: Context | None = None
    ) -> Artifact:
        """Deploy ``content`` at ``revision`` and block until it converges."""
        return self.reconciler.apply(ctx or Context.background(), name, revision, content)

    def apply_payload(self, payload: ConfigurationPayload, ctx: Context | None = None) -> Artifact:
        return self.apply(payload.name, payload.revision, payload.content, ctx)

    def diff(self, name: str, content: bytes, ctx: Context | None = None) -> tuple[bool, str]:
        """Return ``(drift, message)`` comparing live state against ``content``."""
        (ctx or Context.background()).check()
        return self.drift_detector.diff(name, content)

    def delete(self, name: str, ctx: Context | None = None) -> None:
        """Tear down everything applied for ``name``."""
        self.teardown.delete(ctx or Context.background(), name)

    def list_managed(self) -> list[str]:
        """Names of the Kustomizations in the namespace carrying the fluxbridge label."""
        names = []
        for manifest in self.backend.list(DeploymentDescriptor.KIND, self.namespace):
            labels = (manifest.get("metadata") or {}).get("labels") or {}
            if labels.get(MANAGED_BY_LABEL_KEY) == CONTROLLER_NAME:
                names.append(manifest["metadata"]["name"])
        return names
