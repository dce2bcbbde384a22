"""Delete: remove the Kustomization, then the ExternalArtifact, then the blobs.

The Kustomization goes first and must be confirmed gone before its source
is removed, so the reconciler can prune what it deployed while the
artifact is still being served.  Every step treats not-found as done,
which makes Delete idempotent.
"""

from __future__ import annotations

import logging

from fluxbridge.backend.base import Backend
from fluxbridge.core.artifact_store import ArtifactStore
from fluxbridge.core.context import Context, poll_until
from fluxbridge.core.poller import DEFAULT_POLL_INTERVAL
from fluxbridge.errors import CancelledError, NotFoundError
from fluxbridge.models.artifacts import Artifact
from fluxbridge.models.descriptors import DeploymentDescriptor, SourceDescriptor

logger = logging.getLogger(__name__)


class TeardownDriver:
    """Ordered deletion of everything Apply created for a name.

    Parameters
    ----------
    backend:
        Declarative backend holding the Flux objects.
    store:
        Artifact storage to clean up.
    namespace:
        Namespace of both backend objects.
    interval:
        Seconds between deletion-confirmation fetches.
    """

    def __init__(
        self,
        backend: Backend,
        store: ArtifactStore,
        *,
        namespace: str,
        interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._backend = backend
        self._store = store
        self._namespace = namespace
        self._interval = interval

    def delete(self, ctx: Context, name: str) -> None:
        """Tear down ``name``.  Safe to call on a name that was never applied.

        The deletion wait has no timeout of its own; it is bounded only by
        ``ctx``.

        Raises
        ------
        CancelledError
            If ``ctx`` is cancelled or reaches its deadline while waiting for
            the Kustomization to go.
        BackendIOError, StorageIOError
            The first failure that is not a not-found.
        """
        ns = self._namespace
        logger.info("Deleting %s", name)

        try:
            self._backend.delete(DeploymentDescriptor.KIND, ns, name)
        except NotFoundError:
            pass

        def gone() -> bool:
            try:
                self._backend.get(DeploymentDescriptor.KIND, ns, name)
            except NotFoundError:
                return True
            return False

        poll_until(ctx, self._interval, gone, on_deadline=CancelledError)
        logger.debug("%s %s/%s confirmed deleted", DeploymentDescriptor.KIND, ns, name)

        artifact: Artifact | None = None
        try:
            source = SourceDescriptor.from_manifest(
                self._backend.get(SourceDescriptor.KIND, ns, name)
            )
            artifact = source.status.artifact
        except NotFoundError:
            pass

        try:
            self._backend.delete(SourceDescriptor.KIND, ns, name)
        except NotFoundError:
            pass

        if artifact is not None:
            removed = self._store.remove_all(artifact)
            logger.debug("Removed %d artifact file(s) for %s", removed, name)

        logger.info("Deleted %s", name)
