"""Convergence polling for DeploymentDescriptors.

``compute_status`` reduces a Kustomization's conditions to a single
readiness verdict using the same rules kstatus applies to Flux objects.
``ConvergencePoller.wait`` re-fetches the object on a fixed interval until
that verdict is terminal, the reconciler reports ``Stalled``, or the
descriptor's own timeout runs out.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from enum import Enum

from fluxbridge.backend.base import Backend
from fluxbridge.core.context import Context, poll_until
from fluxbridge.errors import (
    ConvergenceStalledError,
    ConvergenceTimeoutError,
    NotFoundError,
    UnexpectedStatusError,
)
from fluxbridge.models.descriptors import (
    READY_CONDITION,
    RECONCILING_CONDITION,
    STALLED_CONDITION,
    ConditionStatus,
    DeploymentDescriptor,
    find_condition,
    is_condition_true,
)

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0


class ReadinessStatus(str, Enum):
    """Aggregate readiness of a backend object."""

    CURRENT = "Current"
    IN_PROGRESS = "InProgress"
    FAILED = "Failed"
    TERMINATING = "Terminating"
    UNKNOWN = "Unknown"


def compute_status(deployment: DeploymentDescriptor) -> ReadinessStatus:
    """Reduce a DeploymentDescriptor's status to one ``ReadinessStatus``.

    Rules, first match wins:

    1. being deleted -> TERMINATING
    2. observed generation behind ``metadata.generation`` -> IN_PROGRESS
    3. ``Reconciling=True`` -> IN_PROGRESS
    4. ``Stalled=True`` -> FAILED
    5. ``Ready``: True -> CURRENT, False -> FAILED, Unknown -> IN_PROGRESS
    6. no ``Ready`` condition -> UNKNOWN
    """
    status = deployment.status
    conditions = status.conditions

    if deployment.metadata.deletion_timestamp:
        return ReadinessStatus.TERMINATING
    if 0 < status.observed_generation < deployment.metadata.generation:
        return ReadinessStatus.IN_PROGRESS
    if is_condition_true(conditions, RECONCILING_CONDITION):
        return ReadinessStatus.IN_PROGRESS
    if is_condition_true(conditions, STALLED_CONDITION):
        return ReadinessStatus.FAILED

    ready = find_condition(conditions, READY_CONDITION)
    if ready is None:
        return ReadinessStatus.UNKNOWN
    if ready.status == ConditionStatus.TRUE:
        return ReadinessStatus.CURRENT
    if ready.status == ConditionStatus.FALSE:
        return ReadinessStatus.FAILED
    return ReadinessStatus.IN_PROGRESS


def check_stalled(deployment: DeploymentDescriptor) -> None:
    """Raise ``ConvergenceStalledError`` if the reconciler gave up."""
    stalled = find_condition(deployment.status.conditions, STALLED_CONDITION)
    if stalled is not None and stalled.status == ConditionStatus.TRUE:
        raise ConvergenceStalledError(stalled.message)


class ConvergencePoller:
    """Blocks until a DeploymentDescriptor converges on a revision.

    Parameters
    ----------
    backend:
        Where DeploymentDescriptors are fetched from.
    interval:
        Seconds between fetches.
    """

    def __init__(self, backend: Backend, *, interval: float = DEFAULT_POLL_INTERVAL) -> None:
        self._backend = backend
        self._interval = interval

    def wait(
        self,
        ctx: Context,
        deployment: DeploymentDescriptor,
        expected_revision: str,
        timeout: timedelta | None = None,
    ) -> DeploymentDescriptor:
        """Poll until ``deployment`` has converged on ``expected_revision``.

        ``timeout`` defaults to the descriptor's own ``spec.timeout``.

        Returns the converged descriptor as last observed.

        Raises
        ------
        ConvergenceStalledError
            As soon as the reconciler reports ``Stalled=True``.
        UnexpectedStatusError
            If readiness resolves to anything but current or in progress.
        ConvergenceTimeoutError
            If ``timeout`` elapses first.
        CancelledError
            If the caller cancels ``ctx``.
        BackendIOError
            If a fetch fails for any reason other than not-found.
        """
        limit = timeout if timeout is not None else deployment.spec.timeout
        namespace = deployment.metadata.namespace
        name = deployment.metadata.name
        observed: list[DeploymentDescriptor] = []

        def converged() -> bool:
            try:
                manifest = self._backend.get(DeploymentDescriptor.KIND, namespace, name)
            except NotFoundError:
                logger.debug("ConvergencePoller: %s/%s not visible yet", namespace, name)
                return False
            current = DeploymentDescriptor.from_manifest(manifest)
            observed[:] = [current]

            attempted = current.status.last_attempted_revision
            if attempted and attempted != expected_revision:
                logger.debug(
                    "ConvergencePoller: %s/%s still at %s, want %s",
                    namespace, name, attempted, expected_revision,
                )
                return False

            check_stalled(current)

            status = compute_status(current)
            if status == ReadinessStatus.CURRENT:
                return True
            if status in (ReadinessStatus.IN_PROGRESS, ReadinessStatus.UNKNOWN):
                return False
            raise UnexpectedStatusError(status.value)

        waiter = ctx.with_timeout(limit.total_seconds())
        try:
            poll_until(waiter, self._interval, converged)
        except ConvergenceTimeoutError:
            raise ConvergenceTimeoutError(
                f"Kustomization {namespace}/{name} did not converge on "
                f"revision {expected_revision} within {limit}"
            ) from None

        logger.info(
            "ConvergencePoller: %s/%s converged on revision %s", namespace, name, expected_revision
        )
        return observed[0]
