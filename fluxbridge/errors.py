"""Error taxonomy for the reconciliation driver.

Every error raised out of ``fluxbridge`` derives from ``FluxBridgeError``.
Not-found responses from the backend are modelled as ``NotFoundError`` so
the drivers can treat them as soft signals; they are never surfaced from
``apply``, ``diff`` or ``delete``.

No component retries.  Retry policy belongs to the caller.
"""

from __future__ import annotations

from enum import Enum


class FluxBridgeError(RuntimeError):
    """Base class for every error raised by fluxbridge."""


class InvalidArgumentError(FluxBridgeError, ValueError):
    """Raised before any side effect when a caller argument is unusable."""


class StorageIOError(FluxBridgeError):
    """Raised when the artifact store hits a filesystem or archive error."""


class BackendIOError(FluxBridgeError):
    """Raised when the declarative backend fails a request.

    Parameters
    ----------
    message:
        Human readable description of the failure.
    status_code:
        HTTP-style status code reported by the backend, when known.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(BackendIOError):
    """The requested backend object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f"{kind} {namespace}/{name} not found", status_code=404)
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ConvergenceTimeoutError(FluxBridgeError):
    """The reconciler did not reach a terminal outcome within the timeout."""


class ConvergenceStalledError(FluxBridgeError):
    """The reconciler reported ``Stalled=True``; waiting longer will not help."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnexpectedStatusError(FluxBridgeError):
    """The computed readiness status is neither current nor in progress."""

    def __init__(self, status: str) -> None:
        super().__init__(f"failed Kustomization status {status}")
        self.status = status


class CancelledError(FluxBridgeError):
    """The caller's context was cancelled while waiting."""


class UnsupportedOperationError(FluxBridgeError):
    """The requested operation is not offered by this bridge."""


class ApplyPhase(str, Enum):
    """The step of an Apply call that failed."""

    ARTIFACT = "artifact"
    SOURCE = "source"
    DEPLOYMENT = "deployment"
    CONVERGENCE = "convergence"
    GARBAGE_COLLECT = "garbage_collect"


class ApplyFailedError(FluxBridgeError):
    """An Apply call failed; ``cause`` holds the underlying error."""

    def __init__(self, phase: ApplyPhase, cause: BaseException) -> None:
        super().__init__(f"apply failed during {phase.value}: {cause}")
        self.phase = phase
        self.cause = cause
