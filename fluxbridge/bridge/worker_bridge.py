"""Worker bridge — maps upstream work items onto FluxController calls.

Bridge boundary
---------------
An upstream worker hands the bridge a ``BridgePayload`` (a unit of
configuration identified by space and unit slugs, a revision number and
raw bytes) together with a ``StatusSink`` for progress reports.  The
bridge turns that into ``FluxController.apply``, ``diff`` or ``delete``
and reports each operation as it starts, completes or fails.

On failure the bridge reports a failed ``ActionResult`` and then re-raises
the original error, so the worker can still decide how to retry.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from fluxbridge.core.context import Context
from fluxbridge.core.controller import FluxController
from fluxbridge.errors import UnsupportedOperationError
from fluxbridge.models.artifacts import ConfigurationPayload

logger = logging.getLogger(__name__)

TOOLCHAIN_TYPE = "Kubernetes/YAML"
PROVIDER_TYPE = "FluxExternalArtifact"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ActionStatus(str, Enum):
    PROGRESSING = "progressing"
    COMPLETED = "completed"
    FAILED = "failed"


class ActionResultKind(str, Enum):
    NONE = "none"
    APPLY_COMPLETED = "apply_completed"
    APPLY_FAILED = "apply_failed"
    REFRESH_AND_NO_DRIFT = "refresh_and_no_drift"
    REFRESH_AND_DRIFTED = "refresh_and_drifted"
    REFRESH_FAILED = "refresh_failed"
    DESTROY_COMPLETED = "destroy_completed"
    DESTROY_FAILED = "destroy_failed"


class ActionResult(BaseModel):
    """A progress or outcome report sent upstream."""

    model_config = ConfigDict(frozen=True)

    status: ActionStatus
    result: ActionResultKind = ActionResultKind.NONE
    message: str = ""
    data: bytes | None = None
    live_state: bytes | None = None


class BridgePayload(BaseModel):
    """One upstream work item."""

    model_config = ConfigDict(frozen=True)

    space_slug: str
    unit_slug: str
    revision_num: int
    data: bytes = b""

    @property
    def name(self) -> str:
        return payload_to_name(self)

    @property
    def revision(self) -> str:
        return str(self.revision_num)

    def configuration(self) -> ConfigurationPayload:
        return ConfigurationPayload(name=self.name, revision=self.revision, content=self.data)


class Target(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str


class ConfigType(BaseModel):
    model_config = ConfigDict(frozen=True)

    toolchain_type: str = TOOLCHAIN_TYPE
    provider_type: str = PROVIDER_TYPE
    available_targets: list[Target] = []


class BridgeInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    supported_config_types: list[ConfigType]


@runtime_checkable
class StatusSink(Protocol):
    """Receives ``ActionResult`` reports for one work item."""

    def send_status(self, result: ActionResult) -> None:
        ...


class RecordingStatusSink:
    """Keeps every report in memory, in order."""

    def __init__(self) -> None:
        self.results: list[ActionResult] = []

    def send_status(self, result: ActionResult) -> None:
        self.results.append(result)

    @property
    def last(self) -> ActionResult | None:
        return self.results[-1] if self.results else None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def payload_to_name(payload: BridgePayload) -> str:
    """Backend object name for a work item: ``<space>-<unit>``."""
    return f"{payload.space_slug}-{payload.unit_slug}"


def slugify(value: str) -> str:
    """Lowercase, hyphen-separated, URL-safe form of ``value``."""
    slug = value.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def _safe_send(sink: StatusSink, result: ActionResult) -> None:
    """Send a failure report without masking the error being reported."""
    try:
        sink.send_status(result)
    except Exception:
        logger.exception("FluxBridge: failed to report %s", result.result.value)


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


class FluxBridge:
    """Adapter between an upstream worker and a ``FluxController``.

    Parameters
    ----------
    controller:
        The controller performing the work.
    name:
        Worker name; its slug is advertised as the single available target.
    """

    def __init__(self, controller: FluxController, name: str) -> None:
        self._controller = controller
        self.name = name

    def info(self) -> BridgeInfo:
        return BridgeInfo(
            supported_config_types=[
                ConfigType(available_targets=[Target(name=slugify(self.name))]),
            ]
        )

    def apply(self, sink: StatusSink, payload: BridgePayload, ctx: Context | None = None) -> None:
        sink.send_status(ActionResult(
            status=ActionStatus.PROGRESSING,
            message="Starting apply operation",
        ))
        try:
            self._controller.apply_payload(payload.configuration(), ctx)
        except Exception as exc:
            _safe_send(sink, ActionResult(
                status=ActionStatus.FAILED,
                result=ActionResultKind.APPLY_FAILED,
                message=f"Flux controller apply error: {exc}",
            ))
            raise

        sink.send_status(ActionResult(
            status=ActionStatus.COMPLETED,
            result=ActionResultKind.APPLY_COMPLETED,
            message="Successfully completed apply operation",
            live_state=payload.data,
        ))

    def refresh(self, sink: StatusSink, payload: BridgePayload, ctx: Context | None = None) -> None:
        sink.send_status(ActionResult(
            status=ActionStatus.PROGRESSING,
            message="Starting refresh operation",
        ))
        try:
            drift, message = self._controller.diff(payload.name, payload.data, ctx)
        except Exception as exc:
            _safe_send(sink, ActionResult(
                status=ActionStatus.FAILED,
                result=ActionResultKind.REFRESH_FAILED,
                message=f"Flux controller diff error: {exc}",
            ))
            raise

        sink.send_status(ActionResult(
            status=ActionStatus.COMPLETED,
            result=(
                ActionResultKind.REFRESH_AND_DRIFTED if drift
                else ActionResultKind.REFRESH_AND_NO_DRIFT
            ),
            message=message,
            data=payload.data,
            live_state=payload.data,
        ))

    def destroy(self, sink: StatusSink, payload: BridgePayload, ctx: Context | None = None) -> None:
        sink.send_status(ActionResult(
            status=ActionStatus.PROGRESSING,
            message=f"Starting destroy operation for {self.name}",
        ))
        try:
            self._controller.delete(payload.name, ctx)
        except Exception as exc:
            _safe_send(sink, ActionResult(
                status=ActionStatus.FAILED,
                result=ActionResultKind.DESTROY_FAILED,
                message=f"Flux controller destroy error: {exc}",
            ))
            raise

        sink.send_status(ActionResult(
            status=ActionStatus.COMPLETED,
            result=ActionResultKind.DESTROY_COMPLETED,
            message="Destroy operation completed",
            data=payload.data,
            live_state=b"",
        ))

    def import_(self, sink: StatusSink, payload: BridgePayload) -> None:
        raise UnsupportedOperationError("import not supported")

    def finalize(self, sink: StatusSink, payload: BridgePayload) -> None:
        """Nothing to release; Apply leaves no per-item state behind."""
