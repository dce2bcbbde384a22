"""Backend object models: ExternalArtifact source and Kustomization deployment.

The models mirror the Flux CRDs closely enough to round-trip through the
Kubernetes API.  Wire field names are camelCase (via alias generation);
Python attributes are snake_case.

``to_manifest()`` renders only the fields owned by fluxbridge, which is
what a server-side apply patch must contain.  Status is applied through
the status subresource with ``to_status_manifest()``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from fluxbridge.errors import BackendIOError
from fluxbridge.models.artifacts import Artifact
from fluxbridge.models.durations import GoDuration

MANAGED_BY_LABEL_KEY = "app.kubernetes.io/managed-by"
CONTROLLER_NAME = "flux-bridge"

READY_CONDITION = "Ready"
STALLED_CONDITION = "Stalled"
RECONCILING_CONDITION = "Reconciling"
SUCCEEDED_REASON = "Succeeded"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


_WIRE = ConfigDict(
    frozen=True,
    populate_by_name=True,
    alias_generator=to_camel,
    extra="ignore",
)

_M = TypeVar("_M", bound=BaseModel)


def _validate(cls: type[_M], manifest: dict[str, Any]) -> _M:
    """Parse a backend object; a malformed one is a backend failure."""
    try:
        return cls.model_validate(manifest)
    except ValidationError as exc:
        meta = manifest.get("metadata") or {}
        raise BackendIOError(
            f"malformed {getattr(cls, 'KIND', cls.__name__)} "
            f"{meta.get('namespace', '')}/{meta.get('name', '')}: "
            f"{exc.error_count()} invalid field(s)"
        ) from exc


class Condition(BaseModel):
    """A Kubernetes-style status condition."""

    model_config = _WIRE

    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    observed_generation: int = 0
    last_transition_time: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc).replace(microsecond=0)
    )


def find_condition(conditions: list[Condition], type_: str) -> Condition | None:
    """Return the first condition of the given type, if any."""
    for cond in conditions:
        if cond.type == type_:
            return cond
    return None


def is_condition_true(conditions: list[Condition], type_: str) -> bool:
    cond = find_condition(conditions, type_)
    return cond is not None and cond.status == ConditionStatus.TRUE


class ObjectMeta(BaseModel):
    model_config = _WIRE

    name: str
    namespace: str
    labels: dict[str, str] = Field(default_factory=dict)
    generation: int = 0
    resource_version: str = ""
    deletion_timestamp: str | None = None

    def to_patch(self) -> dict[str, Any]:
        """Metadata fields owned by fluxbridge (server-set fields omitted)."""
        patch: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.labels:
            patch["labels"] = dict(self.labels)
        return patch


def owned_metadata(name: str, namespace: str) -> ObjectMeta:
    """Metadata for an object created by fluxbridge, ownership label included."""
    return ObjectMeta(
        name=name,
        namespace=namespace,
        labels={MANAGED_BY_LABEL_KEY: CONTROLLER_NAME},
    )


# ---------------------------------------------------------------------------
# Source descriptor (ExternalArtifact)
# ---------------------------------------------------------------------------


class SourceStatus(BaseModel):
    model_config = _WIRE

    artifact: Artifact | None = None
    conditions: list[Condition] = Field(default_factory=list)


class SourceDescriptor(BaseModel):
    """Advertises the latest artifact for a name to the reconciler."""

    model_config = _WIRE

    API_VERSION: ClassVar[str] = "source.toolkit.fluxcd.io/v1"
    KIND: ClassVar[str] = "ExternalArtifact"

    metadata: ObjectMeta
    status: SourceStatus = Field(default_factory=SourceStatus)

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> SourceDescriptor:
        return _validate(cls, manifest)

    def to_manifest(self) -> dict[str, Any]:
        return {
            "apiVersion": self.API_VERSION,
            "kind": self.KIND,
            "metadata": self.metadata.to_patch(),
            "spec": {},
        }

    def to_status_manifest(self) -> dict[str, Any]:
        status: dict[str, Any] = {
            "conditions": [
                c.model_dump(mode="json", by_alias=True) for c in self.status.conditions
            ],
        }
        if self.status.artifact is not None:
            status["artifact"] = self.status.artifact.to_status()
        return {
            "apiVersion": self.API_VERSION,
            "kind": self.KIND,
            "metadata": {"name": self.metadata.name, "namespace": self.metadata.namespace},
            "status": status,
        }


# ---------------------------------------------------------------------------
# Deployment descriptor (Kustomization)
# ---------------------------------------------------------------------------


class SourceRef(BaseModel):
    model_config = _WIRE

    kind: str = SourceDescriptor.KIND
    name: str
    namespace: str


class DeploymentSpec(BaseModel):
    model_config = _WIRE

    source_ref: SourceRef
    interval: GoDuration = timedelta(minutes=1)
    timeout: GoDuration = timedelta(minutes=5)
    wait: bool = True
    prune: bool = True


class DeploymentStatus(BaseModel):
    model_config = _WIRE

    observed_generation: int = 0
    last_attempted_revision: str = ""
    last_applied_revision: str = ""
    conditions: list[Condition] = Field(default_factory=list)


class DeploymentDescriptor(BaseModel):
    """The convergence target the reconciler drives toward."""

    model_config = _WIRE

    API_VERSION: ClassVar[str] = "kustomize.toolkit.fluxcd.io/v1"
    KIND: ClassVar[str] = "Kustomization"

    metadata: ObjectMeta
    spec: DeploymentSpec
    status: DeploymentStatus = Field(default_factory=DeploymentStatus)

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> DeploymentDescriptor:
        return _validate(cls, manifest)

    def to_manifest(self) -> dict[str, Any]:
        return {
            "apiVersion": self.API_VERSION,
            "kind": self.KIND,
            "metadata": self.metadata.to_patch(),
            "spec": self.spec.model_dump(mode="json", by_alias=True),
        }

    def to_status_manifest(self) -> dict[str, Any]:
        return {
            "apiVersion": self.API_VERSION,
            "kind": self.KIND,
            "metadata": {"name": self.metadata.name, "namespace": self.metadata.namespace},
            "status": self.status.model_dump(mode="json", by_alias=True),
        }
