"""fluxbridge data models — Pydantic v2, frozen where immutable."""

from fluxbridge.models.artifacts import Artifact, ConfigurationPayload
from fluxbridge.models.descriptors import (
    CONTROLLER_NAME,
    MANAGED_BY_LABEL_KEY,
    Condition,
    ConditionStatus,
    DeploymentDescriptor,
    DeploymentSpec,
    DeploymentStatus,
    ObjectMeta,
    SourceDescriptor,
    SourceRef,
    SourceStatus,
)

__all__ = [
    # artifacts
    "Artifact",
    "ConfigurationPayload",
    # descriptors
    "CONTROLLER_NAME",
    "MANAGED_BY_LABEL_KEY",
    "Condition",
    "ConditionStatus",
    "ObjectMeta",
    "SourceDescriptor",
    "SourceStatus",
    "SourceRef",
    "DeploymentDescriptor",
    "DeploymentSpec",
    "DeploymentStatus",
]
