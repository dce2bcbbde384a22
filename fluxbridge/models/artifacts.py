"""Configuration payload and artifact models (immutable)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ConfigurationPayload(BaseModel):
    """Caller-supplied configuration for one Apply call."""

    model_config = ConfigDict(frozen=True)

    name: str
    revision: str  # opaque, monotonic per name
    content: bytes


class Artifact(BaseModel):
    """An archived revision of a configuration payload.

    ``path`` is relative to the storage root and ``url`` is where the
    artifact server advertises it.  Artifacts are immutable once written;
    the digest is both the identity and the integrity check.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    name: str = ""
    revision: str
    digest: str = ""  # "sha256:<hex>"
    path: str
    url: str
    size: int = 0
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="lastUpdateTime",
    )

    def to_status(self) -> dict[str, Any]:
        """Render the artifact as an ExternalArtifact ``status.artifact``."""
        return self.model_dump(mode="json", by_alias=True, exclude={"name"})
