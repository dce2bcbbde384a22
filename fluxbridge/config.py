"""Runtime configuration — env-driven via pydantic-settings.

Reads ``FLUXBRIDGE_*`` environment variables and an optional ``.env`` file.
One ``BridgeConfig`` is built at startup and handed to every component;
nothing reads configuration from globals after that.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

IN_CLUSTER_TOKEN_FILE = Path("/var/run/secrets/kubernetes.io/serviceaccount/token")
IN_CLUSTER_CA_FILE = Path("/var/run/secrets/kubernetes.io/serviceaccount/ca.crt")


class BridgeConfig(BaseSettings):
    """Settings for the reconciliation driver and its collaborators.

    Examples
    --------
    Override via environment::

        export FLUXBRIDGE_NAMESPACE=flux-system
        export FLUXBRIDGE_DATA_DIR=/data/artifacts
        export FLUXBRIDGE_KUBE_API_URL=https://kubernetes.default.svc
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FLUXBRIDGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Identity
    namespace: str = "flux-system"
    worker_name: str = "flux-bridge-poc"
    log_level: str = "INFO"

    # Artifact storage
    data_dir: Path = Path(".fluxbridge/artifacts")
    storage_address: str = ":8080"
    storage_adv_address: str = ""
    artifact_owner: str = "confighub"

    # Reconciliation timing
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    deployment_interval_seconds: float = Field(default=60.0, gt=0)
    deployment_timeout_seconds: float = Field(default=300.0, gt=0)
    gc_grace_seconds: float = Field(default=5.0, gt=0)

    # Kubernetes API access
    kube_api_url: str = "https://kubernetes.default.svc"
    kube_token: str = ""
    kube_token_file: Path = IN_CLUSTER_TOKEN_FILE
    kube_ca_file: Path | None = None
    kube_verify_tls: bool = True
    kube_request_timeout: float = 30.0

    @property
    def advertised_address(self) -> str:
        """Address published in artifact URLs.

        Defaults to the in-cluster service name for the configured namespace.
        """
        return self.storage_adv_address or f"flux-bridge.{self.namespace}.svc.cluster.local."

    @property
    def deployment_interval(self) -> timedelta:
        return timedelta(seconds=self.deployment_interval_seconds)

    @property
    def deployment_timeout(self) -> timedelta:
        return timedelta(seconds=self.deployment_timeout_seconds)

    def resolve_kube_token(self) -> str:
        """Return the bearer token, falling back to the service-account file."""
        if self.kube_token:
            return self.kube_token
        if self.kube_token_file.is_file():
            return self.kube_token_file.read_text(encoding="utf-8").strip()
        return ""

    def resolve_kube_ca(self) -> Path | None:
        if self.kube_ca_file is not None:
            return self.kube_ca_file
        if IN_CLUSTER_CA_FILE.is_file():
            return IN_CLUSTER_CA_FILE
        return None
