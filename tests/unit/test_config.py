"""Tests for BridgeConfig — env-driven settings and derived values."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from fluxbridge.config import BridgeConfig


def _config(tmp_path: Path, **overrides) -> BridgeConfig:
    overrides.setdefault("kube_token_file", tmp_path / "no-token")
    return BridgeConfig(_env_file=None, **overrides)


class TestDefaults:
    def test_defaults(self, tmp_path: Path):
        config = _config(tmp_path)
        assert config.namespace == "flux-system"
        assert config.storage_address == ":8080"
        assert config.artifact_owner == "confighub"
        assert config.poll_interval_seconds == 2.0
        assert config.deployment_interval == timedelta(minutes=1)
        assert config.deployment_timeout == timedelta(minutes=5)
        assert config.gc_grace_seconds == 5.0

    def test_advertised_address_defaults_to_service_dns(self, tmp_path: Path):
        config = _config(tmp_path, namespace="confighub")
        assert config.advertised_address == "flux-bridge.confighub.svc.cluster.local."

    def test_advertised_address_override(self, tmp_path: Path):
        config = _config(tmp_path, storage_adv_address="artifacts.example:9000")
        assert config.advertised_address == "artifacts.example:9000"


class TestEnvironment:
    def test_env_prefix(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("FLUXBRIDGE_NAMESPACE", "from-env")
        monkeypatch.setenv("FLUXBRIDGE_POLL_INTERVAL_SECONDS", "0.5")
        monkeypatch.setenv("FLUXBRIDGE_DATA_DIR", str(tmp_path / "data"))
        config = _config(tmp_path)
        assert config.namespace == "from-env"
        assert config.poll_interval_seconds == 0.5
        assert config.data_dir == tmp_path / "data"

    def test_dotenv_file(self, tmp_path: Path):
        env_file = tmp_path / ".env"
        env_file.write_text("FLUXBRIDGE_WORKER_NAME=dotenv-worker\n")
        config = BridgeConfig(_env_file=env_file, kube_token_file=tmp_path / "no-token")
        assert config.worker_name == "dotenv-worker"

    @pytest.mark.parametrize(
        "field", ["poll_interval_seconds", "deployment_timeout_seconds", "gc_grace_seconds"]
    )
    def test_timing_must_be_positive(self, tmp_path: Path, field: str):
        with pytest.raises(ValidationError):
            _config(tmp_path, **{field: 0})


class TestKubeCredentials:
    def test_explicit_token_wins(self, tmp_path: Path):
        token_file = tmp_path / "token"
        token_file.write_text("file-token")
        config = _config(tmp_path, kube_token="explicit", kube_token_file=token_file)
        assert config.resolve_kube_token() == "explicit"

    def test_token_file(self, tmp_path: Path):
        token_file = tmp_path / "token"
        token_file.write_text("  file-token\n")
        assert _config(tmp_path, kube_token_file=token_file).resolve_kube_token() == "file-token"

    def test_no_token(self, tmp_path: Path):
        assert _config(tmp_path).resolve_kube_token() == ""

    def test_explicit_ca(self, tmp_path: Path):
        ca = tmp_path / "ca.crt"
        assert _config(tmp_path, kube_ca_file=ca).resolve_kube_ca() == ca
