"""Tests for the worker bridge — status reporting around controller calls."""

from __future__ import annotations

import pytest

from fluxbridge.backend.memory import InMemoryBackend, flux_reconciler
from fluxbridge.bridge.worker_bridge import (
    PROVIDER_TYPE,
    TOOLCHAIN_TYPE,
    ActionResult,
    ActionResultKind,
    ActionStatus,
    BridgePayload,
    FluxBridge,
    RecordingStatusSink,
    StatusSink,
    payload_to_name,
    slugify,
)
from fluxbridge.core.controller import FluxController
from fluxbridge.errors import ApplyFailedError, UnsupportedOperationError


def _payload(data: bytes = b"kind: ConfigMap\n", revision: int = 1) -> BridgePayload:
    return BridgePayload(space_slug="dev", unit_slug="web", revision_num=revision, data=data)


@pytest.fixture
def bridge(controller: FluxController) -> FluxBridge:
    return FluxBridge(controller, "Flux Bridge POC")


class TestHelpers:
    def test_payload_name_and_revision(self):
        payload = _payload(revision=7)
        assert payload_to_name(payload) == "dev-web"
        assert payload.name == "dev-web"
        assert payload.revision == "7"

    def test_configuration_payload(self):
        configuration = _payload(data=b"a: 1\n", revision=3).configuration()
        assert configuration.name == "dev-web"
        assert configuration.revision == "3"
        assert configuration.content == b"a: 1\n"

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("Flux Bridge POC", "flux-bridge-poc"),
            ("  weird__name!! ", "weird-name"),
            ("already-slugged", "already-slugged"),
        ],
    )
    def test_slugify(self, value: str, expected: str):
        assert slugify(value) == expected

    def test_recording_sink(self):
        sink = RecordingStatusSink()
        assert sink.last is None
        assert isinstance(sink, StatusSink)
        sink.send_status(ActionResult(status=ActionStatus.PROGRESSING))
        assert sink.last.status == ActionStatus.PROGRESSING


class TestInfo:
    def test_advertises_single_target(self, bridge: FluxBridge):
        info = bridge.info()
        [config_type] = info.supported_config_types
        assert config_type.toolchain_type == TOOLCHAIN_TYPE
        assert config_type.provider_type == PROVIDER_TYPE
        assert [t.name for t in config_type.available_targets] == ["flux-bridge-poc"]


class TestApply:
    def test_reports_progress_then_completion(self, bridge: FluxBridge):
        sink = RecordingStatusSink()
        bridge.apply(sink, _payload())
        assert [r.status for r in sink.results] == [
            ActionStatus.PROGRESSING,
            ActionStatus.COMPLETED,
        ]
        assert sink.results[0].message == "Starting apply operation"
        assert sink.last.result == ActionResultKind.APPLY_COMPLETED
        assert sink.last.live_state == b"kind: ConfigMap\n"

    def test_failure_reported_and_reraised(self, artifact_store, config):
        backend = InMemoryBackend(reactors=[flux_reconciler(stalled_message="broken")])
        bridge = FluxBridge(FluxController(backend, artifact_store, config), "poc")
        sink = RecordingStatusSink()
        with pytest.raises(ApplyFailedError):
            bridge.apply(sink, _payload())
        assert sink.last.status == ActionStatus.FAILED
        assert sink.last.result == ActionResultKind.APPLY_FAILED
        assert sink.last.message.startswith("Flux controller apply error:")

    def test_sink_failure_does_not_mask_error(self, artifact_store, config):
        backend = InMemoryBackend(reactors=[flux_reconciler(ready=False)])
        bridge = FluxBridge(FluxController(backend, artifact_store, config), "poc")

        class FlakySink(RecordingStatusSink):
            def send_status(self, result: ActionResult) -> None:
                if result.status == ActionStatus.FAILED:
                    raise ConnectionError("upstream gone")
                super().send_status(result)

        with pytest.raises(ApplyFailedError):
            bridge.apply(FlakySink(), _payload())


class TestRefresh:
    def test_no_drift(self, bridge: FluxBridge):
        bridge.apply(RecordingStatusSink(), _payload())
        sink = RecordingStatusSink()
        bridge.refresh(sink, _payload())
        assert sink.last.result == ActionResultKind.REFRESH_AND_NO_DRIFT
        assert sink.last.message == "No drift detected"

    def test_drifted(self, bridge: FluxBridge):
        bridge.apply(RecordingStatusSink(), _payload())
        sink = RecordingStatusSink()
        bridge.refresh(sink, _payload(data=b"kind: Secret\n"))
        assert sink.last.status == ActionStatus.COMPLETED
        assert sink.last.result == ActionResultKind.REFRESH_AND_DRIFTED

    def test_never_applied_is_drift(self, bridge: FluxBridge):
        sink = RecordingStatusSink()
        bridge.refresh(sink, _payload())
        assert sink.last.result == ActionResultKind.REFRESH_AND_DRIFTED
        assert sink.last.message == "Kustomization dev-web could not be found"


class TestDestroy:
    def test_destroy(self, bridge: FluxBridge, controller: FluxController):
        bridge.apply(RecordingStatusSink(), _payload())
        sink = RecordingStatusSink()
        bridge.destroy(sink, _payload())
        assert sink.results[0].message == "Starting destroy operation for Flux Bridge POC"
        assert sink.last.result == ActionResultKind.DESTROY_COMPLETED
        assert sink.last.live_state == b""
        assert controller.list_managed() == []


class TestUnsupported:
    def test_import_not_supported(self, bridge: FluxBridge):
        with pytest.raises(UnsupportedOperationError, match="import not supported"):
            bridge.import_(RecordingStatusSink(), _payload())

    def test_finalize_is_noop(self, bridge: FluxBridge):
        sink = RecordingStatusSink()
        bridge.finalize(sink, _payload())
        assert sink.results == []
