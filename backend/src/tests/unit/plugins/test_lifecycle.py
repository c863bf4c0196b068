"""
Tests for the plugin lifecycle controller: registration, enable/disable,
consent, blocking and failure handling.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from warden.container import build_warden
from warden.core.config import Settings
from warden.core.exceptions import ConfigurationError
from warden.plugins.lifecycle import AUTO_GRANTOR
from warden.plugins.state import InMemoryStateStore, PluginStatus
from warden.security.capabilities import Capability, sorted_by_risk
from warden.security.events import (
    PermissionDenied,
    PermissionGranted,
    PermissionRequested,
    PermissionRevoked,
    SecurityViolation,
    ViolationKind,
    ViolationSeverity,
)
from warden.security.manifest import TrustLevel
from warden.security.os_permissions import StaticOsPermissionBridge

WATER = ["COLLECT_DATA", "READ_OWN_DATA", "LOCAL_STORAGE"]
THIRDPARTY = {"network_domains": ["api.open-meteo.com"], "data_retention": "TEMPORARY"}


class FailingStateStore(InMemoryStateStore):
    """State store that accepts registration writes and then starts failing."""

    def __init__(self):
        super().__init__()
        self.failing = False

    async def put(self, state):
        if self.failing:
            raise RuntimeError("disk full")
        await super().put(state)


def _fresh_warden(tmp_path_factory, **overrides):
    return build_warden(
        Settings(_env_file=None, **overrides),
        sinks=(),
        plugins_dir=tmp_path_factory.mktemp("plugins"),
        configure_logging=False,
    )


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_creates_registered_state(self, warden, register_plugin):
        descriptor = await register_plugin("water", WATER, TrustLevel.OFFICIAL)
        assert descriptor.trust_level is TrustLevel.OFFICIAL
        state = warden.lifecycle.state("water")
        assert state.status is PluginStatus.REGISTERED
        assert not state.is_enabled
        assert await warden.state_store.get("water") == state

    @pytest.mark.asyncio
    async def test_invalid_manifest_is_excluded(self, warden, register_plugin):
        with pytest.raises(ConfigurationError) as exc_info:
            await register_plugin("leaky", ["SHARE_DATA"], data_sensitivity="PRIVATE")
        assert "SHARE_DATA" in exc_info.value.message
        assert "leaky" not in warden.registry
        assert warden.lifecycle.state("leaky") is None

    @pytest.mark.asyncio
    async def test_state_write_failure_rolls_back_registration(self, tmp_path):
        store = FailingStateStore()
        store.failing = True
        warden = build_warden(
            Settings(_env_file=None), state_store=store, sinks=(), plugins_dir=tmp_path, configure_logging=False
        )
        with pytest.raises(RuntimeError):
            await warden.lifecycle.register("water", "Water", "1", TrustLevel.OFFICIAL, {"requested_capabilities": WATER})
        assert "water" not in warden.registry

    @pytest.mark.asyncio
    async def test_unregister_revokes_and_forgets(self, warden, register_plugin, events):
        await register_plugin("water", WATER, TrustLevel.OFFICIAL)
        await warden.lifecycle.enable("water")

        assert await warden.lifecycle.unregister("water")

        assert "water" not in warden.registry
        assert warden.lifecycle.state("water") is None
        assert await warden.state_store.get("water") is None
        assert len(events(warden, PermissionRevoked, "water")) == 3
        assert not await warden.lifecycle.unregister("water")


class TestEnable:
    @pytest.mark.asyncio
    async def test_official_plugin_is_auto_granted(self, warden, register_plugin, events):
        await register_plugin("water", WATER, TrustLevel.OFFICIAL)

        outcome = await warden.lifecycle.enable("water")

        assert outcome.success
        assert outcome.state.status is PluginStatus.ENABLED
        assert outcome.state.is_enabled and outcome.state.is_collecting
        grants = warden.ledger.grants("water")
        assert len(grants) == 3
        assert {g.granted_by for g in grants} == {AUTO_GRANTOR}
        assert len(events(warden, PermissionGranted, "water")) == 3
        assert events(warden, SecurityViolation, "water") == []
        assert warden.monitor.active_violations() == {}

    @pytest.mark.asyncio
    async def test_community_plugin_needs_consent(self, warden, register_plugin, events):
        await register_plugin("thirdparty", ["NETWORK_ACCESS"], TrustLevel.COMMUNITY, **THIRDPARTY)

        outcome = await warden.lifecycle.enable("thirdparty")

        assert not outcome.success
        assert outcome.error_code == "PERMISSION_DENIED"
        assert outcome.missing == (Capability.NETWORK_ACCESS,)
        (denied,) = events(warden, PermissionDenied, "thirdparty")
        assert denied.capability is Capability.NETWORK_ACCESS
        assert not warden.lifecycle.is_enabled("thirdparty")
        assert warden.lifecycle.state("thirdparty").status is PluginStatus.REGISTERED
        assert warden.ledger.granted("thirdparty") == frozenset()

    @pytest.mark.asyncio
    async def test_enable_after_consent(self, warden, register_plugin):
        await register_plugin("thirdparty", ["NETWORK_ACCESS"], TrustLevel.COMMUNITY, **THIRDPARTY)
        (await warden.lifecycle.grant_consent("thirdparty", ["NETWORK_ACCESS"])).unwrap()
        assert (await warden.lifecycle.enable("thirdparty")).success

    @pytest.mark.asyncio
    async def test_denial_names_highest_risk_missing_capability(self, warden, register_plugin, events):
        await register_plugin("camera", ["COLLECT_DATA", "NETWORK_ACCESS", "CAMERA_ACCESS"], TrustLevel.VERIFIED)
        outcome = await warden.lifecycle.enable("camera")
        (denied,) = events(warden, PermissionDenied, "camera")
        assert denied.capability is Capability.CAMERA_ACCESS
        assert outcome.missing == (Capability.CAMERA_ACCESS, Capability.NETWORK_ACCESS, Capability.COLLECT_DATA)
        assert "CAMERA_ACCESS, NETWORK_ACCESS, COLLECT_DATA" in denied.reason

    @pytest.mark.asyncio
    @pytest.mark.parametrize("trust", [TrustLevel.BLOCKED, TrustLevel.QUARANTINED])
    async def test_untrusted_levels_cannot_enable(self, warden, register_plugin, events, trust):
        await register_plugin("shady", ["COLLECT_DATA"], trust)
        outcome = await warden.lifecycle.enable("shady")
        assert outcome.error_code == "TRUST_POLICY_BLOCK"
        (violation,) = events(warden, SecurityViolation, "shady")
        assert violation.kind is ViolationKind.TRUST_POLICY_BLOCK
        assert violation.severity is ViolationSeverity.MEDIUM
        assert events(warden, PermissionDenied, "shady") == []

    @pytest.mark.asyncio
    async def test_unknown_plugin(self, warden):
        outcome = await warden.lifecycle.enable("ghost")
        assert not outcome
        assert outcome.error_code == "PLUGIN_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_store_failure_puts_plugin_in_error(self, tmp_path):
        store = FailingStateStore()
        warden = build_warden(
            Settings(_env_file=None), state_store=store, sinks=(), plugins_dir=tmp_path, configure_logging=False
        )
        await warden.lifecycle.register("water", "Water", "1", TrustLevel.OFFICIAL, {"requested_capabilities": WATER})
        store.failing = True

        outcome = await warden.lifecycle.enable("water")

        assert not outcome.success
        assert outcome.error_code == "LIFECYCLE_ERROR"
        state = warden.lifecycle.state("water")
        assert state.status is PluginStatus.ERROR
        assert state.error_count == 1
        assert state.last_error == "disk full"
        assert not state.is_enabled

    @pytest.mark.asyncio
    async def test_success_clears_error_state(self, tmp_path):
        store = FailingStateStore()
        warden = build_warden(
            Settings(_env_file=None), state_store=store, sinks=(), plugins_dir=tmp_path, configure_logging=False
        )
        await warden.lifecycle.register("water", "Water", "1", TrustLevel.OFFICIAL, {"requested_capabilities": WATER})
        store.failing = True
        await warden.lifecycle.enable("water")
        store.failing = False

        outcome = await warden.lifecycle.enable("water")

        assert outcome.success
        assert outcome.state.error_count == 0
        assert outcome.state.last_error is None


class TestEnableProperties:
    @pytest.mark.asyncio
    @settings(max_examples=25, deadline=None)
    @given(
        capabilities=st.sets(
            st.sampled_from(["COLLECT_DATA", "READ_OWN_DATA", "LOCAL_STORAGE", "NETWORK_ACCESS", "EXPORT_DATA"]),
            min_size=1,
        )
    )
    async def test_official_enable_grants_exactly_the_manifest(self, tmp_path_factory, capabilities):
        warden = _fresh_warden(tmp_path_factory)
        await warden.lifecycle.register(
            "sample", "Sample", "1", TrustLevel.OFFICIAL, {"requested_capabilities": sorted(capabilities)}
        )
        assert (await warden.lifecycle.enable("sample")).success
        assert {c.value for c in warden.ledger.granted("sample")} == capabilities

    @pytest.mark.asyncio
    @settings(max_examples=25, deadline=None)
    @given(
        trust=st.sampled_from([TrustLevel.VERIFIED, TrustLevel.COMMUNITY, TrustLevel.UNTRUSTED]),
        capabilities=st.sets(
            st.sampled_from(["COLLECT_DATA", "READ_OWN_DATA", "NETWORK_ACCESS", "EXPORT_DATA", "CAMERA_ACCESS"]),
            min_size=1,
        ),
    )
    async def test_non_official_enable_emits_one_denial(self, tmp_path_factory, trust, capabilities):
        warden = _fresh_warden(tmp_path_factory)
        await warden.lifecycle.register(
            "sample", "Sample", "1", trust, {"requested_capabilities": sorted(capabilities)}
        )
        outcome = await warden.lifecycle.enable("sample")
        denials = [e for e in warden.monitor.log() if isinstance(e, PermissionDenied)]
        assert not outcome.success
        assert len(denials) == 1
        assert denials[0].capability is sorted_by_risk(Capability(c) for c in capabilities)[0]
        assert not warden.lifecycle.is_enabled("sample")


class TestDisable:
    @pytest.mark.asyncio
    async def test_disable_keeps_grants_by_default(self, warden, register_plugin, events):
        await register_plugin("water", WATER, TrustLevel.OFFICIAL)
        await warden.lifecycle.enable("water")

        outcome = await warden.lifecycle.disable("water")

        assert outcome.success
        assert outcome.state.status is PluginStatus.DISABLED
        assert not warden.lifecycle.is_enabled("water")
        assert len(warden.ledger.granted("water")) == 3
        assert events(warden, PermissionRevoked, "water") == []

    @pytest.mark.asyncio
    async def test_disable_revokes_when_configured(self, tmp_path_factory):
        warden = _fresh_warden(tmp_path_factory, revoke_on_disable=True)
        await warden.lifecycle.register("water", "Water", "1", TrustLevel.OFFICIAL, {"requested_capabilities": WATER})
        await warden.lifecycle.enable("water")

        await warden.lifecycle.disable("water")

        assert warden.ledger.granted("water") == frozenset()
        revoked = [e for e in warden.monitor.log() if isinstance(e, PermissionRevoked)]
        assert len(revoked) == 3

    @pytest.mark.asyncio
    async def test_explicit_revoke_overrides_setting(self, warden, register_plugin):
        await register_plugin("water", WATER, TrustLevel.OFFICIAL)
        await warden.lifecycle.enable("water")
        await warden.lifecycle.disable("water", revoke_grants=True)
        assert warden.ledger.granted("water") == frozenset()

    @pytest.mark.asyncio
    async def test_reenable_after_disable(self, warden, register_plugin):
        await register_plugin("water", WATER, TrustLevel.OFFICIAL)
        await warden.lifecycle.enable("water")
        await warden.lifecycle.disable("water")
        assert (await warden.lifecycle.enable("water")).success


class TestBlockAndQuarantine:
    @pytest.mark.asyncio
    async def test_block_revokes_disables_and_reports(self, warden, register_plugin, events):
        await register_plugin("water", WATER, TrustLevel.OFFICIAL)
        await warden.lifecycle.enable("water")

        outcome = await warden.lifecycle.block("water", "user removed it")

        assert outcome.success
        assert warden.registry.get("water").trust_level is TrustLevel.BLOCKED
        assert warden.ledger.granted("water") == frozenset()
        assert not warden.lifecycle.is_enabled("water")
        (violation,) = events(warden, SecurityViolation, "water")
        assert violation.kind is ViolationKind.USER_BLOCKED
        assert violation.severity is ViolationSeverity.HIGH
        assert violation.detail == "user removed it"

        assert not (await warden.lifecycle.enable("water")).success

    @pytest.mark.asyncio
    async def test_quarantine_disables_and_prevents_enable(self, warden, register_plugin):
        await register_plugin("water", WATER, TrustLevel.OFFICIAL)
        await warden.lifecycle.enable("water")

        await warden.lifecycle.quarantine("water")

        assert warden.registry.get("water").trust_level is TrustLevel.QUARANTINED
        assert not warden.lifecycle.is_enabled("water")
        assert (await warden.lifecycle.enable("water")).error_code == "TRUST_POLICY_BLOCK"


class TestConsent:
    @pytest.mark.asyncio
    async def test_pending_and_required_consent(self, warden, register_plugin):
        await register_plugin(
            "insights",
            ["READ_ALL_DATA", "READ_OWN_DATA", "NETWORK_ACCESS"],
            data_access=["ALL_DATA_READ"],
        )
        assert warden.lifecycle.pending_consent("insights") == [
            Capability.READ_ALL_DATA,
            Capability.NETWORK_ACCESS,
            Capability.READ_OWN_DATA,
        ]
        assert warden.lifecycle.consent_required("insights") == [Capability.READ_ALL_DATA]
        assert warden.lifecycle.pending_consent("ghost") == []

    @pytest.mark.asyncio
    async def test_grant_consent_emits_requests_then_grants(self, warden, register_plugin, events):
        await register_plugin("mood", ["COLLECT_DATA", "EXPORT_DATA"])

        result = await warden.lifecycle.grant_consent("mood", ["EXPORT_DATA", "COLLECT_DATA"])

        assert result.unwrap() == frozenset({Capability.EXPORT_DATA, Capability.COLLECT_DATA})
        requested = events(warden, PermissionRequested, "mood")
        assert [e.capability for e in requested] == [Capability.EXPORT_DATA, Capability.COLLECT_DATA]
        granted = events(warden, PermissionGranted, "mood")
        assert {e.granted_by for e in granted} == {"user"}
        log = warden.monitor.events_for("mood")
        assert all(isinstance(e, PermissionRequested) for e in log[:2])

    @pytest.mark.asyncio
    async def test_consent_outside_manifest_is_rejected(self, warden, register_plugin):
        await register_plugin("mood", ["COLLECT_DATA"])
        result = await warden.lifecycle.grant_consent("mood", ["CAMERA_ACCESS"])
        assert isinstance(result.error, ConfigurationError)
        assert result.error.details["capabilities"] == ["CAMERA_ACCESS"]
        assert warden.ledger.granted("mood") == frozenset()

    @pytest.mark.asyncio
    async def test_consent_for_blocked_plugin_is_refused(self, warden, register_plugin, events):
        await register_plugin("mood", ["COLLECT_DATA"], TrustLevel.BLOCKED)
        result = await warden.lifecycle.grant_consent("mood", ["COLLECT_DATA"])
        assert result.error_code == "SECURITY_VIOLATION"
        assert events(warden, PermissionRequested, "mood") == []

    @pytest.mark.asyncio
    async def test_consent_for_unknown_plugin(self, warden):
        result = await warden.lifecycle.grant_consent("ghost", ["COLLECT_DATA"])
        assert result.error_code == "PLUGIN_NOT_FOUND"


class TestCollection:
    @pytest.mark.asyncio
    async def test_record_collection_requires_collecting(self, warden, register_plugin):
        await register_plugin("water", WATER, TrustLevel.OFFICIAL)
        assert not (await warden.lifecycle.record_collection("water")).success

        await warden.lifecycle.enable("water")
        outcome = await warden.lifecycle.record_collection("water")

        assert outcome.success
        assert outcome.state.last_collection_time is not None


class TestOsPermissions:
    @pytest.mark.asyncio
    async def test_missing_os_permissions(self, tmp_path):
        bridge = StaticOsPermissionBridge({"android.permission.CAMERA"})
        warden = build_warden(
            Settings(_env_file=None), os_bridge=bridge, sinks=(), plugins_dir=tmp_path, configure_logging=False
        )
        await warden.lifecycle.register(
            "walks",
            "Walks",
            "1",
            TrustLevel.OFFICIAL,
            {"requested_capabilities": ["ACCESS_LOCATION", "CAMERA_ACCESS"], "data_access": ["OWN_DATA_ONLY", "LOCATION"]},
        )
        assert warden.lifecycle.missing_os_permissions("walks") == [
            "android.permission.ACCESS_COARSE_LOCATION",
            "android.permission.ACCESS_FINE_LOCATION",
        ]

    @pytest.mark.asyncio
    async def test_without_bridge_nothing_is_missing(self, warden, register_plugin):
        await register_plugin("cam", ["CAMERA_ACCESS"])
        assert warden.lifecycle.missing_os_permissions("cam") == []


class TestHydrate:
    @pytest.mark.asyncio
    async def test_hydrate_restores_states(self, tmp_path):
        store = InMemoryStateStore()
        first = build_warden(
            Settings(_env_file=None), state_store=store, sinks=(), plugins_dir=tmp_path, configure_logging=False
        )
        await first.lifecycle.register("water", "Water", "1", TrustLevel.OFFICIAL, {"requested_capabilities": WATER})
        await first.lifecycle.enable("water")

        second = build_warden(
            Settings(_env_file=None), state_store=store, sinks=(), plugins_dir=tmp_path, configure_logging=False
        )
        second.registry.register("water", "Water", "1", TrustLevel.OFFICIAL, {"requested_capabilities": WATER})
        await second.lifecycle.hydrate()
        assert second.lifecycle.is_enabled("water")