"""
Tests for the capability catalog.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from warden.security.capabilities import (
    Capability,
    RiskTier,
    description_of,
    highest_risk,
    os_permissions_of,
    parse_capabilities,
    risk_of,
    sorted_by_risk,
)


class TestCatalogTotality:
    @pytest.mark.parametrize("capability", list(Capability))
    def test_every_capability_has_risk_and_description(self, capability):
        assert isinstance(risk_of(capability), RiskTier)
        assert description_of(capability)
        assert isinstance(os_permissions_of(capability), list)

    def test_capability_values_match_names(self):
        for capability in Capability:
            assert capability.value == capability.name

    def test_lookup_accepts_plain_strings(self):
        assert risk_of("READ_ALL_DATA") is RiskTier.HIGH


class TestRiskTable:
    @pytest.mark.parametrize(
        "capability, tier",
        [
            (Capability.COLLECT_DATA, RiskTier.LOW),
            (Capability.READ_OWN_DATA, RiskTier.LOW),
            (Capability.LOCAL_STORAGE, RiskTier.LOW),
            (Capability.NETWORK_ACCESS, RiskTier.MEDIUM),
            (Capability.SHOW_NOTIFICATIONS, RiskTier.MEDIUM),
            (Capability.READ_ALL_DATA, RiskTier.HIGH),
            (Capability.DELETE_DATA, RiskTier.HIGH),
            (Capability.EXPORT_DATA, RiskTier.HIGH),
            (Capability.CAMERA_ACCESS, RiskTier.CRITICAL),
            (Capability.CLOUD_STORAGE, RiskTier.CRITICAL),
        ],
    )
    def test_known_tiers(self, capability, tier):
        assert risk_of(capability) is tier

    def test_tiers_are_ordered(self):
        assert RiskTier.LOW < RiskTier.MEDIUM < RiskTier.HIGH < RiskTier.CRITICAL
        assert RiskTier.CRITICAL >= RiskTier.HIGH
        assert not RiskTier.MEDIUM >= RiskTier.HIGH


class TestOsPermissions:
    def test_capability_without_os_permission_maps_to_empty_list(self):
        assert os_permissions_of(Capability.COLLECT_DATA) == []

    def test_location_needs_fine_and_coarse(self):
        assert os_permissions_of(Capability.ACCESS_LOCATION) == [
            "android.permission.ACCESS_FINE_LOCATION",
            "android.permission.ACCESS_COARSE_LOCATION",
        ]

    def test_returned_list_is_a_copy(self):
        perms = os_permissions_of(Capability.CAMERA_ACCESS)
        perms.append("mutated")
        assert os_permissions_of(Capability.CAMERA_ACCESS) == ["android.permission.CAMERA"]


class TestOrdering:
    def test_sorted_by_risk_puts_highest_first_then_name(self):
        ordered = sorted_by_risk(
            [Capability.COLLECT_DATA, Capability.NETWORK_ACCESS, Capability.DELETE_DATA, Capability.CAMERA_ACCESS]
        )
        assert ordered == [
            Capability.CAMERA_ACCESS,
            Capability.DELETE_DATA,
            Capability.NETWORK_ACCESS,
            Capability.COLLECT_DATA,
        ]

    def test_highest_risk_of_empty_set_is_none(self):
        assert highest_risk([]) is None

    @given(st.sets(st.sampled_from(list(Capability)), min_size=1))
    def test_highest_risk_is_at_least_every_member(self, capabilities):
        top = highest_risk(capabilities)
        assert top in capabilities
        assert all(risk_of(top) >= risk_of(c) for c in capabilities)


class TestParse:
    def test_parse_is_case_insensitive(self):
        assert parse_capabilities(["collect_data", " Read_Own_Data "]) == frozenset(
            {Capability.COLLECT_DATA, Capability.READ_OWN_DATA}
        )

    def test_parse_rejects_unknown_names(self):
        with pytest.raises(ValueError, match="Unknown capability 'TELEPORT'"):
            parse_capabilities(["TELEPORT"])
