"""
ledgermirror/tests/test_config.py

Tests for refresh intervals, TTL policies and governance settings.
"""

import pytest
from pathlib import Path

from ledgermirror.config import (
    DEFAULT_STORAGE_DIR,
    DEFAULT_TTL_SECONDS,
    ContractAddresses,
    DeviceProfile,
    DisplayMode,
    GovernanceConfig,
    TTLPolicy,
    base_interval,
    resolve_storage_dir,
    ttl_for,
)


class TestIntervals:
    """Recommended refresh intervals."""

    @pytest.mark.parametrize("profile,expected", [
        (DeviceProfile.DESKTOP, 10.0),
        (DeviceProfile.MOBILE_WIFI, 15.0),
        (DeviceProfile.MOBILE_4G, 30.0),
        (DeviceProfile.MOBILE_SLOW, 60.0),
    ])
    def test_pending_rewards_by_profile(self, profile, expected):
        assert base_interval("pending_rewards", profile) == expected

    def test_generic_mobile_interval(self):
        """Test data classes without network tiers use their mobile interval."""
        assert base_interval("node_supply", DeviceProfile.MOBILE_SLOW) == 60.0
        assert base_interval("user_balance", DeviceProfile.MOBILE_WIFI) == 15.0

    def test_unknown_data_class(self):
        assert base_interval("nonexistent") == DEFAULT_TTL_SECONDS

    @pytest.mark.parametrize("mode,expected", [
        (DisplayMode.REALTIME, 3.0),
        (DisplayMode.BALANCED, 30.0),
        (DisplayMode.POWER_SAVE, 60.0),
    ])
    def test_display_modes(self, mode, expected):
        """Test realtime caps the interval and power save doubles it."""
        assert ttl_for("node_supply", mode) == expected

    def test_display_mode_from_string(self):
        assert DisplayMode.from_string("Power-Save") == DisplayMode.POWER_SAVE
        assert DisplayMode.from_string(" realtime ") == DisplayMode.REALTIME
        with pytest.raises(ValueError):
            DisplayMode.from_string("turbo")


class TestTTLPolicy:
    """Per-namespace freshness windows."""

    def test_namespace_of(self):
        assert TTLPolicy.namespace_of("node_balance:0xabc") == "node_balance"
        assert TTLPolicy.namespace_of("plain") == "plain"

    def test_from_mode(self):
        """Test node balances follow the user balance interval."""
        policy = TTLPolicy.from_mode()
        assert policy.ttl_for_key("node_balance:0xabc") == 10.0
        assert policy.ttl_for_key("reward_history:0xabc") == 300.0
        assert policy.ttl_for_key("unknown:key") == DEFAULT_TTL_SECONDS

    def test_from_mode_power_save_mobile(self):
        policy = TTLPolicy.from_mode(DisplayMode.POWER_SAVE, DeviceProfile.MOBILE_4G)
        assert policy.ttl_for_key("pending_rewards:0xabc") == 60.0
        assert policy.ttl_for_key("node_balance:0xabc") == 30.0

    def test_custom_default(self):
        policy = TTLPolicy(ttls={"a": 1.0}, default_ttl=42.0)
        assert policy.ttl_for_key("a:x") == 1.0
        assert policy.ttl_for_key("b:x") == 42.0


class TestGovernanceConfig:
    """Governance thresholds."""

    def test_defaults(self):
        config = GovernanceConfig()
        assert config.quorum == 127
        assert config.voting_period_seconds == 7 * 86400
        assert config.voting_period_days == 7

    @pytest.mark.parametrize("kwargs", [
        {"quorum": -1},
        {"voting_period_seconds": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            GovernanceConfig(**kwargs)


class TestMisc:
    """Contract addresses and storage paths."""

    def test_contract_addresses_from_dict(self):
        contracts = ContractAddresses.from_dict({"GenesisNode": "0x1", "IvyCore": "0x2"})
        assert contracts == ContractAddresses(genesis_node="0x1", core="0x2")
        assert ContractAddresses.from_dict({}) == ContractAddresses()

    def test_resolve_storage_dir(self):
        assert resolve_storage_dir() == DEFAULT_STORAGE_DIR
        assert resolve_storage_dir("/tmp/mirror") == Path("/tmp/mirror")
