"""
ledgermirror/config.py

Configuration constants and data classes for ledgermirror.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional


# Default storage location for the file backend
DEFAULT_STORAGE_DIR = Path.home() / ".ledgermirror" / "storage"

# Default owner context when no identity is bound
DEFAULT_OWNER = "anonymous"

# Governance defaults
DEFAULT_QUORUM = 127                          # Minimum unique voters
DEFAULT_VOTING_PERIOD_DAYS = 7
SECONDS_PER_DAY = 86400

# Fallback TTL for key namespaces without an explicit policy
DEFAULT_TTL_SECONDS = 10.0

# Realtime display mode never refreshes slower than this
REALTIME_MAX_TTL_SECONDS = 3.0

# Freshness windows per data class (seconds)
REFRESH_INTERVALS: Dict[str, Dict[str, float]] = {
    # Pending mining rewards
    "pending_rewards": {
        "desktop": 10.0,
        "mobile_wifi": 15.0,
        "mobile_4g": 30.0,
        "mobile_slow": 60.0,
    },
    # Protocol statistics (daily emission, multipliers)
    "protocol_stats": {"desktop": 10.0, "mobile": 20.0},
    # User token balances
    "user_balance": {"desktop": 10.0, "mobile": 15.0},
    # Mining statistics (bond power etc.)
    "mining_stats": {"desktop": 10.0, "mobile": 20.0},
    # Vesting information
    "vesting_info": {"desktop": 10.0, "mobile": 20.0},
    # Genesis Node supply, changes slowest
    "node_supply": {"desktop": 30.0, "mobile": 60.0},
    # Event-log derived read models
    "reward_history": {"desktop": 300.0, "mobile": 300.0},
    "user_index": {"desktop": 300.0, "mobile": 300.0},
    "referral_history": {"desktop": 60.0, "mobile": 60.0},
}

# Cache key namespaces mapped to the data class that governs their TTL
NAMESPACE_DATA_CLASSES: Dict[str, str] = {
    "pending_rewards": "pending_rewards",
    "protocol_stats": "protocol_stats",
    "node_balance": "user_balance",
    "user_balance": "user_balance",
    "mining_stats": "mining_stats",
    "vesting_info": "vesting_info",
    "node_supply": "node_supply",
    "reward_history": "reward_history",
    "user_index": "user_index",
    "referral_history": "referral_history",
}


class DisplayMode(Enum):
    """User-selectable refresh behaviour."""
    REALTIME = "realtime"          # Fastest refresh, most upstream load
    BALANCED = "balanced"          # Recommended intervals
    POWER_SAVE = "power_save"      # Double intervals

    @classmethod
    def from_string(cls, value: str) -> "DisplayMode":
        """Parse a mode name, accepting dashes or underscores."""
        normalized = value.strip().lower().replace("-", "_")
        for mode in cls:
            if mode.value == normalized:
                return mode
        raise ValueError(f"Unknown display mode: {value}")


class DeviceProfile(Enum):
    """Client device/network profile used to select refresh intervals."""
    DESKTOP = "desktop"
    MOBILE_WIFI = "mobile_wifi"
    MOBILE_4G = "mobile_4g"
    MOBILE_SLOW = "mobile_slow"


def base_interval(data_class: str, profile: DeviceProfile = DeviceProfile.DESKTOP) -> float:
    """
    Get the recommended refresh interval for a data class.

    Data classes without a network-specific entry fall back to their generic
    "mobile" interval for any mobile profile, and unknown mobile profiles use
    the 4G interval.

    Args:
        data_class: Key of REFRESH_INTERVALS
        profile: Device profile

    Returns:
        Interval in seconds
    """
    intervals = REFRESH_INTERVALS.get(data_class)
    if intervals is None:
        return DEFAULT_TTL_SECONDS

    if profile == DeviceProfile.DESKTOP:
        return intervals["desktop"]

    if profile.value in intervals:
        return intervals[profile.value]
    if "mobile" in intervals:
        return intervals["mobile"]
    return intervals.get("mobile_4g", intervals["desktop"])


def ttl_for(
    data_class: str,
    mode: DisplayMode = DisplayMode.BALANCED,
    profile: DeviceProfile = DeviceProfile.DESKTOP,
) -> float:
    """Get the freshness window for a data class under a display mode."""
    base = base_interval(data_class, profile)
    if mode == DisplayMode.REALTIME:
        return min(base, REALTIME_MAX_TTL_SECONDS)
    if mode == DisplayMode.POWER_SAVE:
        return base * 2
    return base


@dataclass
class TTLPolicy:
    """
    Freshness windows per cache key namespace.

    The namespace of a key is everything before its first ":".
    """
    ttls: Dict[str, float] = field(default_factory=dict)
    default_ttl: float = DEFAULT_TTL_SECONDS

    @classmethod
    def from_mode(
        cls,
        mode: DisplayMode = DisplayMode.BALANCED,
        profile: DeviceProfile = DeviceProfile.DESKTOP,
    ) -> "TTLPolicy":
        """Build a policy covering every known namespace."""
        ttls = {
            namespace: ttl_for(data_class, mode, profile)
            for namespace, data_class in NAMESPACE_DATA_CLASSES.items()
        }
        return cls(ttls=ttls)

    @staticmethod
    def namespace_of(key: str) -> str:
        return key.split(":", 1)[0]

    def ttl_for_key(self, key: str) -> float:
        return self.ttls.get(self.namespace_of(key), self.default_ttl)


@dataclass
class GovernanceConfig:
    """Governance thresholds."""
    quorum: int = DEFAULT_QUORUM
    voting_period_seconds: int = DEFAULT_VOTING_PERIOD_DAYS * SECONDS_PER_DAY

    def __post_init__(self):
        if self.quorum < 0:
            raise ValueError("quorum must be non-negative")
        if self.voting_period_seconds <= 0:
            raise ValueError("voting_period_seconds must be positive")

    @property
    def voting_period_days(self) -> float:
        return self.voting_period_seconds / SECONDS_PER_DAY


@dataclass
class ContractAddresses:
    """Deployed contract addresses the chain views read from."""
    genesis_node: str = ""
    core: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "ContractAddresses":
        return cls(
            genesis_node=data.get("GenesisNode", data.get("genesis_node", "")),
            core=data.get("IvyCore", data.get("core", "")),
        )


def resolve_storage_dir(path: Optional[str] = None) -> Path:
    """Expand a user-supplied storage directory, or use the default."""
    if path:
        return Path(path).expanduser()
    return DEFAULT_STORAGE_DIR
