"""
Capability catalog - the calculator tools and the tier each one requires.

Every pro-gated capability declares exactly one sector.
"""

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from cortex.entitlements.tiers import Sector


class RequiredTier(str, enum.Enum):
    """Tier a capability asks for. "pro" resolves against the capability's sector."""
    FREE = "free"
    PRO = "pro"


@dataclass(frozen=True)
class Capability:
    """A tool or feature that can be gated by tier."""

    key: str
    name: str
    required_tier: RequiredTier
    sector: Sector

    def __post_init__(self) -> None:
        key = self.key.strip()
        if not key:
            raise ValueError("capability key is required")
        if not isinstance(self.required_tier, RequiredTier):
            object.__setattr__(self, "required_tier", RequiredTier(self.required_tier))
        if not isinstance(self.sector, Sector):
            raise ValueError(f"capability {key} must declare a sector")
        object.__setattr__(self, "key", key)


def _catalog(*capabilities: Capability) -> Mapping[str, Capability]:
    index = {}
    for capability in capabilities:
        if capability.key in index:
            raise ValueError(f"duplicate capability key: {capability.key}")
        index[capability.key] = capability
    return MappingProxyType(index)


CAPABILITIES: Mapping[str, Capability] = _catalog(
    Capability("budget", "Budget Planner", RequiredTier.FREE, Sector.FINANCE),
    Capability("car-affordability", "Car Affordability", RequiredTier.FREE, Sector.FINANCE),
    Capability("coast-fire", "Coast FIRE", RequiredTier.FREE, Sector.FINANCE),
    Capability("compound-interest", "Compound Interest", RequiredTier.FREE, Sector.FINANCE),
    Capability("debt-paydown", "Debt Paydown", RequiredTier.FREE, Sector.FINANCE),
    Capability("gambling-redirect", "Gambling Redirect", RequiredTier.FREE, Sector.FINANCE),
    Capability("geographic-arbitrage", "Geographic Arbitrage", RequiredTier.FREE, Sector.FINANCE),
    Capability("index-fund-visualizer", "Index Fund Visualizer", RequiredTier.FREE, Sector.FINANCE),
    Capability("net-worth", "Net Worth", RequiredTier.FREE, Sector.FINANCE),
    Capability("rent-vs-buy", "Rent vs Buy", RequiredTier.FREE, Sector.FINANCE),
    Capability("retirement-strategy", "Retirement Strategy", RequiredTier.FREE, Sector.FINANCE),
    Capability("s-corp-optimizer", "S-Corp Optimizer", RequiredTier.FREE, Sector.FINANCE),
    Capability("roth-optimizer", "Roth Optimizer", RequiredTier.PRO, Sector.FINANCE),
    Capability("s-corp-investment", "S-Corp Investment", RequiredTier.PRO, Sector.FINANCE),
)


def get_capability(key: str) -> Optional[Capability]:
    return CAPABILITIES.get(str(key).strip())


def sector_for_tool(tool_id: str, default: Sector = Sector.FINANCE) -> Sector:
    """Sector a saved scenario's quota is checked against."""
    capability = get_capability(tool_id)
    return capability.sector if capability else default
