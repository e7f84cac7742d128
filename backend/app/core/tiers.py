# ============================
# FILE: app/core/tiers.py
# Canonical subscription tiers and SDR level rates
# ============================
from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal


class SubscriptionTier(str, enum.Enum):
    OMEGA = "omega"
    BETA = "beta"
    ALPHA = "alpha"


@dataclass(frozen=True)
class TierLimits:
    max_sdrs: int
    rake_percentage: Decimal


# Seat model + agency rake (% of deal value billed to the agency per close):
# - omega: 1 SDR, 2%
# - beta: 2 SDRs, 1.5%
# - alpha: 5 SDRs, 1%
TIER_LIMITS: dict[SubscriptionTier, TierLimits] = {
    SubscriptionTier.OMEGA: TierLimits(max_sdrs=1, rake_percentage=Decimal("2.0")),
    SubscriptionTier.BETA: TierLimits(max_sdrs=2, rake_percentage=Decimal("1.5")),
    SubscriptionTier.ALPHA: TierLimits(max_sdrs=5, rake_percentage=Decimal("1.0")),
}

# Platform cut of the SDR's gross commission, by SDR level.
# Level 3 and above share the lowest rate.
PLATFORM_CUT_BY_LEVEL: dict[int, Decimal] = {
    1: Decimal("5"),
    2: Decimal("4"),
    3: Decimal("2.5"),
}
MAX_SDR_LEVEL = 3

# Lifetime closed-deal value needed to reach a level.
SDR_LEVEL_THRESHOLDS: tuple[tuple[Decimal, int], ...] = (
    (Decimal("100000"), 3),
    (Decimal("30000"), 2),
)


def normalize_tier(value: str | SubscriptionTier | None) -> str:
    v = getattr(value, "value", value)
    return (v or "").strip().lower()


def resolve_tier(value: str | SubscriptionTier | None) -> SubscriptionTier:
    """
    Map a stored tier string to the enum. Unknown/empty tiers fall back to omega.
    """
    t = normalize_tier(value)
    try:
        return SubscriptionTier(t)
    except ValueError:
        return SubscriptionTier.OMEGA


def get_tier_limits(tier: str | SubscriptionTier | None) -> TierLimits:
    return TIER_LIMITS[resolve_tier(tier)]


def get_sdr_limit_for_tier(tier: str | SubscriptionTier | None) -> int:
    return get_tier_limits(tier).max_sdrs


def get_rake_percentage_for_tier(tier: str | SubscriptionTier | None) -> Decimal:
    return get_tier_limits(tier).rake_percentage


def get_next_tier(tier: str | SubscriptionTier | None) -> str | None:
    """
    Returns the next tier in the upgrade path, or None if already highest/unknown.
    """
    t = normalize_tier(tier)
    return {"omega": "beta", "beta": "alpha"}.get(t)


def clamp_sdr_level(level: int | None) -> int:
    if level is None or level < 1:
        return 1
    return min(int(level), MAX_SDR_LEVEL)


def get_platform_cut_percentage(sdr_level: int | None) -> Decimal:
    """
    Step function over levels: 1 -> 5%, 2 -> 4%, >=3 -> 2.5%.
    """
    return PLATFORM_CUT_BY_LEVEL[clamp_sdr_level(sdr_level)]


def calculate_sdr_level(total_closed_value: Decimal | int | str | None) -> int:
    total = Decimal(str(total_closed_value or 0))
    for threshold, level in SDR_LEVEL_THRESHOLDS:
        if total >= threshold:
            return level
    return 1
