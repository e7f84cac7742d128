# app/core/settlement.py
"""
Commission settlement policy.

Splits a closed deal's value between the agency rake (platform fee billed to
the agency), the SDR's gross commission, the platform's cut of that
commission (by SDR level) and the SDR's net payout.

Percent inputs are percent numbers as stored on jobs and workspaces
(``10`` means 10%). All arithmetic is Decimal; amounts are only quantized to
cents by ``SettlementBreakdown.rounded()`` right before persistence or
transfer.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from app.core.errors import InvalidSettlementInput
from app.core.tiers import get_platform_cut_percentage

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


def to_decimal(value: Any, *, field: str = "value") -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise InvalidSettlementInput(f"{field} must be numeric", field=field)
    try:
        # str() first so floats like 0.1 don't carry binary noise in.
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidSettlementInput(f"{field} must be numeric", field=field) from e


def percent_to_rate(percentage: Any, *, field: str = "percentage") -> Decimal:
    return to_decimal(percentage, field=field) / HUNDRED


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Cents for the payment provider."""
    return int((quantize_money(amount) * HUNDRED).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class SettlementBreakdown:
    deal_value: Decimal
    agency_rake_percentage: Decimal
    agency_rake_amount: Decimal
    commission_percentage: Decimal
    sdr_gross_commission: Decimal
    platform_cut_percentage: Decimal
    platform_cut_amount: Decimal
    sdr_net_payout: Decimal
    is_agency_self_closed: bool

    @property
    def total_agency_owed(self) -> Decimal:
        return self.agency_rake_amount + self.sdr_gross_commission

    def rounded(self) -> "SettlementBreakdown":
        """
        Quantize money to cents. Net payout is re-derived from the rounded
        gross and cut so gross == cut + net holds exactly in cents.
        """
        gross = quantize_money(self.sdr_gross_commission)
        cut = quantize_money(self.platform_cut_amount)
        return replace(
            self,
            deal_value=quantize_money(self.deal_value),
            agency_rake_amount=quantize_money(self.agency_rake_amount),
            sdr_gross_commission=gross,
            platform_cut_amount=cut,
            sdr_net_payout=gross - cut,
        )

    def as_dict(self) -> dict[str, str | bool]:
        return {
            "deal_value": str(self.deal_value),
            "agency_rake_percentage": str(self.agency_rake_percentage),
            "agency_rake_amount": str(self.agency_rake_amount),
            "commission_percentage": str(self.commission_percentage),
            "sdr_gross_commission": str(self.sdr_gross_commission),
            "platform_cut_percentage": str(self.platform_cut_percentage),
            "platform_cut_amount": str(self.platform_cut_amount),
            "sdr_net_payout": str(self.sdr_net_payout),
            "total_agency_owed": str(self.total_agency_owed),
            "is_agency_self_closed": self.is_agency_self_closed,
        }


def calculate_settlement(
    *,
    deal_value: Any,
    commission_percentage: Any,
    sdr_level: int | None,
    agency_rake_percentage: Any,
    is_agency_self_closed: bool,
) -> SettlementBreakdown:
    """
    Pure settlement function. Callers validate ranges (deal_value >= 0,
    percentages within 0..100); this only rejects non-numeric input.
    """
    value = to_decimal(deal_value, field="deal_value")
    rake_pct = to_decimal(agency_rake_percentage, field="agency_rake_percentage")
    agency_rake = value * rake_pct / HUNDRED

    if is_agency_self_closed:
        return SettlementBreakdown(
            deal_value=value,
            agency_rake_percentage=rake_pct,
            agency_rake_amount=agency_rake,
            commission_percentage=ZERO,
            sdr_gross_commission=ZERO,
            platform_cut_percentage=ZERO,
            platform_cut_amount=ZERO,
            sdr_net_payout=ZERO,
            is_agency_self_closed=True,
        )

    commission_pct = to_decimal(commission_percentage, field="commission_percentage")
    sdr_gross = value * commission_pct / HUNDRED
    cut_pct = get_platform_cut_percentage(sdr_level)
    platform_cut = sdr_gross * cut_pct / HUNDRED

    return SettlementBreakdown(
        deal_value=value,
        agency_rake_percentage=rake_pct,
        agency_rake_amount=agency_rake,
        commission_percentage=commission_pct,
        sdr_gross_commission=sdr_gross,
        platform_cut_percentage=cut_pct,
        platform_cut_amount=platform_cut,
        sdr_net_payout=sdr_gross - platform_cut,
        is_agency_self_closed=False,
    )
