"""
Dutch VAT (BTW) arithmetic.

All prices are integer cents. Every rounding step is round-half-up
to the nearest cent.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum


class VatRate(str, Enum):
    STANDARD_21 = "STANDARD_21"
    REDUCED_9 = "REDUCED_9"
    EXEMPT = "EXEMPT"


# Whole percentages keep the arithmetic exact in Decimal.
VAT_RATE_PERCENTAGES: dict[VatRate, int] = {
    VatRate.STANDARD_21: 21,
    VatRate.REDUCED_9: 9,
    VatRate.EXEMPT: 0,
}

VAT_RATE_LABELS: dict[VatRate, str] = {
    VatRate.STANDARD_21: "21% (standaard tarief)",
    VatRate.REDUCED_9: "9% (verlaagd tarief)",
    VatRate.EXEMPT: "0% (vrijgesteld)",
}


@dataclass(frozen=True)
class PriceBreakdown:
    price_incl_vat: int
    price_excl_vat: int
    vat_amount: int
    vat_rate: VatRate


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _ensure_non_negative(amount: int) -> None:
    if amount < 0:
        raise ValueError(f"Amount must be non-negative cents, got {amount}")


def calc_vat_from_inclusive(price_incl_vat: int, vat_rate: VatRate) -> int:
    """
    VAT contained in a VAT-inclusive price.

    calc_vat_from_inclusive(1000, VatRate.STANDARD_21) == 174
    """
    _ensure_non_negative(price_incl_vat)
    percentage = VAT_RATE_PERCENTAGES[VatRate(vat_rate)]
    if percentage == 0:
        return 0

    # vat = price * rate / (1 + rate)
    return round_half_up(
        Decimal(price_incl_vat) * percentage / (100 + percentage)
    )


def calc_price_excl_vat(price_incl_vat: int, vat_rate: VatRate) -> int:
    return price_incl_vat - calc_vat_from_inclusive(price_incl_vat, vat_rate)


def calc_vat_amount(price_excl_vat: int, vat_rate: VatRate) -> int:
    """
    VAT due on top of a VAT-exclusive price.

    calc_vat_amount(826, VatRate.STANDARD_21) == 173
    """
    _ensure_non_negative(price_excl_vat)
    percentage = VAT_RATE_PERCENTAGES[VatRate(vat_rate)]
    return round_half_up(Decimal(price_excl_vat) * percentage / 100)


def calc_price_incl_vat(price_excl_vat: int, vat_rate: VatRate) -> int:
    return price_excl_vat + calc_vat_amount(price_excl_vat, vat_rate)


def get_price_breakdown(price_incl_vat: int, vat_rate: VatRate) -> PriceBreakdown:
    vat_amount = calc_vat_from_inclusive(price_incl_vat, vat_rate)
    return PriceBreakdown(
        price_incl_vat=price_incl_vat,
        price_excl_vat=price_incl_vat - vat_amount,
        vat_amount=vat_amount,
        vat_rate=VatRate(vat_rate),
    )


def is_valid_vat_rate(value: str) -> bool:
    return value in VatRate.__members__
