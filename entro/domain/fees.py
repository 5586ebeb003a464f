"""
Fee calculation for orders and organizer payouts.

Service fee (paid by the buyer) = platform fixed fee + platform variable fee,
grossed-up with 21% VAT. The payment fee (payment processor) is a separate
fixed component, grossed-up independently and only charged when the event
passes payment fees on to the buyer.

Example for a EUR 50.00 order:
    platform fixed      35 + 2% of 5000 = 100  ->  135 excl. VAT
    VAT 21%             round(28.35)     =  28
    service fee                                 163
    payment fee         32 + round(6.72) =  39  (only when passed on)
"""

from dataclasses import dataclass
from decimal import Decimal

from entro.domain.vat import VatRate, calc_vat_amount, round_half_up

PLATFORM_FIXED_FEE_EXCL_VAT = 35
PLATFORM_VARIABLE_FEE_BPS = 200
PAYMENT_FEE_EXCL_VAT = 32
FEE_VAT_RATE = VatRate.STANDARD_21

BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class ServiceFeeBreakdown:
    platform_fee_excl_vat: int
    platform_fee_vat: int
    platform_fee_incl_vat: int

    @property
    def service_fee_excl_vat(self) -> int:
        return self.platform_fee_excl_vat

    @property
    def service_fee_vat(self) -> int:
        return self.platform_fee_vat

    @property
    def service_fee_incl_vat(self) -> int:
        return self.platform_fee_incl_vat


@dataclass(frozen=True)
class PaymentFeeBreakdown:
    payment_fee_excl_vat: int
    payment_fee_vat: int
    payment_fee_incl_vat: int
    payment_method: str


@dataclass(frozen=True)
class OrderFeeBreakdown:
    ticket_total: int
    service_fee: ServiceFeeBreakdown
    payment_fee: PaymentFeeBreakdown | None
    total_amount: int


@dataclass(frozen=True)
class PayoutFeeBreakdown:
    gross_revenue: int
    platform_fee: int
    overage_fee: int
    net_payout: int


def apply_bps(amount: int, fee_bps: int) -> int:
    if amount < 0 or fee_bps < 0:
        raise ValueError("Amount and basis points must be non-negative")
    return round_half_up(Decimal(amount) * fee_bps / BPS_DENOMINATOR)


def calculate_service_fee(ticket_total: int) -> ServiceFeeBreakdown:
    # Free orders carry no service fee.
    if ticket_total == 0:
        return ServiceFeeBreakdown(0, 0, 0)

    excl_vat = PLATFORM_FIXED_FEE_EXCL_VAT + apply_bps(
        ticket_total, PLATFORM_VARIABLE_FEE_BPS
    )
    vat = calc_vat_amount(excl_vat, FEE_VAT_RATE)
    return ServiceFeeBreakdown(
        platform_fee_excl_vat=excl_vat,
        platform_fee_vat=vat,
        platform_fee_incl_vat=excl_vat + vat,
    )


def calculate_payment_fee(payment_method: str = "ideal") -> PaymentFeeBreakdown:
    vat = calc_vat_amount(PAYMENT_FEE_EXCL_VAT, FEE_VAT_RATE)
    return PaymentFeeBreakdown(
        payment_fee_excl_vat=PAYMENT_FEE_EXCL_VAT,
        payment_fee_vat=vat,
        payment_fee_incl_vat=PAYMENT_FEE_EXCL_VAT + vat,
        payment_method=payment_method,
    )


def should_apply_payment_fee(pass_payment_fees_to_buyer: bool, ticket_total: int) -> bool:
    return pass_payment_fees_to_buyer and ticket_total > 0


def calculate_order_fees(
    ticket_total: int,
    pass_payment_fees_to_buyer: bool = False,
) -> OrderFeeBreakdown:
    if ticket_total < 0:
        raise ValueError("Ticket total must be non-negative cents")

    service_fee = calculate_service_fee(ticket_total)
    payment_fee = (
        calculate_payment_fee()
        if should_apply_payment_fee(pass_payment_fees_to_buyer, ticket_total)
        else None
    )

    total_amount = ticket_total + service_fee.service_fee_incl_vat
    if payment_fee is not None:
        total_amount += payment_fee.payment_fee_incl_vat

    return OrderFeeBreakdown(
        ticket_total=ticket_total,
        service_fee=service_fee,
        payment_fee=payment_fee,
        total_amount=total_amount,
    )


def calculate_platform_fee(ticket_total: int, fee_bps: int = PLATFORM_VARIABLE_FEE_BPS) -> int:
    """Platform share deducted from an organizer payout."""
    return apply_bps(ticket_total, fee_bps)


def calculate_payout_fees(
    gross_revenue: int,
    fee_bps: int = PLATFORM_VARIABLE_FEE_BPS,
    overage_fee_total: int = 0,
) -> PayoutFeeBreakdown:
    platform_fee = calculate_platform_fee(gross_revenue, fee_bps)
    net_payout = max(0, gross_revenue - platform_fee - overage_fee_total)
    return PayoutFeeBreakdown(
        gross_revenue=gross_revenue,
        platform_fee=platform_fee,
        overage_fee=overage_fee_total,
        net_payout=net_payout,
    )


def to_provider_amount(cents: int) -> str:
    """Payment providers expect euros with two decimals, e.g. "10.53"."""
    return f"{Decimal(cents) / 100:.2f}"
