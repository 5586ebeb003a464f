import pytest

from entro.domain.fees import (
    apply_bps,
    calculate_order_fees,
    calculate_payout_fees,
    calculate_platform_fee,
    calculate_service_fee,
    to_provider_amount,
)
from entro.domain.vat import (
    VatRate,
    calc_price_excl_vat,
    calc_price_incl_vat,
    calc_vat_amount,
    calc_vat_from_inclusive,
    get_price_breakdown,
    is_valid_vat_rate,
)


# ---------------------
# VAT
# ---------------------

def test_vat_from_inclusive_price():
    assert calc_vat_from_inclusive(1000, VatRate.STANDARD_21) == 174
    assert calc_price_excl_vat(1000, VatRate.STANDARD_21) == 826
    assert calc_vat_from_inclusive(1000, VatRate.REDUCED_9) == 83
    assert calc_vat_from_inclusive(1000, VatRate.EXEMPT) == 0


def test_vat_on_exclusive_price():
    assert calc_vat_amount(826, VatRate.STANDARD_21) == 173
    assert calc_price_incl_vat(826, VatRate.STANDARD_21) == 999


def test_half_cent_rounds_up():
    assert calc_vat_amount(50, VatRate.STANDARD_21) == 11
    assert calc_vat_amount(250, VatRate.REDUCED_9) == 23
    assert apply_bps(25, 200) == 1
    assert calculate_platform_fee(125, 200) == 3


def test_price_breakdown_adds_up():
    breakdown = get_price_breakdown(2500, VatRate.REDUCED_9)

    assert breakdown.price_excl_vat + breakdown.vat_amount == 2500
    assert breakdown.vat_amount == 206


def test_vat_rejects_negative_amounts():
    with pytest.raises(ValueError):
        calc_vat_from_inclusive(-1, VatRate.STANDARD_21)

    with pytest.raises(ValueError):
        calc_vat_amount(-1, VatRate.REDUCED_9)


def test_vat_rate_names():
    assert is_valid_vat_rate("REDUCED_9")
    assert not is_valid_vat_rate("HIGH")


# ---------------------
# FEES
# ---------------------

def test_service_fee_for_fifty_euro():
    fee = calculate_service_fee(5000)

    assert fee.service_fee_excl_vat == 135
    assert fee.service_fee_vat == 28
    assert fee.service_fee_incl_vat == 163


def test_order_fees_without_payment_fee():
    fees = calculate_order_fees(5000)

    assert fees.payment_fee is None
    assert fees.total_amount == 5163


def test_order_fees_with_payment_fee_passed_on():
    fees = calculate_order_fees(5000, pass_payment_fees_to_buyer=True)

    assert fees.payment_fee.payment_fee_incl_vat == 39
    assert fees.total_amount == 5202


def test_free_order_has_no_fees():
    fees = calculate_order_fees(0, pass_payment_fees_to_buyer=True)

    assert fees.service_fee.service_fee_incl_vat == 0
    assert fees.payment_fee is None
    assert fees.total_amount == 0


def test_payout_deducts_platform_fee_and_overage():
    payout = calculate_payout_fees(100_000, fee_bps=400, overage_fee_total=80)

    assert payout.platform_fee == 4000
    assert payout.net_payout == 95_920


def test_payout_never_negative():
    assert calculate_payout_fees(100, fee_bps=200, overage_fee_total=500).net_payout == 0


def test_provider_amount_format():
    assert to_provider_amount(5163) == "51.63"
    assert to_provider_amount(5) == "0.05"
    assert to_provider_amount(0) == "0.00"
