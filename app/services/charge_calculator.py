from dataclasses import dataclass

from app.core.errors import PaymentValidationError
from app.models.rent_payments import FeePayer


@dataclass(frozen=True)
class ChargeBreakdown:
    charged_amount: int
    fee_amount: int
    net_amount: int


def parse_fee_payer(value) -> FeePayer:
    try:
        return FeePayer(value)
    except ValueError:
        allowed = ", ".join(m.value for m in FeePayer)
        raise PaymentValidationError(f"Unknown fee payer '{value}'. Expected one of: {allowed}")


def compute_charge(amount: int, fee: int, fee_payer) -> ChargeBreakdown:
    """
    Split the processor fee between landlord and tenant.

    For every mode charged_amount - net_amount == fee_amount exactly.
    Split mode puts the rounded-up half of the fee on the tenant.

    Raises:
        PaymentValidationError for an unknown mode, or when the landlord's
        share of the fee exceeds the rent (net would go negative).
    """
    mode = parse_fee_payer(fee_payer)
    if amount < 0 or fee < 0:
        raise PaymentValidationError("amount and fee must be non-negative")

    if mode is FeePayer.LANDLORD:
        charged, net = amount, amount - fee
    elif mode is FeePayer.TENANT:
        charged, net = amount + fee, amount
    else:
        tenant_share = (fee + 1) // 2
        charged, net = amount + tenant_share, amount - (fee - tenant_share)

    if net < 0:
        raise PaymentValidationError(
            f"Amount {amount} is too small to cover the {fee} processing fee"
        )
    return ChargeBreakdown(charged_amount=charged, fee_amount=fee, net_amount=net)
