"""
Ledger Calculation Utilities

Pure functions for payment classification and balance math.
All amounts are Decimal, quantized to paisa (two places).
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import NamedTuple

from aqua_ledger.utils.exceptions import InvalidRequest

ZERO = Decimal('0.00')
CENT = Decimal('0.01')
# Largest amount a Numeric(12, 2) column holds
MAX_AMOUNT = Decimal('9999999999.99')


class PaymentStatus:
    """Payment status constants"""
    NOT_PAID = 'NOT_PAID'
    PARTIAL = 'PARTIAL'
    PAID = 'PAID'
    OVERPAID = 'OVERPAID'
    REFUND = 'REFUND'

    ALL = (NOT_PAID, PARTIAL, PAID, OVERPAID, REFUND)


class PaymentMethod:
    """Accepted payment methods"""
    CASH = 'CASH'
    CARD = 'CARD'
    BANK_TRANSFER = 'BANK_TRANSFER'
    EASYPAISA = 'EASYPAISA'
    JAZZCASH = 'JAZZCASH'
    CREDIT = 'CREDIT'

    ALL = (CASH, CARD, BANK_TRANSFER, EASYPAISA, JAZZCASH, CREDIT)


class Settlement(NamedTuple):
    """Outcome of applying a payment against an amount due"""
    payment_status: str
    receivable: Decimal
    payable: Decimal


def to_money(value, field='amount'):
    """
    Convert a user supplied value to a two-place Decimal.

    Floats go through str() so binary rounding noise never reaches the ledger.

    Raises:
        InvalidRequest: value is missing, not numeric or out of range
    """
    if value is None or isinstance(value, bool):
        raise InvalidRequest(f'{field} is required', field=field)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        if not amount.is_finite():
            raise InvalidRequest(f'{field} must be a finite number', field=field)
        amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        raise InvalidRequest(f'{field} must be a number', field=field)
    if abs(amount) > MAX_AMOUNT:
        raise InvalidRequest(f'{field} exceeds the maximum of {MAX_AMOUNT}', field=field)
    return amount


def classify_payment(total, paid):
    """
    Classify a payment against a total.

    Args:
        total: Amount due
        paid: Amount paid (negative means money handed back)

    Returns:
        str: One of PaymentStatus values
    """
    if paid == 0:
        return PaymentStatus.NOT_PAID
    if paid < 0:
        return PaymentStatus.REFUND
    if paid < total:
        return PaymentStatus.PARTIAL
    if paid == total:
        return PaymentStatus.PAID
    return PaymentStatus.OVERPAID


def split_remaining(remaining):
    """Split a remaining amount into (receivable, payable)"""
    receivable = remaining if remaining > 0 else ZERO
    payable = -remaining if remaining < 0 else ZERO
    return receivable, payable


def settle(total, paid):
    """
    Settle a payment against an order total.

    Returns:
        Settlement: payment status with receivable/payable split
    """
    total = to_money(total, 'total')
    paid = to_money(paid, 'paid')
    receivable, payable = split_remaining(total - paid)
    return Settlement(classify_payment(total, paid), receivable, payable)


def settle_balance(balance, paid):
    """
    Settle a bill-clearing payment against a customer's running balance.

    The payment is classified against the balance magnitude. A positive
    balance is money the customer owes; a negative one is money the business
    owes, so the remaining amount becomes payable and an over-refund becomes
    receivable.

    Returns:
        tuple: (Settlement, adjusted_paid) where adjusted_paid is the amount to
        subtract from the balance
    """
    balance = to_money(balance, 'balance')
    paid = to_money(paid, 'paid')
    magnitude = abs(balance)
    status = classify_payment(magnitude, paid)
    remaining = magnitude - paid

    if balance > 0:
        receivable, payable = split_remaining(remaining)
        adjusted_paid = paid
    else:
        payable, receivable = split_remaining(remaining)
        adjusted_paid = -paid

    return Settlement(status, receivable, payable), adjusted_paid


def order_amount(number_of_bottles, unit_price):
    """Charge for a single order"""
    return to_money(Decimal(number_of_bottles) * to_money(unit_price, 'unit_price'), 'current_order_amount')


def balance_after_payment(balance, paid):
    """Customer balance after a payment is taken"""
    return to_money(to_money(balance, 'balance') - to_money(paid, 'paid'), 'balance')
