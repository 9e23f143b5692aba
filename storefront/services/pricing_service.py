"""
Order charges (tax and shipping) calculation.

Order placement asks a charges calculator for tax and shipping instead of
hardcoding them. The default calculator reads the ORDER_* settings, which
all default to zero.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import NamedTuple, Optional, Sequence, Any

from flask import current_app, has_app_context

CENTS = Decimal('0.01')
ZERO = Decimal('0.00')


class OrderCharges(NamedTuple):
    """Charges added on top of the order subtotal."""
    tax: Decimal = ZERO
    shipping: Decimal = ZERO


def to_money(value: Any) -> Decimal:
    """Quantize any numeric input to two decimal places."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class ConfiguredCharges:
    """
    Flat-rate calculator.
    
    tax      = subtotal * tax_rate
    shipping = shipping_fee, or zero once subtotal reaches free_shipping_min
    """
    
    def __init__(self, tax_rate='0', shipping_fee='0', free_shipping_min: Optional[str] = None):
        self.tax_rate = Decimal(str(tax_rate))
        self.shipping_fee = to_money(shipping_fee)
        self.free_shipping_min = to_money(free_shipping_min) if free_shipping_min not in (None, '') else None
        if self.tax_rate < 0 or self.shipping_fee < 0:
            raise ValueError('Tax rate and shipping fee must be non-negative')
    
    @classmethod
    def from_config(cls, config) -> 'ConfiguredCharges':
        return cls(
            tax_rate=config.get('ORDER_TAX_RATE', '0'),
            shipping_fee=config.get('ORDER_SHIPPING_FEE', '0'),
            free_shipping_min=config.get('ORDER_FREE_SHIPPING_MIN'),
        )
    
    def calculate(self, subtotal: Decimal, lines: Sequence = ()) -> OrderCharges:
        tax = to_money(subtotal * self.tax_rate)
        if not lines or (self.free_shipping_min is not None and subtotal >= self.free_shipping_min):
            shipping = ZERO
        else:
            shipping = self.shipping_fee
        return OrderCharges(tax=tax, shipping=shipping)
    
    def __call__(self, subtotal: Decimal, lines: Sequence = ()) -> OrderCharges:
        return self.calculate(subtotal, lines)


def get_charges_calculator() -> ConfiguredCharges:
    """Calculator for the current app config, or an all-zero one outside a request."""
    if has_app_context():
        return ConfiguredCharges.from_config(current_app.config)
    return ConfiguredCharges()
