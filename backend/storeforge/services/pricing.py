"""
Cart pricing

Pure functions over validated cart lines and store settings. All money is
computed as Decimal and rounded half-up to 2 places; results are returned
as floats for JSON responses and DynamoDB writes.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from storeforge.models.commerce import PaymentMethod

DEFAULT_WEIGHT_KG = Decimal("0.5")

DEFAULT_SHIPPING_SETTINGS = {
    'free_shipping_threshold': 999,
    'flat_rate_national': 49,
    'cod_enabled': True,
    'cod_fee': 20,
}

_CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Decimal rounded half-up to 2 places; floats go through str() to avoid binary noise"""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def money_float(value: Any) -> float:
    return float(to_money(value))


def get_shipping_settings(store: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Store shipping settings merged over the defaults"""
    configured = ((store or {}).get('settings') or {}).get('shipping') or {}
    return {
        **DEFAULT_SHIPPING_SETTINGS,
        **{k: v for k, v in configured.items() if v is not None},
    }


def get_tax_rate(store: Optional[Dict[str, Any]]) -> Decimal:
    """Tax rate in percent; 0 unless the store configures one"""
    rate = ((store or {}).get('settings') or {}).get('tax_rate') or 0
    return Decimal(str(rate))


def calculate_subtotal(items: List[Dict[str, Any]]) -> float:
    return money_float(sum((to_money(item['subtotal']) for item in items), Decimal("0")))


def calculate_total_weight(items: List[Dict[str, Any]]) -> float:
    total = Decimal("0")
    for item in items:
        weight = item.get('weight')
        unit_weight = Decimal(str(weight)) if weight else DEFAULT_WEIGHT_KG
        total += unit_weight * item['quantity']
    return float(total)


def calculate_shipping(subtotal: Any, shipping_settings: Dict[str, Any],
                       payment_method: Optional[str] = None,
                       free_shipping: bool = False) -> float:
    """
    Flat-rate shipping.

    Free at or above the threshold (or with a free-shipping coupon); the COD
    fee is still charged for COD orders when COD is enabled.
    """
    config = {**DEFAULT_SHIPPING_SETTINGS, **(shipping_settings or {})}

    if free_shipping or to_money(subtotal) >= to_money(config['free_shipping_threshold']):
        shipping = Decimal("0")
    else:
        shipping = to_money(config['flat_rate_national'])

    if _value(payment_method) == PaymentMethod.COD.value and config['cod_enabled'] and config['cod_fee']:
        shipping += to_money(config['cod_fee'])

    return money_float(shipping)


def calculate_tax(subtotal: Any, tax_rate: Any = 0) -> float:
    return money_float(to_money(subtotal) * Decimal(str(tax_rate or 0)) / Decimal("100"))


def calculate_cart_total(items: List[Dict[str, Any]], store: Optional[Dict[str, Any]] = None,
                         payment_method: Optional[str] = None, discount: Any = 0,
                         free_shipping: bool = False) -> Dict[str, float]:
    """
    Returns:
        Dict with subtotal, shipping, tax, discount and total, where
        total = max(0, subtotal + shipping + tax - discount)
    """
    subtotal = calculate_subtotal(items)
    shipping = (
        calculate_shipping(subtotal, get_shipping_settings(store), payment_method, free_shipping)
        if items else 0.0
    )
    tax = calculate_tax(subtotal, get_tax_rate(store))
    discount_amount = to_money(discount)

    total = to_money(subtotal) + to_money(shipping) + to_money(tax) - discount_amount
    if total < 0:
        total = Decimal("0")

    return {
        'subtotal': subtotal,
        'shipping': shipping,
        'tax': tax,
        'discount': money_float(discount_amount),
        'total': money_float(total),
    }


def calculate_savings(items: List[Dict[str, Any]]) -> float:
    """Savings against compare-at prices; lines without one save nothing"""
    total = Decimal("0")
    for item in items:
        price = to_money(item.get('unit_price'))
        compare_at = item.get('compare_at_price')
        compare_price = to_money(compare_at) if compare_at else price
        total += max(Decimal("0"), (compare_price - price) * item['quantity'])
    return money_float(total)


def qualifies_for_free_shipping(subtotal: Any, store: Optional[Dict[str, Any]] = None) -> bool:
    threshold = get_shipping_settings(store)['free_shipping_threshold']
    return to_money(subtotal) >= to_money(threshold)


def amount_to_free_shipping(subtotal: Any, store: Optional[Dict[str, Any]] = None) -> float:
    threshold = get_shipping_settings(store)['free_shipping_threshold']
    return money_float(max(Decimal("0"), to_money(threshold) - to_money(subtotal)))


def _value(enum_or_str: Any) -> Optional[str]:
    return getattr(enum_or_str, 'value', enum_or_str)
