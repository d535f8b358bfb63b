"""Cart money fields, always recomputed from the lines."""
from datetime import datetime
from typing import Sequence

from app.models.cart import Cart, CartLine, CartTotals
from app.utils.helpers import round_money


def _selection_total(selections) -> float:
    return sum(entry.price * (entry.quantity or 1) for entry in selections)


def refresh_line_total(line: CartLine) -> float:
    """Recompute effective_price (customization-priced lines) and item_total."""
    if line.uses_customization_price:
        line.effective_price = round_money(_selection_total(line.customizations))
        customization_contribution = 0.0
    else:
        customization_contribution = _selection_total(line.customizations)

    add_on_order_total = _selection_total(line.add_ons)
    unit_total = (line.effective_price or 0) + customization_contribution + (line.packing_charge or 0)

    line.item_total = round_money(unit_total * line.quantity + add_on_order_total)
    return line.item_total


def calculate_totals(
    items: Sequence[CartLine],
    gst_percentage: float = 0,
    coupon_discount: float = 0
) -> CartTotals:
    """
    Aggregate totals for a list of lines.

    Add-ons are charged once per line, everything else scales with quantity.
    Tax is applied on the subtotal and the coupon after tax.
    """
    sub_total = 0.0
    add_on_total = 0.0
    customization_total = 0.0
    packing_charge_total = 0.0
    discount_total = 0.0
    item_count = 0

    for line in items:
        sub_total += refresh_line_total(line)
        add_on_total += _selection_total(line.add_ons)
        packing_charge_total += (line.packing_charge or 0) * line.quantity
        item_count += line.quantity

        if not line.uses_customization_price:
            customization_total += _selection_total(line.customizations) * line.quantity
            discount_total += max(0.0, line.base_price - line.effective_price) * line.quantity

    gst_percentage = float(gst_percentage or 0)
    coupon_discount = float(coupon_discount or 0)
    tax_amount = sub_total * gst_percentage / 100 if gst_percentage > 0 else 0.0

    return CartTotals(
        sub_total=round_money(sub_total),
        add_on_total=round_money(add_on_total),
        customization_total=round_money(customization_total),
        packing_charge_total=round_money(packing_charge_total),
        discount_total=round_money(discount_total),
        coupon_discount=round_money(coupon_discount),
        tax_amount=round_money(tax_amount),
        tax_percentage=gst_percentage,
        grand_total=round_money(max(0.0, sub_total + tax_amount - coupon_discount)),
        item_count=item_count
    )


def order_amount(cart: Cart) -> float:
    """Amount a coupon is validated against: subtotal plus tax, before any coupon."""
    totals = calculate_totals(cart.items, cart.gst_percentage)
    return round_money(totals.sub_total + totals.tax_amount)


def recalculate_cart(cart: Cart) -> CartTotals:
    """Recompute every derived field of a cart in place."""
    cart.is_prebook_cart = any(line.is_prebook for line in cart.items)
    cart.totals = calculate_totals(cart.items, cart.gst_percentage, cart.coupon_discount)
    cart.last_updated_at = datetime.utcnow()
    return cart.totals
