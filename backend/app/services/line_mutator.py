"""
Applies an add-to-cart request to the lines of a cart.

Everything here works on in-memory models. Loading, totals and persistence
are handled by the cart service.
"""
from datetime import datetime
from typing import List, Optional, Sequence

from fastapi import HTTPException, status

from app.core.config import settings
from app.models.cart import Cart, CartLine, Decrement, Increment, Remove, SelectedOption, SetTo
from app.models.food import Food
from app.schemas.cart import AddToCartRequest, SelectionInput
from app.services.pricing import calculate_food_pricing
from app.services.selection import (
    build_selection_signature,
    find_matching_line,
    resolve_selection_inputs
)
from app.utils.helpers import round_money
from app.utils.service_type import normalize_service_type


def merge_selections(
    existing: Sequence[SelectedOption],
    incoming: Sequence[SelectedOption],
    accumulate: bool = False
) -> List[SelectedOption]:
    """
    Ordered merge of two selection lists keyed by id.

    Existing entries keep their position and new ids are appended. For an id
    present on both sides the incoming quantity replaces the stored one, or is
    added to it when `accumulate` is set.
    """
    merged = [entry.model_copy() for entry in existing]
    index_by_id = {entry.id: position for position, entry in enumerate(merged)}

    for entry in incoming:
        position = index_by_id.get(entry.id)
        if position is None:
            index_by_id[entry.id] = len(merged)
            merged.append(entry.model_copy())
        elif accumulate:
            merged[position].quantity += entry.quantity
        else:
            merged[position].quantity = entry.quantity

    return merged


def remove_selections(existing: Sequence[SelectedOption], ids: Sequence[str]) -> List[SelectedOption]:
    """Drop the entries whose id is in `ids`."""
    removal_ids = set(ids)
    return [entry for entry in existing if entry.id not in removal_ids]


def calculate_selection_price(selections: Sequence[SelectedOption]) -> float:
    """Sum of price x quantity over selections."""
    return round_money(sum(entry.price * (entry.quantity or 1) for entry in selections))


def is_customization_removal_request(inputs: Optional[Sequence[SelectionInput]]) -> bool:
    """A request removes customizations when every submitted entry has quantity 0."""
    if not inputs:
        return False
    return all(selection.quantity == 0 for selection in inputs)


def packing_charge_for(food: Food, service_type: str) -> float:
    """Per-unit packing charge, only for the configured service types."""
    if service_type in settings.PACKING_CHARGE_SERVICE_TYPES:
        return float(food.packing_charges or 0)
    return 0.0


def check_food_available(food: Food, service_type: str):
    """
    Raises:
        HTTPException: 400 if the food cannot be ordered for the service type
    """
    order_types = [normalize_service_type(order_type) or order_type for order_type in food.order_types]
    if service_type not in order_types:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Food item is not available for {service_type}"
        )


def check_cart_constraints(cart: Cart, food: Food, service_type: str):
    """
    Vendor, service type and prebook locks of a cart that already has lines.

    Raises:
        HTTPException: 409 on any conflict
    """
    if not cart.items:
        return

    if cart.vendor_id and cart.vendor_id != str(food.vendor_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cart contains items from another vendor. Please clear cart to switch vendors."
        )

    cart_service_type = normalize_service_type(cart.service_type) or cart.service_type
    if cart_service_type != service_type:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="You cannot mix different service types in one cart"
        )

    has_prebook = any(line.is_prebook for line in cart.items)
    has_regular = any(not line.is_prebook for line in cart.items)

    if food.is_prebook and has_regular:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cart already contains regular items. Remove them before adding a prebook item."
        )
    if not food.is_prebook and has_prebook:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cart already contains a prebook item. Remove it before adding regular items."
        )


def check_single_prebook(cart: Cart, food: Food, matched: Optional[CartLine]):
    """
    Raises:
        HTTPException: 409 if another prebook line is already in the cart
    """
    if not food.is_prebook:
        return

    for line in cart.items:
        if line.is_prebook and (matched is None or line.id != matched.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Only one prebook item can exist in the cart at a time. "
                       "Remove the existing prebook item to add another."
            )


def _check_quantity_limit(quantity: int):
    if quantity > settings.MAX_ITEM_QUANTITY:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Quantity cannot exceed {settings.MAX_ITEM_QUANTITY}"
        )


def _resolve_customizations(food: Food, request: AddToCartRequest, removal_requested: bool) -> List[SelectedOption]:
    inputs = request.customizations or []

    if food.uses_customization_price and not removal_requested:
        if not inputs:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="This food requires selecting at least one customization option."
            )
        if any(selection.quantity is None for selection in inputs):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Customization id and quantity are required for this food."
            )

    resolved = resolve_selection_inputs(food.customizations, inputs, "customization")

    if food.uses_customization_price and not removal_requested:
        if not any(entry.quantity > 0 for entry in resolved):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Valid customization selection is required for this food."
            )

    return resolved


def _build_line(
    food: Food,
    quantity: int,
    customizations: List[SelectedOption],
    add_ons: List[SelectedOption],
    packing_charge: float,
    notes: Optional[str],
    reference: Optional[datetime]
) -> CartLine:
    line = CartLine(
        food_id=str(food.id),
        food_name=food.food_name,
        food_image=food.food_image,
        food_type=food.type,
        quantity=quantity,
        base_price=food.base_price,
        uses_customization_price=food.uses_customization_price,
        customizations=customizations,
        add_ons=add_ons,
        is_prebook=food.is_prebook,
        packing_charge=packing_charge,
        notes=notes
    )
    apply_line_pricing(line, food, reference)
    return line


def apply_line_pricing(line: CartLine, food: Food, reference: Optional[datetime] = None):
    """Refresh the price fields of a line from its food."""
    line.base_price = food.base_price
    line.uses_customization_price = food.uses_customization_price

    if line.uses_customization_price:
        line.discount_price = None
        line.effective_price = calculate_selection_price(line.customizations)
        return

    pricing = calculate_food_pricing(food, reference)
    line.discount_price = pricing["discount_price"]
    line.effective_price = pricing["final_price"]


def apply_add_item(
    cart: Cart,
    food: Food,
    request: AddToCartRequest,
    reference: Optional[datetime] = None
) -> Optional[CartLine]:
    """
    Apply an add-to-cart request to the cart lines.

    `request.service_type` is already normalized. Returns the touched line,
    or None when the request removed it.

    Raises:
        HTTPException: 400 for invalid selections, 404 when the line or entry
            to change does not exist, 409 when a cart lock is violated
    """
    service_type = request.service_type
    operation = request.quantity

    check_food_available(food, service_type)
    check_cart_constraints(cart, food, service_type)

    customization_removal = (
        request.customizations is not None
        and is_customization_removal_request(request.customizations)
    )
    customizations = _resolve_customizations(food, request, customization_removal)
    selected_customizations = [entry for entry in customizations if entry.quantity > 0]

    add_ons = resolve_selection_inputs(food.add_ons, request.add_ons, "add-on")
    add_on_removals = [entry.id for entry in add_ons if entry.quantity == 0]
    add_on_additions = [entry for entry in add_ons if entry.quantity > 0]

    signature = build_selection_signature(
        food.id,
        customizations if customization_removal else selected_customizations,
        add_on_additions,
        ignore_customization_quantity=food.uses_customization_price,
        ignore_add_on_quantity=True
    )
    line = find_matching_line(
        cart.items,
        food.id,
        signature,
        add_on_removal_ids=add_on_removals,
        removals_only=bool(add_on_removals) and not add_on_additions
    )

    packing_charge = packing_charge_for(food, service_type)

    if add_on_removals:
        if line is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cannot remove add-ons. Cart item not found."
            )
        remaining = remove_selections(line.add_ons, add_on_removals)
        if len(remaining) == len(line.add_ons):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cannot remove add-ons. Selected add-ons were not found in cart item."
            )
        line.add_ons = remaining

    check_single_prebook(cart, food, line)

    if customization_removal:
        if line is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cannot remove customization. Cart item not found."
            )
        remaining = remove_selections(line.customizations, [entry.id for entry in customizations])
        if len(remaining) == len(line.customizations):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cannot remove customization. Selected customization was not found in cart item."
            )
        line.customizations = remaining

        if not remaining and line.uses_customization_price:
            cart.remove_line(line.id)
            return None
        if not isinstance(operation, Remove):
            apply_line_pricing(line, food, reference)
            return line

    if isinstance(operation, Remove):
        if line is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cannot remove. Cart item not found."
            )
        cart.remove_line(line.id)
        return None

    if line is None:
        if isinstance(operation, Decrement):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cannot decrement. Cart item not found."
            )
        quantity = operation.quantity if isinstance(operation, SetTo) else 1
        if food.uses_customization_price:
            quantity = 1

        line = _build_line(
            food,
            quantity,
            selected_customizations,
            add_on_additions,
            packing_charge,
            request.notes,
            reference
        )
        cart.items.append(line)
        return line

    # Merge selections into the existing line
    if selected_customizations:
        line.customizations = merge_selections(line.customizations, selected_customizations)

    if add_on_additions:
        accumulate = not line.uses_customization_price and not request.update_add_ons
        line.add_ons = merge_selections(line.add_ons, add_on_additions, accumulate=accumulate)

    line.packing_charge = packing_charge
    line.is_prebook = food.is_prebook
    if request.notes is not None:
        line.notes = request.notes
    apply_line_pricing(line, food, reference)

    # Customization-priced lines stay at quantity 1
    if line.uses_customization_price:
        if isinstance(operation, Decrement):
            cart.remove_line(line.id)
            return None
        line.quantity = 1
        return line

    if isinstance(operation, SetTo):
        line.quantity = operation.quantity
    elif isinstance(operation, Increment):
        _check_quantity_limit(line.quantity + 1)
        line.quantity += 1
    elif isinstance(operation, Decrement):
        if line.quantity <= 1:
            cart.remove_line(line.id)
            return None
        line.quantity -= 1

    return line
