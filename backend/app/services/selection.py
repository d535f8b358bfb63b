"""
Selection signatures and cart line matching.

A signature identifies "which food with which modifiers" and decides whether
an add-to-cart request merges into an existing line or starts a new one.
"""
from typing import Iterable, List, Optional, Sequence

from fastapi import HTTPException, status

from app.models.cart import CartLine, SelectedOption
from app.models.food import FoodOption
from app.schemas.cart import SelectionInput


def _signature_part(entries: Iterable[SelectedOption], ignore_quantity: bool) -> str:
    pairs = []
    for entry in entries:
        quantity = 1 if ignore_quantity else (entry.quantity or 1)
        pairs.append(f"{entry.id}:{quantity}")
    return ",".join(sorted(pairs))


def build_selection_signature(
    food_id: str,
    customizations: Iterable[SelectedOption] = (),
    add_ons: Iterable[SelectedOption] = (),
    ignore_customization_quantity: bool = False,
    ignore_add_on_quantity: bool = False
) -> str:
    """
    Build the canonical `food|customizations|add_ons` signature.

    Entries are sorted `id:quantity` pairs. A missing or zero quantity counts as 1.
    """
    return "|".join([
        str(food_id),
        _signature_part(customizations, ignore_customization_quantity),
        _signature_part(add_ons, ignore_add_on_quantity)
    ])


def line_signature(line: CartLine) -> str:
    """Signature of a stored cart line."""
    return build_selection_signature(
        line.food_id,
        line.customizations,
        line.add_ons,
        ignore_customization_quantity=line.uses_customization_price,
        ignore_add_on_quantity=True
    )


def find_matching_line(
    lines: Sequence[CartLine],
    food_id: str,
    signature: str,
    add_on_removal_ids: Optional[Sequence[str]] = None,
    removals_only: bool = False
) -> Optional[CartLine]:
    """
    Find the line an add-to-cart request applies to.

    Order: exact signature, then (for requests that only remove add-ons) a line
    of the same food holding one of the targeted add-ons, then any line of the
    same food.
    """
    for line in lines:
        if line_signature(line) == signature:
            return line

    same_food = [line for line in lines if line.food_id == str(food_id)]

    if removals_only and add_on_removal_ids:
        targeted = set(add_on_removal_ids)
        for line in same_food:
            if any(add_on.id in targeted for add_on in line.add_ons):
                return line

    return same_food[0] if same_food else None


def resolve_selection_inputs(
    definitions: Sequence[FoodOption],
    inputs: Optional[Sequence[SelectionInput]],
    label: str
) -> List[SelectedOption]:
    """
    Resolve requested ids against the options defined on the food.

    Quantities default to 1. Quantity 0 entries are kept, they mark removals.

    Raises:
        HTTPException: 400 if any id is not defined on the food
    """
    options_by_id = {option.id: option for option in definitions}
    resolved = []

    for selection in inputs or []:
        option = options_by_id.get(selection.id)
        if option is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid {label} selected"
            )
        resolved.append(SelectedOption(
            id=option.id,
            name=option.name,
            price=option.price,
            quantity=1 if selection.quantity is None else selection.quantity
        ))

    return resolved
