"""
Food pricing: static discount plus weekday/time-window day offers.

Used both when pricing a cart line and when showing a food in the catalog,
so everything here is pure and takes the reference instant as input.
"""
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from app.core.config import settings
from app.models.food import DayOffer, DiscountType, Food
from app.utils.helpers import round_money

DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def parse_time_to_minutes(time_string: Optional[str]) -> Optional[int]:
    """
    Parse "HH:MM" or "hh:mm AM/PM" into minutes since midnight.

    Returns None for anything that does not parse.
    """
    if not time_string:
        return None

    cleaned = time_string.strip().upper()
    period = None
    if cleaned.endswith("AM") or cleaned.endswith("PM"):
        period = cleaned[-2:]
        cleaned = cleaned[:-2].strip()

    parts = cleaned.split(":")
    try:
        hours = int(parts[0])
        minutes = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    except ValueError:
        return None

    if period == "PM" and hours != 12:
        hours += 12
    elif period == "AM" and hours == 12:
        hours = 0

    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return None

    return hours * 60 + minutes


def is_time_between(current_minutes: int, start_time: Optional[str], end_time: Optional[str]) -> bool:
    """
    Check whether a time of day falls in the [start, end) window.

    An end earlier than the start spans midnight.
    """
    start_minutes = parse_time_to_minutes(start_time)
    end_minutes = parse_time_to_minutes(end_time)

    if start_minutes is None or end_minutes is None:
        return False

    if end_minutes < start_minutes:
        return current_minutes >= start_minutes or current_minutes < end_minutes

    return start_minutes <= current_minutes < end_minutes


def resolve_date_context(reference: Optional[datetime] = None) -> Tuple[str, int]:
    """Weekday name and minutes since midnight for a reference instant."""
    offer_zone = ZoneInfo(settings.OFFER_TIMEZONE)
    if reference is None:
        reference = datetime.now(offer_zone)
    elif reference.tzinfo is not None:
        reference = reference.astimezone(offer_zone)

    return DAYS[reference.weekday()], reference.hour * 60 + reference.minute


def _offer_window_is_open(offer: DayOffer, current_minutes: int) -> bool:
    # Offers without a complete window run all day
    if offer.start_time and offer.end_time:
        return is_time_between(current_minutes, offer.start_time, offer.end_time)
    return True


def resolve_active_offer(
    day_offers: Sequence[DayOffer],
    current_day: str,
    current_minutes: int
) -> Tuple[Optional[DayOffer], bool]:
    """
    Pick the day offer that applies at the reference time.

    Returns (offer, is_currently_active). When offers exist for the day but
    none is open at this time, the first one is returned flagged inactive.
    """
    day_matching_offers = [
        offer for offer in day_offers or []
        if offer.is_active and current_day in offer.active_days
    ]

    if not day_matching_offers:
        return None, False

    for offer in day_matching_offers:
        if _offer_window_is_open(offer, current_minutes):
            return offer, True

    return day_matching_offers[0], False


def apply_offer(price: float, offer: DayOffer) -> float:
    """Apply a day offer to a price."""
    if offer.discount_type == DiscountType.PERCENTAGE:
        return round_money(max(0.0, price * (1 - offer.discount_value / 100)))
    return round_money(max(0.0, price - offer.discount_value))


def calculate_pricing(
    base_price: float,
    discount_price: Optional[float] = None,
    day_offers: Optional[List[DayOffer]] = None,
    reference: Optional[datetime] = None,
    current_day: Optional[str] = None,
    current_minutes: Optional[int] = None
) -> Dict:
    """
    Resolve the effective unit price of a food.

    The static discount only counts when it is below the base price. A day
    offer is applied on top of it, but only changes the final price when
    its time window is open at the reference time.

    Returns:
        Dict with actual_price, discount_price, special_offer_price,
        special_offer_details and final_price
    """
    actual_price = float(base_price or 0)
    if discount_price is not None and discount_price < actual_price:
        discount_price = float(discount_price)
    else:
        discount_price = None
    price_before_offer = discount_price if discount_price is not None else actual_price

    if current_day is None or current_minutes is None:
        current_day, current_minutes = resolve_date_context(reference)

    offer, is_currently_active = resolve_active_offer(day_offers or [], current_day, current_minutes)

    special_offer_price = None
    special_offer_details = None
    if offer is not None:
        special_offer_price = apply_offer(price_before_offer, offer)
        special_offer_details = {
            "discount_type": offer.discount_type.value,
            "discount_value": offer.discount_value,
            "start_time": offer.start_time,
            "end_time": offer.end_time,
            "active_days": list(offer.active_days),
            "is_currently_active": is_currently_active
        }

    if special_offer_price is not None and is_currently_active:
        final_price = special_offer_price
    else:
        final_price = round_money(price_before_offer)

    return {
        "actual_price": round_money(actual_price),
        "discount_price": round_money(discount_price) if discount_price is not None else None,
        "special_offer_price": special_offer_price,
        "special_offer_details": special_offer_details,
        "final_price": final_price
    }


def calculate_food_pricing(food: Food, reference: Optional[datetime] = None) -> Dict:
    """Resolve pricing for a catalog food at a reference instant."""
    return calculate_pricing(
        base_price=food.base_price,
        discount_price=food.discount_price,
        day_offers=food.day_offers,
        reference=reference
    )
