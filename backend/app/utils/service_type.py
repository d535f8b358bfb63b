"""
Service type constants and normalization.

Stored values are always one of SERVICE_TYPES. Clients (and older documents)
send many spellings: "dine-in", "TAKE AWAY", "pick-up", "car-dine-in", ...
"""

import re
from typing import Optional


DINE_IN = "Dine in"
DELIVERY = "Delivery"
TAKEAWAY = "Takeaway"
PICKUP = "Pickup"
CAR_DINE_IN = "Car Dine in"

SERVICE_TYPES = [DINE_IN, DELIVERY, TAKEAWAY, PICKUP, CAR_DINE_IN]

# Keys are lowercase with hyphens/extra spaces collapsed to single spaces
_SERVICE_TYPE_MAPPING = {
    "dine in": DINE_IN,
    "delivery": DELIVERY,
    "takeaway": TAKEAWAY,
    "take away": TAKEAWAY,
    "pickup": PICKUP,
    "pick up": PICKUP,
    "car dine in": CAR_DINE_IN,
}


def normalize_service_type(service_type) -> Optional[str]:
    """
    Normalize a service type to its stored form.

    Returns None when the value is not a recognised service type.
    """
    if not service_type or not isinstance(service_type, str):
        return None

    key = re.sub(r"[\s\-]+", " ", service_type.strip()).lower()
    if not key:
        return None

    return _SERVICE_TYPE_MAPPING.get(key)
