from decimal import Decimal, ROUND_HALF_UP

from bson import ObjectId


def is_valid_object_id(value) -> bool:
    """Check whether a value can be used as a MongoDB ObjectId."""
    if isinstance(value, ObjectId):
        return True
    return isinstance(value, str) and ObjectId.is_valid(value)


def round_money(value) -> float:
    """Round a money amount half-up to 2 decimal places."""
    if value is None:
        return 0.0
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
