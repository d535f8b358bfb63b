from typing import List, Optional
from enum import Enum
from pydantic import BaseModel, Field

from app.models.base import MongoDocument


class DiscountType(str, Enum):
    """Discount type enumeration shared by day offers and coupons."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class FoodOption(MongoDocument):
    """Add-on or customization defined on a food."""
    name: str
    price: float = Field(ge=0)
    image: Optional[str] = None


class DayOffer(BaseModel):
    """Weekday and time-window scoped discount attached to a food."""
    discount_type: DiscountType
    discount_value: float = Field(ge=0)
    active_days: List[str] = Field(default_factory=list)  # "Monday" ... "Sunday"
    start_time: Optional[str] = None  # "HH:MM" or "hh:mm AM/PM"
    end_time: Optional[str] = None
    is_active: bool = True


class Food(MongoDocument):
    """Food catalog entry, owned by the catalog service and read by the cart."""
    food_name: str
    food_image: Optional[str] = None
    type: str = "veg"  # veg / non-veg
    vendor_id: str
    base_price: float = Field(ge=0)
    discount_price: Optional[float] = None
    packing_charges: float = 0
    order_types: List[str] = Field(default_factory=list)
    is_prebook: bool = False
    is_active: bool = True
    customizations: List[FoodOption] = Field(default_factory=list)
    add_ons: List[FoodOption] = Field(default_factory=list)
    day_offers: List[DayOffer] = Field(default_factory=list)

    @property
    def uses_customization_price(self) -> bool:
        """Foods with customizations are priced by the selected customizations."""
        return len(self.customizations) > 0
