from datetime import datetime
from typing import List, Optional, Tuple
from pydantic import Field

from app.models.base import MongoDocument
from app.models.food import DiscountType
from app.utils.helpers import round_money


class Coupon(MongoDocument):
    """Coupon model for MongoDB, owned by the coupon service."""
    code: str
    discount_type: DiscountType
    discount_value: float = Field(ge=0)
    max_discount_amount: Optional[float] = None  # Cap for percentage discounts
    min_order_amount: Optional[float] = None
    vendor_id: Optional[str] = None  # Vendor coupons only apply to that vendor
    is_one_time_use: bool = True
    usage_limit: Optional[int] = None
    used_count: int = 0
    used_by_users: List[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    is_active: bool = True

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "code": "WELCOME50",
                "discount_type": "percentage",
                "discount_value": 10,
                "max_discount_amount": 50,
                "min_order_amount": 199,
                "is_one_time_use": True
            }
        }

    def check_validity(
        self,
        user_id: Optional[str],
        order_amount: float,
        vendor_id: Optional[str],
        now: Optional[datetime] = None
    ) -> Tuple[bool, Optional[str]]:
        """
        Check if the coupon can be used for this order.
        Returns (is_valid, error_message)
        """
        now = now or datetime.utcnow()

        if not self.is_active:
            return False, "Coupon is not active"

        if self.expires_at and now > self.expires_at:
            return False, "Coupon has expired"

        if self.vendor_id and str(vendor_id) != self.vendor_id:
            return False, "This coupon is not valid for this vendor"

        if self.min_order_amount and order_amount < self.min_order_amount:
            return False, f"Minimum order amount of {self.min_order_amount} is required to use this coupon"

        if self.usage_limit and self.used_count >= self.usage_limit:
            return False, "Coupon usage limit has been reached"

        if self.is_one_time_use and user_id and str(user_id) in self.used_by_users:
            return False, "You have already used this coupon"

        return True, None

    def calculate_discount(self, order_amount: float) -> float:
        """Discount for an order amount, rounded to 2 decimals."""
        if self.discount_type == DiscountType.PERCENTAGE:
            discount = order_amount * self.discount_value / 100
            if self.max_discount_amount and discount > self.max_discount_amount:
                discount = self.max_discount_amount
            return round_money(discount)

        # Fixed discount cannot exceed the order amount
        return round_money(min(self.discount_value, order_amount))
