import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.coupon import Coupon

logger = logging.getLogger(__name__)


class CouponService:
    """Service for coupon validation and usage tracking."""

    @staticmethod
    async def get_active_coupon(code: str, db: AsyncIOMotorDatabase) -> Optional[Coupon]:
        document = await db.coupons.find_one({"code": code.strip().upper(), "is_active": True})
        if not document:
            return None
        return Coupon.model_validate(document)

    @staticmethod
    async def validate_coupon(
        code: str,
        user_id: Optional[str],
        order_amount: float,
        vendor_id: Optional[str],
        db: AsyncIOMotorDatabase
    ) -> dict:
        """
        Validate a coupon for an order.

        Returns:
            {"valid": True, "discount": float, "coupon": Coupon}
            or {"valid": False, "reason": str}
        """
        coupon = await CouponService.get_active_coupon(code, db)
        if coupon is None:
            return {"valid": False, "reason": "Invalid coupon code"}

        is_valid, reason = coupon.check_validity(user_id, order_amount, vendor_id)
        if not is_valid:
            return {"valid": False, "reason": reason}

        return {
            "valid": True,
            "discount": coupon.calculate_discount(order_amount),
            "coupon": coupon
        }

    @staticmethod
    async def mark_used(code: str, user_id: Optional[str], db: AsyncIOMotorDatabase) -> bool:
        """
        Record one use of a coupon.

        One-time coupons also remember the user. Returns False when the
        coupon does not exist.
        """
        coupon = await CouponService.get_active_coupon(code, db)
        if coupon is None:
            return False

        update = {"$inc": {"used_count": 1}}
        if coupon.is_one_time_use and user_id:
            update["$addToSet"] = {"used_by_users": str(user_id)}

        await db.coupons.update_one({"code": coupon.code}, update)
        logger.info("Coupon %s used by %s", coupon.code, user_id)
        return True
