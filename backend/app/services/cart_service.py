import logging
from typing import Optional

from bson import ObjectId
from fastapi import HTTPException, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from app.models.cart import Cart
from app.models.food import Food
from app.models.vendor import Vendor
from app.repositories.cart_repository import CartRepository
from app.schemas.cart import (
    AddToCartRequest,
    AvailableOption,
    AvailableSelectionsResponse,
    CartLineResponse,
    CartResponse,
    CartTotalsResponse,
    CartVendorResponse
)
from app.services.cart_totals import order_amount, recalculate_cart
from app.services.coupon_service import CouponService
from app.services.line_mutator import apply_add_item
from app.services.shared_cart import SharedCartResolver
from app.utils.helpers import is_valid_object_id
from app.utils.retry import serialized_cart_write
from app.utils.service_type import normalize_service_type

logger = logging.getLogger(__name__)


class CartService:
    """Service for cart operations."""

    @staticmethod
    def format_cart(cart: Optional[Cart], vendor: Optional[Vendor] = None) -> CartResponse:
        """Build the cart snapshot. No cart gives the empty snapshot."""
        if cart is None:
            return CartResponse()

        vendor_response = None
        if vendor is not None:
            vendor_response = CartVendorResponse(
                id=vendor.id,
                name=vendor.restaurant_name,
                profile_image=vendor.profile_image,
                place=vendor.place,
                gst_percentage=vendor.gst_percentage
            )

        return CartResponse(
            id=cart.id,
            cart_code=cart.cart_code,
            user=cart.user_id,
            service_type=normalize_service_type(cart.service_type) or cart.service_type,
            is_prebook_cart=cart.is_prebook_cart or any(line.is_prebook for line in cart.items),
            vendor=vendor_response,
            items=[CartLineResponse.model_validate(line.model_dump()) for line in cart.items],
            coupon_code=cart.coupon_code,
            totals=CartTotalsResponse.model_validate(cart.totals.model_dump()),
            last_updated_at=cart.last_updated_at or cart.updated_at or cart.created_at
        )

    @staticmethod
    async def get_vendor(vendor_id: Optional[str], db: AsyncIOMotorDatabase) -> Optional[Vendor]:
        if not is_valid_object_id(vendor_id):
            return None
        document = await db.vendors.find_one({"_id": ObjectId(vendor_id)})
        return Vendor.model_validate(document) if document else None

    @staticmethod
    async def snapshot(cart: Optional[Cart], db: AsyncIOMotorDatabase) -> CartResponse:
        if cart is None:
            return CartService.format_cart(None)
        vendor = await CartService.get_vendor(cart.vendor_id, db)
        return CartService.format_cart(cart, vendor)

    @staticmethod
    async def refresh_totals(cart: Cart, user_id: str, db: AsyncIOMotorDatabase):
        """
        Re-validate the applied coupon against the new order amount and
        recompute the totals. A coupon that no longer applies is dropped.
        """
        if cart.coupon_code:
            try:
                validation = await CouponService.validate_coupon(
                    cart.coupon_code,
                    user_id,
                    order_amount(cart),
                    cart.vendor_id,
                    db
                )
            except PyMongoError:
                logger.exception("Could not re-validate coupon %s on cart %s", cart.coupon_code, cart.id)
                validation = {"valid": False, "reason": "Coupon could not be validated"}

            if validation["valid"]:
                cart.coupon_discount = validation["discount"]
            else:
                logger.warning(
                    "Removed coupon %s from cart %s: %s",
                    cart.coupon_code, cart.id, validation["reason"]
                )
                cart.coupon_code = None
                cart.coupon_discount = 0
        else:
            cart.coupon_discount = 0

        recalculate_cart(cart)

    @staticmethod
    @serialized_cart_write
    async def get_cart(user_id: str, db: AsyncIOMotorDatabase) -> CartResponse:
        """
        Get the cart the user works on.

        Deletes a leftover empty personal cart and picks up a changed vendor GST rate.
        """
        repo = CartRepository(db)
        resolver = SharedCartResolver(repo)
        own, cart = await resolver.resolve(user_id)

        if cart is None:
            return CartService.format_cart(None)

        if cart is own and not cart.items:
            await resolver.release_and_delete(own)
            return CartService.format_cart(None)

        vendor = await CartService.get_vendor(cart.vendor_id, db)
        if vendor is not None and cart.items and vendor.gst_percentage != cart.gst_percentage:
            cart.gst_percentage = vendor.gst_percentage
            await CartService.refresh_totals(cart, user_id, db)
            await repo.save(cart)

        return CartService.format_cart(cart, vendor)

    @staticmethod
    @serialized_cart_write
    async def add_item(user_id: str, request: AddToCartRequest, db: AsyncIOMotorDatabase) -> CartResponse:
        """
        Add a food to the cart, or change the matching line.

        Creates the cart on the first line and deletes it when the last line
        goes away.
        """
        if not is_valid_object_id(request.food_id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid food ID"
            )

        food_document = await db.foods.find_one({"_id": ObjectId(request.food_id), "is_active": True})
        if not food_document:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Food item not found"
            )
        food = Food.model_validate(food_document)

        vendor = await CartService.get_vendor(food.vendor_id, db)
        if vendor is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Vendor associated with this food item was not found"
            )

        repo = CartRepository(db)
        resolver = SharedCartResolver(repo)
        own, cart = await resolver.resolve(user_id)

        if cart is None:
            cart = Cart(user_id=str(user_id))

        # An empty cart adopts the vendor and service type of its first line
        if not cart.items:
            cart.vendor_id = str(food.vendor_id)
            cart.service_type = request.service_type
        cart.gst_percentage = vendor.gst_percentage

        apply_add_item(cart, food, request)

        if not cart.items:
            if cart.id is not None:
                await resolver.release_and_delete(cart)
            return CartService.format_cart(None)

        await resolver.ensure_cart_code(cart)
        await CartService.refresh_totals(cart, user_id, db)
        await repo.save(cart)

        return CartService.format_cart(cart, vendor)

    @staticmethod
    @serialized_cart_write
    async def remove_line(user_id: str, line_id: str, db: AsyncIOMotorDatabase) -> CartResponse:
        """Remove one line, deleting the cart when it was the last one."""
        repo = CartRepository(db)
        resolver = SharedCartResolver(repo)
        own, cart = await resolver.resolve(user_id)

        if cart is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cart not found"
            )

        if not cart.remove_line(line_id):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cart item not found"
            )

        if not cart.items:
            await resolver.release_and_delete(cart)
            return CartService.format_cart(None)

        await CartService.refresh_totals(cart, user_id, db)
        await repo.save(cart)
        return await CartService.snapshot(cart, db)

    @staticmethod
    @serialized_cart_write
    async def clear_cart(user_id: str, db: AsyncIOMotorDatabase) -> CartResponse:
        """Delete the working cart and the user's own pointer record."""
        repo = CartRepository(db)
        resolver = SharedCartResolver(repo)
        own, cart = await resolver.resolve(user_id)

        if cart is None:
            return CartService.format_cart(None)

        # The shared cart goes first so a retry still finds the caller's pointer
        await resolver.release_and_delete(cart)

        if own is not None and own.id != cart.id:
            # Reload, clearing the pointers bumped its version
            own = await repo.find_by_id(own.id)
            if own is not None:
                await repo.delete(own)

        return CartService.format_cart(None)

    @staticmethod
    @serialized_cart_write
    async def connect_cart(user_id: str, cart_code: str, db: AsyncIOMotorDatabase) -> CartResponse:
        """Join another user's cart through its share code."""
        resolver = SharedCartResolver(CartRepository(db))
        cart = await resolver.connect(user_id, cart_code)
        return await CartService.snapshot(cart, db)

    @staticmethod
    @serialized_cart_write
    async def disconnect_cart(user_id: str, db: AsyncIOMotorDatabase) -> CartResponse:
        """Leave the connected cart. The user ends up with an empty cart."""
        resolver = SharedCartResolver(CartRepository(db))
        await resolver.disconnect(user_id)
        return CartService.format_cart(None)

    @staticmethod
    async def list_available_selections(
        user_id: str,
        line_id: str,
        db: AsyncIOMotorDatabase
    ) -> AvailableSelectionsResponse:
        """Add-ons and customizations of the line's food not selected on that line yet."""
        if not is_valid_object_id(line_id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid item ID format"
            )

        own, cart = await SharedCartResolver(CartRepository(db)).resolve(user_id)
        if cart is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cart not found"
            )

        line = cart.find_line(line_id)
        if line is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cart item not found"
            )

        food_document = None
        if is_valid_object_id(line.food_id):
            food_document = await db.foods.find_one({"_id": ObjectId(line.food_id)})
        if not food_document:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Associated food item not found"
            )
        food = Food.model_validate(food_document)

        selected_add_ons = {add_on.id for add_on in line.add_ons}
        selected_customizations = {customization.id for customization in line.customizations}

        return AvailableSelectionsResponse(
            food_id=food.id,
            food_name=food.food_name,
            add_ons=[
                AvailableOption(id=option.id, name=option.name, price=option.price, image=option.image)
                for option in food.add_ons
                if option.id not in selected_add_ons
            ],
            customizations=[
                AvailableOption(id=option.id, name=option.name, price=option.price)
                for option in food.customizations
                if option.id not in selected_customizations
            ]
        )

    @staticmethod
    @serialized_cart_write
    async def apply_coupon(user_id: str, code: str, db: AsyncIOMotorDatabase) -> CartResponse:
        """Apply a coupon to the working cart."""
        repo = CartRepository(db)
        own, cart = await SharedCartResolver(repo).resolve(user_id)

        if cart is None or not cart.items:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cart is empty. Please add items to cart before applying coupon."
            )

        validation = await CouponService.validate_coupon(code, user_id, order_amount(cart), cart.vendor_id, db)
        if not validation["valid"]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=validation["reason"]
            )

        cart.coupon_code = validation["coupon"].code
        cart.coupon_discount = validation["discount"]
        recalculate_cart(cart)
        await repo.save(cart)
        logger.info("Applied coupon %s to cart %s", cart.coupon_code, cart.id)

        return await CartService.snapshot(cart, db)

    @staticmethod
    @serialized_cart_write
    async def remove_coupon(user_id: str, db: AsyncIOMotorDatabase) -> CartResponse:
        """Remove the applied coupon from the working cart."""
        repo = CartRepository(db)
        own, cart = await SharedCartResolver(repo).resolve(user_id)

        if cart is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cart not found"
            )

        if not cart.coupon_code:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="No coupon applied to cart"
            )

        cart.coupon_code = None
        cart.coupon_discount = 0
        recalculate_cart(cart)
        await repo.save(cart)

        return await CartService.snapshot(cart, db)

    @staticmethod
    async def get_booking_snapshot(user_id: str, db: AsyncIOMotorDatabase) -> CartResponse:
        """
        Read-only snapshot of the working cart for the booking workflow.

        Raises:
            HTTPException: 400 if the cart is empty
        """
        own, cart = await SharedCartResolver(CartRepository(db)).resolve(user_id)
        if cart is None or not cart.items:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cart is empty"
            )
        return await CartService.snapshot(cart, db)
