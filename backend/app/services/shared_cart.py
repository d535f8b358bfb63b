"""
Shared carts.

A user's own cart record can point at another user's cart through
`connected_cart_id`; every read and write for that user then goes to the
target cart. Pointer records never hold lines or a share code.
"""
import logging
import secrets
from typing import Optional, Tuple

from fastapi import HTTPException, status

from app.core.config import settings
from app.models.cart import Cart, CartTotals
from app.repositories.cart_repository import CartRepository

logger = logging.getLogger(__name__)


async def generate_cart_code(repo: CartRepository) -> str:
    """
    Generate an unused share code such as CART0420.

    Raises:
        HTTPException: 503 when no free code was found in CART_CODE_MAX_ATTEMPTS tries
    """
    for _ in range(settings.CART_CODE_MAX_ATTEMPTS):
        cart_code = f"{settings.CART_CODE_PREFIX}{secrets.randbelow(9999) + 1:04d}"
        if not await repo.code_exists(cart_code):
            return cart_code

    logger.error("No free cart code after %s attempts", settings.CART_CODE_MAX_ATTEMPTS)
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Unable to generate unique cart code. Please try again."
    )


def _reset_to_empty(cart: Cart):
    cart.items = []
    cart.coupon_code = None
    cart.coupon_discount = 0
    cart.is_prebook_cart = False
    cart.totals = CartTotals(tax_percentage=cart.gst_percentage)


class SharedCartResolver:
    """Resolves the cart a user works on and manages connections."""

    def __init__(self, repo: CartRepository):
        self.repo = repo

    async def resolve(self, user_id: str) -> Tuple[Optional[Cart], Optional[Cart]]:
        """
        Returns (own cart, working cart).

        A pointer whose target no longer exists is cleared and the user's own
        (empty) cart becomes the working cart.
        """
        own = await self.repo.find_by_user(user_id)
        if own is None or not own.is_pointer:
            return own, own

        target = await self.repo.find_by_id(own.connected_cart_id)
        if target is not None:
            return own, target

        logger.warning(
            "Cart %s of user %s pointed at missing cart %s, clearing pointer",
            own.id, user_id, own.connected_cart_id
        )
        own.connected_cart_id = None
        _reset_to_empty(own)
        await self.repo.save(own)
        return own, own

    async def ensure_cart_code(self, cart: Cart):
        """Give a cart with lines a share code if it has none."""
        if cart.cart_code is None and not cart.is_pointer and cart.items:
            cart.cart_code = await generate_cart_code(self.repo)

    async def connect(self, user_id: str, cart_code: str) -> Cart:
        """
        Point the user's cart at the cart owning `cart_code`.

        Raises:
            HTTPException: 404 if no cart has the code, 409 when it is the
                user's own cart or the user's cart still has lines
        """
        target = await self.repo.find_by_code(cart_code)
        if target is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Cart not found with the provided cart code"
            )

        if target.user_id == str(user_id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Cannot connect to your own cart"
            )

        own = await self.repo.find_by_user(user_id)

        if own is not None and own.connected_cart_id == target.id:
            return target

        if own is not None and own.items:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Your cart is not empty. Please clear your cart before connecting to another cart."
            )

        if own is None:
            own = Cart(user_id=str(user_id))
        else:
            if own.is_pointer:
                await self.repo.remove_connected_user(own.connected_cart_id, user_id)
            elif own.connected_users:
                # Nobody can keep pointing at a cart that became a pointer itself
                await self.repo.clear_pointers(own.id)
                own.connected_users = []
            own.cart_code = None

        own.connected_cart_id = target.id
        own.vendor_id = target.vendor_id
        own.service_type = target.service_type
        own.gst_percentage = target.gst_percentage
        _reset_to_empty(own)
        await self.repo.save(own)

        await self.repo.add_connected_user(target.id, user_id)
        logger.info("User %s connected to cart %s", user_id, target.id)

        return await self.repo.find_by_id(target.id)

    async def disconnect(self, user_id: str) -> Optional[Cart]:
        """
        Clear the user's pointer. Returns the now empty own cart, or None when
        the user was not connected.
        """
        own = await self.repo.find_by_user(user_id)
        if own is None or not own.is_pointer:
            return None

        target_id = own.connected_cart_id
        own.connected_cart_id = None
        _reset_to_empty(own)
        await self.repo.save(own)

        await self.repo.remove_connected_user(target_id, user_id)
        logger.info("User %s disconnected from cart %s", user_id, target_id)
        return own

    async def release_and_delete(self, cart: Cart):
        """
        Delete a cart and detach every user pointing at it.

        The version-checked delete runs first. When it conflicts the pointers
        are left intact, so the retried request resolves the same cart again.
        """
        await self.repo.delete(cart)
        await self.repo.clear_pointers(cart.id)
