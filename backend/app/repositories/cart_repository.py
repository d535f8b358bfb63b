import logging
from datetime import datetime
from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from app.models.cart import Cart
from app.utils.helpers import is_valid_object_id

logger = logging.getLogger(__name__)


class CartConflictError(Exception):
    """A cart write lost an optimistic version race."""

    def __init__(self, cart_id: Optional[str] = None, message: str = "Cart version conflict"):
        self.cart_id = cart_id
        super().__init__(message)


class CartRepository:
    """
    Access to the carts collection.

    Every write that replaces or deletes a cart is conditioned on the version
    the cart was loaded with and bumps it, so two requests mutating the same
    cart cannot both succeed.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.carts

    @staticmethod
    def _to_cart(document: Optional[dict]) -> Optional[Cart]:
        if document is None:
            return None
        return Cart.model_validate(document)

    async def find_by_user(self, user_id: str) -> Optional[Cart]:
        return self._to_cart(await self.collection.find_one({"user_id": str(user_id)}))

    async def find_by_id(self, cart_id: str) -> Optional[Cart]:
        if not is_valid_object_id(cart_id):
            return None
        return self._to_cart(await self.collection.find_one({"_id": ObjectId(cart_id)}))

    async def find_by_code(self, cart_code: str) -> Optional[Cart]:
        return self._to_cart(await self.collection.find_one({"cart_code": cart_code}))

    async def code_exists(self, cart_code: str) -> bool:
        return await self.collection.count_documents({"cart_code": cart_code}, limit=1) > 0

    async def save(self, cart: Cart) -> Cart:
        """
        Insert a new cart or replace a stored one at the loaded version.

        Raises:
            CartConflictError: If the stored version moved on, or the insert
                raced another one for the same user
        """
        now = datetime.utcnow()
        cart.updated_at = now

        if cart.id is None:
            cart.version = 1
            cart.created_at = now
            try:
                result = await self.collection.insert_one(cart.to_document())
            except DuplicateKeyError as exc:
                logger.warning("Cart insert for user %s raced another request", cart.user_id)
                raise CartConflictError(message="Cart already created by another request") from exc
            cart.id = str(result.inserted_id)
            logger.info("Created cart %s for user %s", cart.id, cart.user_id)
            return cart

        expected_version = cart.version
        cart.version = expected_version + 1
        try:
            result = await self.collection.replace_one(
                {"_id": ObjectId(cart.id), "version": expected_version},
                cart.to_document()
            )
        except DuplicateKeyError as exc:
            cart.version = expected_version
            raise CartConflictError(cart.id) from exc

        if result.matched_count == 0:
            cart.version = expected_version
            logger.warning("Version conflict writing cart %s at version %s", cart.id, expected_version)
            raise CartConflictError(cart.id)

        return cart

    async def delete(self, cart: Cart):
        """
        Delete a cart at the loaded version.

        Raises:
            CartConflictError: If the cart changed since it was loaded
        """
        result = await self.collection.delete_one({"_id": ObjectId(cart.id), "version": cart.version})
        if result.deleted_count == 0:
            logger.warning("Version conflict deleting cart %s at version %s", cart.id, cart.version)
            raise CartConflictError(cart.id)
        logger.info("Deleted cart %s of user %s", cart.id, cart.user_id)

    async def clear_pointers(self, cart_id: str) -> int:
        """Detach every pointer cart aimed at `cart_id`."""
        result = await self.collection.update_many(
            {"connected_cart_id": cart_id},
            {
                "$unset": {"connected_cart_id": ""},
                "$inc": {"version": 1},
                "$set": {"updated_at": datetime.utcnow()}
            }
        )
        if result.modified_count:
            logger.info("Disconnected %s pointer cart(s) from cart %s", result.modified_count, cart_id)
        return result.modified_count

    async def add_connected_user(self, cart_id: str, user_id: str):
        await self.collection.update_one(
            {"_id": ObjectId(cart_id)},
            {
                "$addToSet": {"connected_users": str(user_id)},
                "$inc": {"version": 1},
                "$set": {"updated_at": datetime.utcnow()}
            }
        )

    async def remove_connected_user(self, cart_id: str, user_id: str):
        await self.collection.update_one(
            {"_id": ObjectId(cart_id)},
            {
                "$pull": {"connected_users": str(user_id)},
                "$inc": {"version": 1},
                "$set": {"updated_at": datetime.utcnow()}
            }
        )
