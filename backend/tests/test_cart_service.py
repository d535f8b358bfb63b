"""
Tests for the cart service pipeline against the in-memory database.
"""
import re
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from bson import ObjectId
from fastapi import HTTPException
from pymongo.errors import PyMongoError

from app.schemas.cart import AddToCartRequest
from app.services.cart_service import CartService
from app.services.coupon_service import CouponService
from app.services.pricing import DAYS

ALICE = "665000000000000000000001"
BOB = "665000000000000000000002"

ALL_DAY_OFFER = {
    "discount_type": "percentage",
    "discount_value": 10,
    "active_days": DAYS,
    "is_active": True
}


def add_request(food, quantity=True, service_type="Dine in", **fields) -> AddToCartRequest:
    data = {"foodId": str(food["_id"]), "quantity": quantity, "serviceType": service_type}
    data.update(fields)
    return AddToCartRequest.model_validate(data)


@pytest.fixture
def paneer(make_food):
    return make_food(day_offers=[ALL_DAY_OFFER])


@pytest.fixture
def coupon(db, vendor):
    return db.coupons.seed({
        "code": "FEAST50",
        "discount_type": "fixed",
        "discount_value": 50,
        "min_order_amount": 400,
        "vendor_id": str(vendor["_id"]),
        "is_one_time_use": True,
        "used_count": 0,
        "used_by_users": [],
        "is_active": True
    })


class TestAddItem:
    """Test the add-item pipeline."""

    @pytest.mark.asyncio
    async def test_first_increment_creates_cart(self, db, paneer, vendor):
        """Offer price 224.99 on an empty cart gives one line of 224.99."""
        snapshot = await CartService.add_item(ALICE, add_request(paneer), db)

        assert len(snapshot.items) == 1
        assert snapshot.items[0].quantity == 1
        assert snapshot.items[0].effective_price == 224.99
        assert snapshot.items[0].item_total == 224.99
        assert snapshot.totals.sub_total == 224.99
        assert snapshot.totals.tax_percentage == 5
        assert snapshot.service_type == "Dine in"
        assert snapshot.user == ALICE
        assert snapshot.vendor.name == "Spice Route"
        assert snapshot.vendor.place == "Kochi"
        assert re.match(r"^CART\d{4}$", snapshot.cart_code)

        stored = db.carts.documents[0]
        assert stored["version"] == 1
        assert stored["vendor_id"] == str(vendor["_id"])

    @pytest.mark.asyncio
    async def test_packing_charge_for_takeaway(self, db, paneer):
        snapshot = await CartService.add_item(ALICE, add_request(paneer, service_type="take-away"), db)
        assert snapshot.service_type == "Takeaway"
        assert snapshot.items[0].item_total == 234.99
        assert snapshot.totals.packing_charge_total == 10

    @pytest.mark.asyncio
    async def test_offer_above_full_price_keeps_cart_loadable(self, db, make_food):
        food = make_food(day_offers=[dict(ALL_DAY_OFFER, discount_value=150)])

        snapshot = await CartService.add_item(ALICE, add_request(food), db)
        assert snapshot.items[0].effective_price == 0

        assert (await CartService.get_cart(ALICE, db)).items[0].item_total == 0

    @pytest.mark.asyncio
    async def test_second_increment_updates_same_line(self, db, paneer):
        await CartService.add_item(ALICE, add_request(paneer), db)
        snapshot = await CartService.add_item(ALICE, add_request(paneer), db)

        assert len(snapshot.items) == 1
        assert snapshot.items[0].quantity == 2
        assert db.carts.documents[0]["version"] == 2

    @pytest.mark.asyncio
    async def test_remove_without_line_is_not_found(self, db, paneer):
        with pytest.raises(HTTPException) as exc_info:
            await CartService.add_item(ALICE, add_request(paneer, quantity=0), db)
        assert exc_info.value.status_code == 404
        assert db.carts.documents == []

    @pytest.mark.asyncio
    async def test_decrement_to_zero_deletes_cart(self, db, paneer):
        await CartService.add_item(ALICE, add_request(paneer), db)
        snapshot = await CartService.add_item(ALICE, add_request(paneer, quantity=False), db)

        assert snapshot.id is None
        assert snapshot.items == []
        assert db.carts.documents == []

    @pytest.mark.asyncio
    async def test_unknown_food(self, db):
        request = AddToCartRequest.model_validate(
            {"foodId": str(ObjectId()), "quantity": True, "serviceType": "Dine in"}
        )
        with pytest.raises(HTTPException) as exc_info:
            await CartService.add_item(ALICE, request, db)
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Food item not found"

    @pytest.mark.asyncio
    async def test_invalid_food_id(self, db):
        request = AddToCartRequest.model_validate({"foodId": "nope", "serviceType": "Dine in"})
        with pytest.raises(HTTPException) as exc_info:
            await CartService.add_item(ALICE, request, db)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_prebook_excludes_regular(self, db, paneer, make_food):
        prebook = make_food(food_name="Festival Thali", is_prebook=True)
        await CartService.add_item(ALICE, add_request(paneer), db)

        with pytest.raises(HTTPException) as exc_info:
            await CartService.add_item(ALICE, add_request(prebook), db)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_vendor_lock(self, db, paneer):
        other_vendor = db.vendors.seed({"restaurant_name": "Dosa Corner", "gst_percentage": 5})
        other_food = db.foods.seed({
            "food_name": "Masala Dosa",
            "vendor_id": str(other_vendor["_id"]),
            "base_price": 120,
            "order_types": ["Dine in"],
            "is_active": True
        })
        await CartService.add_item(ALICE, add_request(paneer), db)

        with pytest.raises(HTTPException) as exc_info:
            await CartService.add_item(ALICE, add_request(other_food), db)
        assert exc_info.value.status_code == 409
        assert "another vendor" in exc_info.value.detail


class TestReadAndRemove:
    """Test get, remove-line and clear."""

    @pytest.mark.asyncio
    async def test_get_cart_without_cart(self, db):
        snapshot = await CartService.get_cart(ALICE, db)
        assert snapshot.id is None
        assert snapshot.totals.grand_total == 0

    @pytest.mark.asyncio
    async def test_get_cart_deletes_empty_personal_cart(self, db):
        db.carts.seed({"user_id": ALICE, "items": [], "version": 3})
        await CartService.get_cart(ALICE, db)
        assert db.carts.documents == []

    @pytest.mark.asyncio
    async def test_get_cart_refreshes_vendor_gst(self, db, paneer, vendor):
        await CartService.add_item(ALICE, add_request(paneer), db)
        db.vendors.documents[0]["gst_percentage"] = 18

        snapshot = await CartService.get_cart(ALICE, db)

        assert snapshot.totals.tax_percentage == 18
        assert snapshot.totals.tax_amount == 40.5
        assert db.carts.documents[0]["gst_percentage"] == 18

    @pytest.mark.asyncio
    async def test_remove_line(self, db, paneer, make_food):
        naan = make_food(food_name="Butter Naan", base_price=60, discount_price=None)
        await CartService.add_item(ALICE, add_request(paneer), db)
        snapshot = await CartService.add_item(ALICE, add_request(naan, quantity=2), db)
        paneer_line = next(line for line in snapshot.items if line.food_name == "Paneer Tikka")

        snapshot = await CartService.remove_line(ALICE, paneer_line.id, db)

        assert [line.food_name for line in snapshot.items] == ["Butter Naan"]
        assert snapshot.totals.sub_total == 120

    @pytest.mark.asyncio
    async def test_remove_unknown_line(self, db, paneer):
        await CartService.add_item(ALICE, add_request(paneer), db)
        with pytest.raises(HTTPException) as exc_info:
            await CartService.remove_line(ALICE, str(ObjectId()), db)
        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Cart item not found"

    @pytest.mark.asyncio
    async def test_remove_last_line_deletes_cart(self, db, paneer):
        snapshot = await CartService.add_item(ALICE, add_request(paneer), db)
        await CartService.remove_line(ALICE, snapshot.items[0].id, db)
        assert db.carts.documents == []

    @pytest.mark.asyncio
    async def test_clear_cart(self, db, paneer):
        await CartService.add_item(ALICE, add_request(paneer), db)
        snapshot = await CartService.clear_cart(ALICE, db)
        assert snapshot.items == []
        assert db.carts.documents == []

    @pytest.mark.asyncio
    async def test_connected_user_clears_shared_cart(self, db, paneer):
        """Clearing from a connected user removes the shared cart and every pointer."""
        carol = "665000000000000000000003"
        alice_cart = await CartService.add_item(ALICE, add_request(paneer), db)
        await CartService.connect_cart(BOB, alice_cart.cart_code, db)
        await CartService.connect_cart(carol, alice_cart.cart_code, db)

        snapshot = await CartService.clear_cart(BOB, db)

        assert snapshot.items == []
        assert [doc["user_id"] for doc in db.carts.documents] == [carol]
        assert db.carts.documents[0].get("connected_cart_id") is None
        assert (await CartService.get_cart(carol, db)).id is None

    @pytest.mark.asyncio
    async def test_clear_retries_when_shared_cart_changes(self, db, paneer):
        """A concurrent write to the shared cart during clear is retried, not lost."""
        alice_cart = await CartService.add_item(ALICE, add_request(paneer), db)
        await CartService.connect_cart(BOB, alice_cart.cart_code, db)
        original_delete = db.carts.delete_one
        bumped = []

        async def delete_after_concurrent_write(query):
            if not bumped and str(query["_id"]) == alice_cart.id:
                bumped.append(query)
                shared = next(doc for doc in db.carts.documents if str(doc["_id"]) == alice_cart.id)
                shared["version"] += 1
            return await original_delete(query)

        db.carts.delete_one = delete_after_concurrent_write
        snapshot = await CartService.clear_cart(BOB, db)

        assert snapshot.items == []
        assert len(bumped) == 1
        assert db.carts.documents == []

    @pytest.mark.asyncio
    async def test_available_selections(self, db, make_food):
        cheese = {"_id": ObjectId(), "name": "Extra cheese", "price": 30}
        dip = {"_id": ObjectId(), "name": "Mint dip", "price": 15, "image": "https://cdn.example.com/dip.png"}
        food = make_food(add_ons=[cheese, dip])
        snapshot = await CartService.add_item(
            ALICE, add_request(food, addOns=[{"addOnId": str(cheese["_id"]), "quantity": 1}]), db
        )

        available = await CartService.list_available_selections(ALICE, snapshot.items[0].id, db)

        assert [option.name for option in available.add_ons] == ["Mint dip"]
        assert available.add_ons[0].image == "https://cdn.example.com/dip.png"
        assert available.customizations == []

    @pytest.mark.asyncio
    async def test_available_selections_bad_line_id(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await CartService.list_available_selections(ALICE, "not-an-id", db)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_booking_snapshot(self, db, paneer):
        with pytest.raises(HTTPException) as exc_info:
            await CartService.get_booking_snapshot(ALICE, db)
        assert exc_info.value.detail == "Cart is empty"

        await CartService.add_item(ALICE, add_request(paneer), db)
        snapshot = await CartService.get_booking_snapshot(ALICE, db)
        assert snapshot.totals.item_count == 1

    @pytest.mark.asyncio
    async def test_snapshot_uses_camel_case(self, db, paneer):
        snapshot = await CartService.add_item(ALICE, add_request(paneer), db)
        data = snapshot.model_dump(by_alias=True)

        assert "cartCode" in data
        assert "grandTotal" in data["totals"]
        assert "effectivePrice" in data["items"][0]
        assert "gstPercentage" in data["vendor"]


class TestSharedCart:
    """Test connecting to another user's cart."""

    async def _alice_cart(self, db, food):
        return await CartService.add_item(ALICE, add_request(food), db)

    @pytest.mark.asyncio
    async def test_connect_disconnect_round_trip(self, db, paneer):
        alice_cart = await self._alice_cart(db, paneer)

        connected = await CartService.connect_cart(BOB, alice_cart.cart_code, db)
        assert connected.id == alice_cart.id
        alice_document = next(doc for doc in db.carts.documents if doc["user_id"] == ALICE)
        assert alice_document["connected_users"] == [BOB]

        snapshot = await CartService.disconnect_cart(BOB, db)
        assert snapshot.id is None

        alice_document = next(doc for doc in db.carts.documents if doc["user_id"] == ALICE)
        bob_document = next(doc for doc in db.carts.documents if doc["user_id"] == BOB)
        assert alice_document["connected_users"] == []
        assert bob_document["items"] == []
        assert bob_document.get("connected_cart_id") is None
        assert "cart_code" not in bob_document

    @pytest.mark.asyncio
    async def test_connected_user_adds_to_shared_cart(self, db, paneer):
        alice_cart = await self._alice_cart(db, paneer)
        await CartService.connect_cart(BOB, alice_cart.cart_code, db)

        snapshot = await CartService.add_item(BOB, add_request(paneer), db)

        assert snapshot.id == alice_cart.id
        assert snapshot.items[0].quantity == 2
        assert (await CartService.get_cart(ALICE, db)).items[0].quantity == 2

    @pytest.mark.asyncio
    async def test_connect_twice_is_idempotent(self, db, paneer):
        alice_cart = await self._alice_cart(db, paneer)
        await CartService.connect_cart(BOB, alice_cart.cart_code, db)
        snapshot = await CartService.connect_cart(BOB, alice_cart.cart_code, db)
        assert snapshot.id == alice_cart.id

    @pytest.mark.asyncio
    async def test_connect_to_own_cart(self, db, paneer):
        alice_cart = await self._alice_cart(db, paneer)
        with pytest.raises(HTTPException) as exc_info:
            await CartService.connect_cart(ALICE, alice_cart.cart_code, db)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_connect_with_items_in_own_cart(self, db, paneer):
        alice_cart = await self._alice_cart(db, paneer)
        await CartService.add_item(BOB, add_request(paneer), db)
        with pytest.raises(HTTPException) as exc_info:
            await CartService.connect_cart(BOB, alice_cart.cart_code, db)
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_connect_unknown_code(self, db):
        with pytest.raises(HTTPException) as exc_info:
            await CartService.connect_cart(BOB, "CART0000", db)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_dangling_pointer_is_cleared(self, db):
        db.carts.seed({
            "user_id": BOB,
            "items": [],
            "connected_cart_id": str(ObjectId()),
            "version": 1
        })

        snapshot = await CartService.get_cart(BOB, db)

        assert snapshot.id is None
        assert db.carts.documents == []

    @pytest.mark.asyncio
    async def test_emptying_shared_cart_disconnects_users(self, db, paneer):
        alice_cart = await self._alice_cart(db, paneer)
        await CartService.connect_cart(BOB, alice_cart.cart_code, db)

        await CartService.add_item(BOB, add_request(paneer, quantity=0), db)

        assert [doc["user_id"] for doc in db.carts.documents] == [BOB]
        assert db.carts.documents[0].get("connected_cart_id") is None


class TestCoupons:
    """Test coupon application and re-validation."""

    @pytest.mark.asyncio
    async def test_apply_coupon(self, db, paneer, coupon):
        await CartService.add_item(ALICE, add_request(paneer, quantity=2), db)

        snapshot = await CartService.apply_coupon(ALICE, "feast50", db)

        assert snapshot.coupon_code == "FEAST50"
        assert snapshot.totals.coupon_discount == 50
        # 449.98 + 22.50 tax - 50
        assert snapshot.totals.grand_total == 422.48

    @pytest.mark.asyncio
    async def test_apply_coupon_below_minimum(self, db, paneer, coupon):
        await CartService.add_item(ALICE, add_request(paneer), db)
        with pytest.raises(HTTPException) as exc_info:
            await CartService.apply_coupon(ALICE, "FEAST50", db)
        assert exc_info.value.status_code == 400
        assert "Minimum order amount" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_apply_coupon_to_empty_cart(self, db, coupon):
        with pytest.raises(HTTPException) as exc_info:
            await CartService.apply_coupon(ALICE, "FEAST50", db)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_coupon_dropped_when_order_falls_below_minimum(self, db, paneer, coupon):
        await CartService.add_item(ALICE, add_request(paneer, quantity=2), db)
        await CartService.apply_coupon(ALICE, "FEAST50", db)

        snapshot = await CartService.add_item(ALICE, add_request(paneer, quantity=False), db)

        assert snapshot.coupon_code is None
        assert snapshot.totals.coupon_discount == 0
        assert snapshot.totals.grand_total == 236.24

    @pytest.mark.asyncio
    async def test_coupon_dropped_when_validation_fails(self, db, paneer, coupon):
        await CartService.add_item(ALICE, add_request(paneer, quantity=2), db)
        await CartService.apply_coupon(ALICE, "FEAST50", db)

        with patch.object(CouponService, "validate_coupon", AsyncMock(side_effect=PyMongoError("down"))):
            snapshot = await CartService.add_item(ALICE, add_request(paneer, quantity=3), db)

        assert snapshot.items[0].quantity == 3
        assert snapshot.coupon_code is None

    @pytest.mark.asyncio
    async def test_remove_coupon(self, db, paneer, coupon):
        await CartService.add_item(ALICE, add_request(paneer, quantity=2), db)
        await CartService.apply_coupon(ALICE, "FEAST50", db)

        snapshot = await CartService.remove_coupon(ALICE, db)
        assert snapshot.coupon_code is None
        assert snapshot.totals.coupon_discount == 0

        with pytest.raises(HTTPException) as exc_info:
            await CartService.remove_coupon(ALICE, db)
        assert exc_info.value.status_code == 404


class TestConcurrentWrites:
    """Test optimistic version checks on cart writes."""

    @pytest.mark.asyncio
    async def test_conflicting_write_is_retried(self, db, paneer):
        await CartService.add_item(ALICE, add_request(paneer), db)
        original_replace = db.carts.replace_one
        calls = []

        async def replace_after_concurrent_write(query, replacement):
            if not calls:
                # Another request adds a unit between our load and our write
                stored = db.carts.documents[0]
                stored["items"][0]["quantity"] += 1
                stored["version"] += 1
            calls.append(query)
            return await original_replace(query, replacement)

        db.carts.replace_one = replace_after_concurrent_write
        snapshot = await CartService.add_item(ALICE, add_request(paneer), db)

        assert len(calls) == 2
        assert snapshot.items[0].quantity == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_conflicts(self, db, paneer):
        await CartService.add_item(ALICE, add_request(paneer), db)

        async def always_stale(query, replacement):
            return SimpleNamespace(matched_count=0, modified_count=0)

        db.carts.replace_one = always_stale
        with pytest.raises(HTTPException) as exc_info:
            await CartService.add_item(ALICE, add_request(paneer), db)
        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "Cart was modified concurrently, please retry"

