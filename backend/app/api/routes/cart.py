from fastapi import APIRouter, Depends, status
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.api.deps import get_db, get_current_user
from app.schemas.cart import (
    AddToCartRequest,
    ApplyCouponRequest,
    AvailableSelectionsResponse,
    CartResponse,
    ConnectCartRequest
)
from app.services.cart_service import CartService

router = APIRouter()


@router.get("", response_model=CartResponse)
async def get_cart(
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Get the current user's cart.

    Returns the connected cart when the user joined one, otherwise the
    user's own cart. An empty snapshot is returned when there is no cart.
    """
    user_id = str(current_user["_id"])
    return await CartService.get_cart(user_id, db)


@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def add_to_cart(
    request: AddToCartRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Add a food to the cart.

    `quantity`:
    - true: add one (creates the line if needed)
    - false: remove one, the line goes away at 0
    - 0: remove the line
    - N > 0: set the line quantity to N

    Validates:
    - Food exists and is offered for the service type
    - Cart vendor, service type and prebook rules
    - Customization and add-on ids
    """
    user_id = str(current_user["_id"])
    return await CartService.add_item(user_id, request, db)


@router.delete("/items/{line_id}", response_model=CartResponse)
async def remove_from_cart(
    line_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Remove a line from the cart.
    """
    user_id = str(current_user["_id"])
    return await CartService.remove_line(user_id, line_id, db)


@router.get("/items/{line_id}/addons", response_model=AvailableSelectionsResponse)
async def get_available_addons(
    line_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    List the add-ons and customizations of a line's food that are not on the line yet.
    """
    user_id = str(current_user["_id"])
    return await CartService.list_available_selections(user_id, line_id, db)


@router.delete("", response_model=CartResponse)
async def clear_cart(
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Clear the cart.

    Users connected to the cart are disconnected.
    """
    user_id = str(current_user["_id"])
    return await CartService.clear_cart(user_id, db)


@router.post("/connect", response_model=CartResponse)
async def connect_cart(
    request: ConnectCartRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Join another user's cart with its share code (e.g. CART0420).

    The user's own cart must be empty.
    """
    user_id = str(current_user["_id"])
    return await CartService.connect_cart(user_id, request.cart_code, db)


@router.post("/disconnect", response_model=CartResponse)
async def disconnect_cart(
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Leave the connected cart.
    """
    user_id = str(current_user["_id"])
    return await CartService.disconnect_cart(user_id, db)


@router.post("/coupon", response_model=CartResponse)
async def apply_coupon(
    request: ApplyCouponRequest,
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Apply a coupon to the cart.

    The coupon is checked again after every cart change and dropped when it
    no longer applies.
    """
    user_id = str(current_user["_id"])
    return await CartService.apply_coupon(user_id, request.code, db)


@router.delete("/coupon", response_model=CartResponse)
async def remove_coupon(
    current_user: dict = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """
    Remove the applied coupon.
    """
    user_id = str(current_user["_id"])
    return await CartService.remove_coupon(user_id, db)
