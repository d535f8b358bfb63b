import re
from typing import List, Optional
from datetime import datetime
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.core.config import settings
from app.models.cart import Decrement, Increment, QuantityOperation, Remove, SetTo
from app.utils.service_type import SERVICE_TYPES, normalize_service_type

CART_CODE_PATTERN = re.compile(r"^CART\d{4}$")


class SelectionInput(BaseModel):
    """Customization or add-on picked in an add-to-cart request."""
    id: str = Field(
        validation_alias=AliasChoices(
            "id", "customizationId", "customization_id", "addOnId", "add_on_id"
        )
    )
    quantity: Optional[int] = Field(default=None, ge=0, le=settings.MAX_SELECTION_QUANTITY)

    @model_validator(mode="before")
    @classmethod
    def accept_bare_id(cls, value):
        # Older clients send plain id strings
        if isinstance(value, str):
            return {"id": value}
        return value


class AddToCartRequest(BaseModel):
    """
    Schema for adding a food to the cart.

    `quantity` also accepts the legacy JSON value:
    true (increment), false (decrement), 0 (remove) or N > 0 (set to N).
    """
    food_id: str = Field(validation_alias=AliasChoices("food_id", "foodId"))
    quantity: QuantityOperation = Field(default_factory=Increment)
    service_type: str = Field(validation_alias=AliasChoices("service_type", "serviceType"))
    customizations: Optional[List[SelectionInput]] = None  # None when not sent
    add_ons: Optional[List[SelectionInput]] = Field(
        default=None,
        validation_alias=AliasChoices("add_ons", "addOns")
    )
    notes: Optional[str] = Field(default=None, max_length=500)
    update_add_ons: bool = Field(
        default=False,
        validation_alias=AliasChoices("update_add_ons", "updateAddOns")
    )

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "foodId": "6650c0f2a1b2c3d4e5f60718",
                "quantity": True,
                "serviceType": "Takeaway",
                "customizations": [],
                "addOns": [{"addOnId": "6650c0f2a1b2c3d4e5f60719", "quantity": 1}],
                "notes": "Less spicy"
            }
        }

    @field_validator("quantity", mode="before")
    @classmethod
    def parse_legacy_quantity(cls, value):
        if isinstance(value, (dict, Increment, Decrement, SetTo, Remove)):
            return value

        # bool is a subclass of int, check it first
        if isinstance(value, bool):
            return {"kind": "increment"} if value else {"kind": "decrement"}

        if isinstance(value, float) and value.is_integer():
            value = int(value)

        if not isinstance(value, int):
            raise ValueError("Quantity must be boolean, 0, or a positive number")

        if value < 0:
            raise ValueError("Quantity cannot be negative. Use 0 to remove item.")
        if value == 0:
            return {"kind": "remove"}
        if value > settings.MAX_ITEM_QUANTITY:
            raise ValueError(f"Quantity cannot exceed {settings.MAX_ITEM_QUANTITY}")

        return {"kind": "set", "quantity": value}

    @field_validator("service_type")
    @classmethod
    def validate_service_type(cls, value):
        normalized = normalize_service_type(value)
        if normalized is None:
            raise ValueError(
                f"Invalid serviceType. Allowed values: {', '.join(SERVICE_TYPES)}"
            )
        return normalized

    @field_validator("notes")
    @classmethod
    def strip_notes(cls, value):
        if value is None:
            return None
        return value.strip() or None


class ConnectCartRequest(BaseModel):
    """Schema for joining another user's cart by its share code."""
    cart_code: str = Field(validation_alias=AliasChoices("cart_code", "cartCode"))

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "cartCode": "CART0420"
            }
        }

    @field_validator("cart_code", mode="before")
    @classmethod
    def normalize_cart_code(cls, value):
        if not isinstance(value, str):
            raise ValueError("Cart code is required")
        code = value.strip().upper()
        if not CART_CODE_PATTERN.match(code):
            raise ValueError("Cart code must look like CART1234")
        return code


class ApplyCouponRequest(BaseModel):
    """Schema for applying a coupon to the cart."""
    code: str = Field(min_length=1, max_length=50)

    class Config:
        json_schema_extra = {
            "example": {
                "code": "WELCOME50"
            }
        }

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value):
        return value.strip().upper()


class CamelModel(BaseModel):
    """Response base serialized with camelCase keys."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class SelectedOptionResponse(CamelModel):
    id: str
    name: str
    price: float
    quantity: int


class CartLineResponse(CamelModel):
    """Schema for a cart line."""
    id: str
    food_id: str
    food_name: str
    food_image: Optional[str] = None
    food_type: str
    quantity: int
    base_price: float
    discount_price: Optional[float] = None
    effective_price: float
    customizations: List[SelectedOptionResponse] = Field(default_factory=list)
    add_ons: List[SelectedOptionResponse] = Field(default_factory=list)
    is_prebook: bool = False
    packing_charge: float = 0
    item_total: float
    notes: Optional[str] = None


class CartVendorResponse(CamelModel):
    id: str
    name: Optional[str] = None
    profile_image: Optional[str] = None
    place: Optional[str] = None
    gst_percentage: float = 0


class CartTotalsResponse(CamelModel):
    sub_total: float = 0
    add_on_total: float = 0
    customization_total: float = 0
    packing_charge_total: float = 0
    discount_total: float = 0
    coupon_discount: float = 0
    tax_amount: float = 0
    tax_percentage: float = 0
    grand_total: float = 0
    item_count: int = 0


class CartResponse(CamelModel):
    """Schema for the cart snapshot. All fields are empty when there is no cart."""
    id: Optional[str] = None
    cart_code: Optional[str] = None
    user: Optional[str] = None
    service_type: Optional[str] = None
    is_prebook_cart: bool = False
    vendor: Optional[CartVendorResponse] = None
    items: List[CartLineResponse] = Field(default_factory=list)
    coupon_code: Optional[str] = None
    totals: CartTotalsResponse = Field(default_factory=CartTotalsResponse)
    last_updated_at: Optional[datetime] = None


class AvailableOption(CamelModel):
    id: str
    name: str
    price: float
    image: Optional[str] = None


class AvailableSelectionsResponse(CamelModel):
    """Add-ons and customizations of a food not yet selected on a line."""
    food_id: str
    food_name: str
    add_ons: List[AvailableOption] = Field(default_factory=list)
    customizations: List[AvailableOption] = Field(default_factory=list)
