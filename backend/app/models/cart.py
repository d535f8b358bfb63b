from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union
from bson import ObjectId
from pydantic import BaseModel, Field

from app.core.config import settings
from app.models.base import MongoDocument


def new_line_id() -> str:
    return str(ObjectId())


class SelectedOption(BaseModel):
    """Customization or add-on selected on a cart line."""
    id: str
    name: str
    price: float = Field(ge=0)
    quantity: int = Field(default=1, ge=0)


class CartLine(BaseModel):
    """One row of a cart: a food selection and its modifiers."""
    id: str = Field(default_factory=new_line_id)
    food_id: str
    food_name: str
    food_image: Optional[str] = None
    food_type: str = "veg"
    quantity: int = Field(default=1, ge=1)
    base_price: float = Field(ge=0)
    discount_price: Optional[float] = None
    effective_price: float = Field(default=0, ge=0)
    uses_customization_price: bool = False
    customizations: List[SelectedOption] = Field(default_factory=list)
    add_ons: List[SelectedOption] = Field(default_factory=list)
    is_prebook: bool = False
    packing_charge: float = Field(default=0, ge=0)  # Per unit
    notes: Optional[str] = Field(None, max_length=500)
    item_total: float = 0
    added_at: datetime = Field(default_factory=datetime.utcnow)


class CartTotals(BaseModel):
    """Aggregate money fields, always derived from the lines."""
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


class Cart(MongoDocument):
    """Cart model for MongoDB."""
    user_id: str
    cart_code: Optional[str] = None
    vendor_id: Optional[str] = None
    service_type: Optional[str] = None
    items: List[CartLine] = Field(default_factory=list)
    is_prebook_cart: bool = False
    gst_percentage: float = Field(default=0, ge=0, le=100)
    totals: CartTotals = Field(default_factory=CartTotals)
    coupon_code: Optional[str] = None
    coupon_discount: float = 0
    connected_cart_id: Optional[str] = None  # Set on pointer carts
    connected_users: List[str] = Field(default_factory=list)
    version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    last_updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "user_id": "user123",
                "cart_code": "CART0420",
                "vendor_id": "vendor123",
                "service_type": "Takeaway",
                "items": [
                    {
                        "food_id": "food123",
                        "food_name": "Paneer Tikka",
                        "food_type": "veg",
                        "quantity": 2,
                        "base_price": 299.99,
                        "discount_price": 249.99,
                        "effective_price": 224.99,
                        "packing_charge": 10,
                        "item_total": 469.98
                    }
                ],
                "gst_percentage": 5,
                "connected_users": []
            }
        }

    @property
    def is_pointer(self) -> bool:
        return self.connected_cart_id is not None

    def find_line(self, line_id: str) -> Optional[CartLine]:
        return next((line for line in self.items if line.id == line_id), None)

    def remove_line(self, line_id: str) -> bool:
        remaining = [line for line in self.items if line.id != line_id]
        removed = len(remaining) != len(self.items)
        self.items = remaining
        return removed

    def to_document(self) -> dict:
        """Document stored in the carts collection (without `_id`)."""
        document = self.model_dump(exclude={"id"})
        # cart_code has a unique sparse index, so pointer carts must omit it
        if document.get("cart_code") is None:
            document.pop("cart_code", None)
        return document


# Quantity operations requested on a line

class Increment(BaseModel):
    kind: Literal["increment"] = "increment"


class Decrement(BaseModel):
    kind: Literal["decrement"] = "decrement"


class SetTo(BaseModel):
    kind: Literal["set"] = "set"
    quantity: int = Field(ge=1, le=settings.MAX_ITEM_QUANTITY)


class Remove(BaseModel):
    kind: Literal["remove"] = "remove"


QuantityOperation = Annotated[
    Union[Increment, Decrement, SetTo, Remove],
    Field(discriminator="kind")
]
