from typing import Optional
from pydantic import BaseModel, Field

from app.models.base import MongoDocument


class VendorAddress(BaseModel):
    """Postal address of a vendor."""
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


class Vendor(MongoDocument):
    """Vendor profile fields the cart needs."""
    restaurant_name: str
    profile_image: Optional[str] = None
    address: Optional[VendorAddress] = None
    gst_percentage: float = Field(default=0, ge=0, le=100)

    @property
    def place(self) -> Optional[str]:
        return self.address.city if self.address else None
