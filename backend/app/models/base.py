from typing import Optional
from bson import ObjectId
from pydantic import BaseModel, Field, field_validator


class MongoDocument(BaseModel):
    """Base for documents read from MongoDB, exposing `_id` as a string `id`."""
    id: Optional[str] = Field(None, alias="_id")

    @field_validator("id", mode="before")
    @classmethod
    def stringify_object_id(cls, value):
        if isinstance(value, ObjectId):
            return str(value)
        return value

    class Config:
        populate_by_name = True
