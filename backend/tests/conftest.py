"""
Shared fixtures: an in-memory stand-in for the Motor database and builders
for catalog documents.
"""
import copy
from types import SimpleNamespace

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError


def _matches(document: dict, query: dict) -> bool:
    return all(document.get(key) == value for key, value in query.items())


class FakeCollection:
    """Async collection double covering the Motor calls the services make."""

    def __init__(self, unique=(), sparse=()):
        self.documents = []
        self.unique = tuple(unique)
        self.sparse = set(sparse)

    def seed(self, document: dict) -> dict:
        document = copy.deepcopy(document)
        document.setdefault("_id", ObjectId())
        self.documents.append(document)
        return document

    def _check_unique(self, document: dict, ignore_id=None):
        for key in self.unique:
            value = document.get(key)
            if value is None and key in self.sparse:
                continue
            for other in self.documents:
                if other["_id"] != ignore_id and other.get(key) == value:
                    raise DuplicateKeyError(f"E11000 duplicate key error: {key}")

    def _find(self, query: dict):
        return [document for document in self.documents if _matches(document, query)]

    async def find_one(self, query: dict):
        found = self._find(query)
        return copy.deepcopy(found[0]) if found else None

    async def count_documents(self, query: dict, limit: int = 0):
        count = len(self._find(query))
        return min(count, limit) if limit else count

    async def insert_one(self, document: dict):
        document = copy.deepcopy(document)
        document.setdefault("_id", ObjectId())
        self._check_unique(document)
        self.documents.append(document)
        return SimpleNamespace(inserted_id=document["_id"])

    async def replace_one(self, query: dict, replacement: dict):
        found = self._find(query)
        if not found:
            return SimpleNamespace(matched_count=0, modified_count=0)
        stored = found[0]
        replacement = copy.deepcopy(replacement)
        replacement["_id"] = stored["_id"]
        self._check_unique(replacement, ignore_id=stored["_id"])
        self.documents[self.documents.index(stored)] = replacement
        return SimpleNamespace(matched_count=1, modified_count=1)

    @staticmethod
    def _apply_update(document: dict, update: dict):
        for key, value in update.get("$set", {}).items():
            document[key] = copy.deepcopy(value)
        for key in update.get("$unset", {}):
            document.pop(key, None)
        for key, value in update.get("$inc", {}).items():
            document[key] = document.get(key, 0) + value
        for key, value in update.get("$addToSet", {}).items():
            values = document.setdefault(key, [])
            if value not in values:
                values.append(value)
        for key, value in update.get("$pull", {}).items():
            document[key] = [item for item in document.get(key, []) if item != value]

    async def update_one(self, query: dict, update: dict):
        found = self._find(query)
        if not found:
            return SimpleNamespace(matched_count=0, modified_count=0)
        self._apply_update(found[0], update)
        return SimpleNamespace(matched_count=1, modified_count=1)

    async def update_many(self, query: dict, update: dict):
        found = self._find(query)
        for document in found:
            self._apply_update(document, update)
        return SimpleNamespace(matched_count=len(found), modified_count=len(found))

    async def delete_one(self, query: dict):
        found = self._find(query)
        if not found:
            return SimpleNamespace(deleted_count=0)
        self.documents.remove(found[0])
        return SimpleNamespace(deleted_count=1)

    async def create_index(self, keys, **kwargs):
        return "_".join(key for key, _ in keys)


class FakeDatabase:
    """Database double exposing collections as attributes, like Motor."""

    def __init__(self):
        self.carts = FakeCollection(unique=("user_id", "cart_code"), sparse=("cart_code",))
        self.coupons = FakeCollection(unique=("code",))
        self.foods = FakeCollection()
        self.vendors = FakeCollection()
        self.users = FakeCollection()


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def vendor(db):
    return db.vendors.seed({
        "restaurant_name": "Spice Route",
        "profile_image": "https://cdn.example.com/spice-route.png",
        "address": {"city": "Kochi"},
        "gst_percentage": 5
    })


def food_document(vendor_id, **overrides) -> dict:
    document = {
        "_id": ObjectId(),
        "food_name": "Paneer Tikka",
        "food_image": "https://cdn.example.com/paneer-tikka.png",
        "type": "veg",
        "vendor_id": str(vendor_id),
        "base_price": 299.99,
        "discount_price": 249.99,
        "packing_charges": 10,
        "order_types": ["Dine in", "Takeaway", "Delivery"],
        "is_prebook": False,
        "is_active": True,
        "customizations": [],
        "add_ons": [],
        "day_offers": []
    }
    document.update(overrides)
    return document


@pytest.fixture
def make_food(db, vendor):
    def _make_food(**overrides):
        return db.foods.seed(food_document(vendor["_id"], **overrides))
    return _make_food
