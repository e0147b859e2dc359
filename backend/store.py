"""
Persistence adapter over the document store.

Owns the ``products`` and ``carousel`` collections. Every driver error
surfaces as ``StoreFailure``; callers never see pymongo exceptions.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from .errors import StoreFailure

CAROUSEL_ID = "home_carousel"


@contextmanager
def translate_store_errors(operation: str):
    try:
        yield
    except PyMongoError as exc:
        raise StoreFailure(f"Store operation '{operation}' failed: {exc}") from exc


class Store:
    def __init__(self, database):
        self.db = database
        self.products = database.products
        self.carousel = database.carousel

    # Products

    def insert_product(self, document: Dict) -> Dict:
        with translate_store_errors("insert_product"):
            result = self.products.insert_one(document)
            return self.products.find_one({"_id": result.inserted_id})

    def find_products(self, query: Optional[Dict] = None) -> List[Dict]:
        with translate_store_errors("find_products"):
            return list(self.products.find(query or {}).sort("created_at", -1))

    def find_product(self, object_id: ObjectId) -> Optional[Dict]:
        with translate_store_errors("find_product"):
            return self.products.find_one({"_id": object_id})

    def update_product(self, object_id: ObjectId, fields: Dict) -> Optional[Dict]:
        with translate_store_errors("update_product"):
            return self.products.find_one_and_update(
                {"_id": object_id},
                {"$set": {**fields, "updated_at": datetime.utcnow()}},
                return_document=ReturnDocument.AFTER,
            )

    def delete_product(self, object_id: ObjectId) -> bool:
        with translate_store_errors("delete_product"):
            result = self.products.delete_one({"_id": object_id})
            return result.deleted_count == 1

    # Carousel

    def find_carousel(self) -> Optional[Dict]:
        with translate_store_errors("find_carousel"):
            return self.carousel.find_one({"_id": CAROUSEL_ID})

    def get_or_create_carousel(self) -> Dict:
        with translate_store_errors("get_or_create_carousel"):
            return self.carousel.find_one_and_update(
                {"_id": CAROUSEL_ID},
                {"$setOnInsert": {"images": [], "version": 0}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )

    def replace_carousel_images(self, images: List[str], expected_version: int) -> bool:
        """Write ``images`` only if nobody changed the carousel since it was read."""
        with translate_store_errors("replace_carousel_images"):
            result = self.carousel.update_one(
                {"_id": CAROUSEL_ID, "version": expected_version},
                {
                    "$set": {"images": list(images), "updated_at": datetime.utcnow()},
                    "$inc": {"version": 1},
                },
            )
            return result.modified_count == 1

    def reset_carousel(self) -> None:
        with translate_store_errors("reset_carousel"):
            self.carousel.update_one(
                {"_id": CAROUSEL_ID},
                {
                    "$set": {"images": [], "updated_at": datetime.utcnow()},
                    "$inc": {"version": 1},
                },
                upsert=True,
            )
