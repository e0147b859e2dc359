import logging
import re
from datetime import datetime
from typing import Dict, List, Optional

from bson import ObjectId

from .errors import InvalidIdentifier, NotFound, ValidationError

logger = logging.getLogger(__name__)

NUMERIC_TEXT = re.compile(r"^[+-]?([0-9]*[.])?[0-9]+$")
TRUTHY_FLAGS = {"true", "1", "yes", "on"}
FALSY_FLAGS = {"false", "0", "no", "off", ""}


def normalize_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_price(value) -> Optional[str]:
    """Return the text form of a numeric price, or None when it is not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float):
        text = str(int(value)) if value.is_integer() else repr(value)
    elif isinstance(value, int):
        text = str(value)
    else:
        text = str(value).strip()
    return text if NUMERIC_TEXT.match(text) else None


def parse_flag(value, field: str = "isNewRelease") -> bool:
    if isinstance(value, bool):
        return value
    normalized = normalize_text(value).lower()
    if normalized in TRUTHY_FLAGS:
        return True
    if normalized in FALSY_FLAGS:
        return False
    raise ValidationError(
        f"{field} must be true or false.",
        errors=[{"field": field, "message": f"{field} must be true or false."}],
    )


def parse_object_id(product_id) -> ObjectId:
    if isinstance(product_id, ObjectId):
        return product_id
    if not ObjectId.is_valid(str(product_id or "")):
        raise InvalidIdentifier("Invalid product identifier.")
    return ObjectId(str(product_id))


def serialize_product(product_document) -> Dict[str, object]:
    created_at = product_document.get("created_at")
    serialized = {
        "id": str(product_document.get("_id")),
        "name": product_document.get("name", ""),
        "description": product_document.get("description", ""),
        "price": product_document.get("price", ""),
        "imageUrl": product_document.get("imageUrl", ""),
        "isNewRelease": bool(product_document.get("isNewRelease", False)),
    }
    if isinstance(created_at, datetime):
        serialized["createdAt"] = created_at.isoformat() + "Z"
    return serialized


class ProductManager:
    """Validated lifecycle of product records."""

    def __init__(self, store):
        self.store = store

    def _validate(self, payload: Dict, *, require_price: bool, require_image: bool = True) -> Dict:
        errors: List[Dict[str, str]] = []
        fields = {
            "name": normalize_text(payload.get("name")),
            "description": normalize_text(payload.get("description")),
        }
        if not fields["name"]:
            errors.append({"field": "name", "message": "A product name is required."})
        if not fields["description"]:
            errors.append({"field": "description", "message": "A description is required."})

        if require_image:
            fields["imageUrl"] = normalize_text(payload.get("imageUrl"))
            if not fields["imageUrl"]:
                errors.append({"field": "imageUrl", "message": "An image URL is required."})

        if require_price:
            price = normalize_price(payload.get("price"))
            if price is None:
                errors.append({"field": "price", "message": "Price must be a number."})
            fields["price"] = price
        else:
            fields["price"] = normalize_text(payload.get("price"))

        if payload.get("isNewRelease") is not None:
            try:
                fields["isNewRelease"] = parse_flag(payload.get("isNewRelease"))
            except ValidationError as exc:
                errors.extend(exc.errors)

        if errors:
            raise ValidationError(errors[0]["message"], errors=errors)
        return fields

    def create(self, payload: Dict) -> Dict:
        """Create a product from a direct request; price must be numeric text."""
        fields = self._validate(payload, require_price=True)
        return self._insert(fields)

    def create_from_upload(self, payload: Dict, image_url: str) -> Dict:
        """
        Create a product whose image was just uploaded.

        Price is optional here and stored as given (empty text when absent);
        no numeric check is applied on this path.
        """
        fields = self._validate(payload, require_price=False, require_image=False)
        fields["imageUrl"] = normalize_text(image_url)
        if not fields["imageUrl"]:
            raise ValidationError("An image file is required.")
        return self._insert(fields)

    def ensure_valid_upload_fields(self, payload: Dict) -> None:
        self._validate(payload, require_price=False, require_image=False)

    def _insert(self, fields: Dict) -> Dict:
        document = {
            "name": fields["name"],
            "description": fields["description"],
            "price": fields.get("price") or "",
            "imageUrl": fields["imageUrl"],
            "isNewRelease": fields.get("isNewRelease", False),
            "created_at": datetime.utcnow(),
        }
        created = self.store.insert_product(document)
        logger.info("Created product %s (%s)", created["_id"], created["name"])
        return created

    def list(self, search_term: Optional[str] = None) -> List[Dict]:
        query = {}
        if normalize_text(search_term):
            query = {"name": {"$regex": re.escape(str(search_term)), "$options": "i"}}
        return self.store.find_products(query)

    def get(self, product_id) -> Dict:
        object_id = parse_object_id(product_id)
        product_document = self.store.find_product(object_id)
        if not product_document:
            raise NotFound("Product not found.")
        return product_document

    def update(self, product_id, payload: Dict) -> Dict:
        object_id = parse_object_id(product_id)
        fields = self._validate(payload, require_price=True)
        updated = self.store.update_product(object_id, fields)
        if not updated:
            raise NotFound("Product not found.")
        logger.info("Updated product %s", object_id)
        return updated

    def delete(self, product_id) -> None:
        object_id = parse_object_id(product_id)
        if not self.store.delete_product(object_id):
            raise NotFound("Product not found.")
        logger.info("Deleted product %s", object_id)

    def list_new_releases(self) -> List[Dict]:
        """Flagged products; an empty result is reported as NotFound."""
        releases = self.store.find_products({"isNewRelease": True})
        if not releases:
            raise NotFound("No new releases found.")
        return releases
