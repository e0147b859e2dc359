import logging
import posixpath
from typing import List, Optional
from urllib.parse import quote, unquote, urljoin, urlparse

from .errors import CapacityExceeded, NotFound, StoreFailure, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CAROUSEL_CAPACITY = 5
REFERENCE_FORMATS = ("filename", "path", "url")
UPLOADS_PREFIX = "uploads/"


class ReferencePolicy:
    """
    Decides the one stored form of a carousel image reference.

    Incoming references may be a bare filename, a relative ``/uploads/...``
    path or an absolute URL. They are reduced to the filename and rendered
    in the configured format, so the same image always maps to the same
    string no matter how the client spelled it. Only absolute URLs are
    parsed as URLs; a bare name keeps any `#`, `?` or `%` it contains.
    """

    def __init__(self, reference_format: str = "filename", base_url: Optional[str] = None):
        normalized_format = str(reference_format or "").strip().lower()
        if normalized_format not in REFERENCE_FORMATS:
            raise ValueError(
                f"Unknown carousel reference format {reference_format!r}; "
                f"expected one of {', '.join(REFERENCE_FORMATS)}."
            )
        self.reference_format = normalized_format
        self.base_url = (base_url or "").strip()

    @staticmethod
    def extract_filename(raw_reference) -> str:
        value = str(raw_reference or "").strip()
        if not value:
            return ""
        if "://" in value or value.startswith("//"):
            value = unquote(urlparse(value).path)
        return posixpath.basename(value.rstrip("/"))

    def normalize(self, raw_reference, host_url: Optional[str] = None) -> str:
        filename = self.extract_filename(raw_reference)
        if not filename:
            raise ValidationError("An image reference is required.")

        if self.reference_format == "filename":
            return filename
        if self.reference_format == "path":
            return f"/{UPLOADS_PREFIX}{filename}"

        base = self.base_url or host_url or "/"
        if not base.endswith("/"):
            base = f"{base}/"
        return urljoin(base, f"{UPLOADS_PREFIX}{quote(filename)}")


class CarouselManager:
    """Bounded, ordered image sequence stored in a singleton document."""

    max_attempts = 5

    def __init__(self, store, capacity: int = DEFAULT_CAROUSEL_CAPACITY):
        self.store = store
        self.capacity = capacity

    def list_images(self) -> List[str]:
        document = self.store.find_carousel()
        if not document:
            return []
        return list(document.get("images") or [])

    def add_image(self, reference: str) -> List[str]:
        if not reference:
            raise ValidationError("An image reference is required.")

        for _ in range(self.max_attempts):
            document = self.store.get_or_create_carousel()
            images = list(document.get("images") or [])
            if len(images) >= self.capacity:
                raise CapacityExceeded(
                    f"The carousel already holds the maximum of {self.capacity} images."
                )

            images.append(reference)
            if self.store.replace_carousel_images(images, document.get("version", 0)):
                logger.info("Added %s to the carousel (%d/%d)", reference, len(images), self.capacity)
                return images
            logger.info("Carousel changed while adding %s; retrying", reference)

        raise StoreFailure("The carousel is being modified concurrently. Please try again.")

    def remove_image(self, reference: str) -> List[str]:
        for _ in range(self.max_attempts):
            document = self.store.find_carousel()
            if not document:
                raise NotFound("Carousel not found.")

            images = list(document.get("images") or [])
            if reference not in images:
                raise NotFound("Image not found in the carousel.")

            images.remove(reference)
            if self.store.replace_carousel_images(images, document.get("version", 0)):
                logger.info("Removed %s from the carousel", reference)
                return images
            logger.info("Carousel changed while removing %s; retrying", reference)

        raise StoreFailure("The carousel is being modified concurrently. Please try again.")

    def reset(self) -> None:
        self.store.reset_carousel()
        logger.info("Carousel reset")
