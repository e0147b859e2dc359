import logging
import os
from typing import Iterable, Optional
from urllib.parse import urljoin
from uuid import uuid4

from werkzeug.utils import secure_filename

from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}


class ImageUploads:
    """Stores uploaded images on disk and renders their public URLs."""

    def __init__(
        self,
        upload_folder: str,
        allowed_extensions: Optional[Iterable[str]] = None,
        base_url: Optional[str] = None,
    ):
        self.upload_folder = upload_folder
        self.allowed_extensions = set(allowed_extensions or DEFAULT_ALLOWED_EXTENSIONS)
        self.base_url = (base_url or "").strip()
        os.makedirs(self.upload_folder, exist_ok=True)

    def allowed_image_extension(self, filename: str) -> bool:
        extension = os.path.splitext(filename)[1].lower().lstrip(".")
        if not extension:
            return False
        return extension in self.allowed_extensions

    def save(self, image_file) -> str:
        if not image_file or not getattr(image_file, "filename", ""):
            raise ValidationError("An image file is required.")

        original_filename = secure_filename(image_file.filename)
        if not original_filename:
            raise ValidationError("Please choose a valid file name.")

        mimetype = str(getattr(image_file, "mimetype", "") or "")
        if not mimetype.startswith("image/"):
            logger.warning("Rejected upload %s with content type %r", original_filename, mimetype)
            raise ValidationError("Only image files are allowed.")

        if not self.allowed_image_extension(original_filename):
            logger.warning("Rejected upload %s with unsupported extension", original_filename)
            raise ValidationError(
                "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files."
            )

        extension = os.path.splitext(original_filename)[1].lower()
        unique_filename = f"{uuid4().hex}{extension}"
        destination = os.path.join(self.upload_folder, unique_filename)

        try:
            image_file.save(destination)
        except OSError:
            logger.exception("Could not store upload %s", unique_filename)
            raise ValidationError("We could not store the uploaded image. Please try again.")

        return unique_filename

    def remove(self, filename: Optional[str]) -> None:
        if not filename:
            return

        target = os.path.join(self.upload_folder, os.path.basename(str(filename)))
        try:
            os.remove(target)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Unable to remove upload %s: %s", filename, exc)

    def build_url(self, filename: Optional[str], host_url: Optional[str] = None) -> str:
        if not filename:
            return ""

        sanitized = str(filename).strip()
        if not sanitized:
            return ""

        base = self.base_url or host_url or "/"
        if not base.endswith("/"):
            base = f"{base}/"
        return urljoin(base, f"uploads/{sanitized}")
