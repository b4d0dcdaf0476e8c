"""Post image storage.

Routes only depend on the ``ImageStore`` protocol; the local implementation
writes into a directory that the app serves as static files.
"""
import os
import secrets
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from errors import ValidationError
from logging_config import get_logger

logger = get_logger("images")

MAX_IMAGE_SIZE = 5 * 1024 * 1024

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


@dataclass(frozen=True)
class ImageConstraints:
    max_size: int = MAX_IMAGE_SIZE
    allowed_types: Tuple[str, ...] = tuple(EXTENSIONS)

    def check(self, data: bytes, content_type: Optional[str]) -> None:
        if content_type not in self.allowed_types:
            raise ValidationError("Invalid file type. Only images are allowed!",
                                  details=f"Received {content_type!r}")
        self.check_size(len(data))
        if not data:
            raise ValidationError("Uploaded file is empty")

    def check_size(self, size: int) -> None:
        if size > self.max_size:
            raise ValidationError("File too large",
                                  details=f"Maximum size is {self.max_size} bytes")


DEFAULT_CONSTRAINTS = ImageConstraints()


class ImageStore(Protocol):
    def store(self, data: bytes, content_type: Optional[str],
              constraints: ImageConstraints = DEFAULT_CONSTRAINTS) -> str:
        ...

    def delete(self, url: str) -> None:
        ...


class LocalImageStore:
    """Keeps images on the local filesystem under ``directory``"""

    def __init__(self, directory: str, url_prefix: str = "/uploads"):
        self.directory = directory
        self.url_prefix = url_prefix.rstrip("/")
        os.makedirs(self.directory, exist_ok=True)

    def store(self, data: bytes, content_type: Optional[str],
              constraints: ImageConstraints = DEFAULT_CONSTRAINTS) -> str:
        constraints.check(data, content_type)
        filename = f"postsImage-{secrets.token_hex(8)}{EXTENSIONS.get(content_type, '')}"
        with open(os.path.join(self.directory, filename), "wb") as handle:
            handle.write(data)
        logger.debug("Stored image %s (%d bytes)", filename, len(data))
        return f"{self.url_prefix}/{filename}"

    def path_for(self, url: str) -> str:
        if not url.startswith(self.url_prefix + "/"):
            raise ValueError(f"{url} is not managed by this store")
        filename = os.path.basename(url[len(self.url_prefix) + 1:])
        return os.path.join(self.directory, filename)

    def delete(self, url: str) -> None:
        os.remove(self.path_for(url))
        logger.debug("Deleted image %s", url)


def discard_image(store: ImageStore, url: Optional[str]) -> None:
    """Delete an image that is no longer referenced; failures are only logged"""
    if not url:
        return
    try:
        store.delete(url)
    except (OSError, ValueError) as exc:
        logger.warning("Failed to delete old image %s: %s", url, exc)
