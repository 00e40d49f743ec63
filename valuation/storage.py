"""
Raw file storage — store the uploaded bytes, hand back a reference.
"""

import logging
import os
import uuid

from valuation import config
from valuation.errors import StorageFailure

logger = logging.getLogger(__name__)


class LocalFileStorage:
    """Stores files under a directory; the reference is the stored path."""

    def __init__(self, root: str | None = None):
        self.root = root or config.UPLOAD_DIR

    def save(self, data: bytes, filename: str) -> str:
        ext = os.path.splitext(filename)[1].lower() or ".pdf"
        dest = os.path.join(self.root, f"{uuid.uuid4()}{ext}")
        try:
            os.makedirs(self.root, exist_ok=True)
            with open(dest, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageFailure(f"Could not store {filename}: {e}") from e
        logger.info("Stored %s (%d bytes) → %s", filename, len(data), dest)
        return dest

    def load(self, ref: str) -> bytes:
        try:
            with open(ref, "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageFailure(f"Could not read {ref}: {e}") from e

    def delete(self, ref: str) -> bool:
        try:
            os.remove(ref)
        except FileNotFoundError:
            return False
        return True
