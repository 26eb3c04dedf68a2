"""
Document store backed by a local directory.

Locators are opaque to callers; deleting an unknown locator is a no-op so
purging is idempotent.
"""

import hashlib
import re
import uuid
from pathlib import Path

from .logger import get_logger

logger = get_logger()

_LOCATOR = re.compile(r"^[0-9a-f]{32}$")


def content_hash(document: bytes) -> str:
    return hashlib.sha256(document).hexdigest()


class DocumentStore:
    """Interface: ``store(bytes) -> locator``, ``load(locator)``, ``delete(locator)``."""

    def store(self, document: bytes) -> str:
        raise NotImplementedError

    def load(self, locator: str) -> bytes:
        raise NotImplementedError

    def delete(self, locator: str) -> None:
        raise NotImplementedError


class FileDocumentStore(DocumentStore):
    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, locator: str) -> Path:
        if not _LOCATOR.match(locator or ""):
            raise ValueError(f"Invalid document locator: {locator!r}")
        return self.root / locator[:2] / locator

    def store(self, document: bytes) -> str:
        locator = uuid.uuid4().hex
        path = self._path(locator)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(document)
        logger.debug("Stored document", locator=locator, size=len(document))
        return locator

    def load(self, locator: str) -> bytes:
        path = self._path(locator)
        if not path.exists():
            raise FileNotFoundError(f"Document {locator} is not in the store")
        return path.read_bytes()

    def delete(self, locator: str) -> None:
        path = self._path(locator)
        if path.exists():
            path.unlink()
            logger.debug("Deleted document", locator=locator)
