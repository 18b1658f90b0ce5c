"""Ephemeral client-local image store.

Purpose of this abstraction:
    Fallback tier used when durable storage is unavailable, and the only tier
    for images whose asset could not be downloaded. Records are held in a
    thread-safe in-process list and optionally mirrored to a JSON file so a
    restarted client still sees them.

Record shape:
    `GeneratedImage.to_record()`: metadata plus `url` and, when the raster
    could not reach durable storage, base64 `data` used by reconciliation.

Failure handling:
    - Mirror write failures raise `StorageError` and leave memory unchanged.
    - An unreadable mirror on load is logged and treated as empty.
"""

import json
import logging
import os
import threading

from fluxstudio.core.errors import StorageError
from fluxstudio.core.types import GeneratedImage
from fluxstudio.storage.file_store import atomic_json_save


logger = logging.getLogger(__name__)


def sort_newest_first(images):
    return sorted(images, key=lambda image: image.timestamp, reverse=True)


class EphemeralImageStore:
    """In-process store with an optional JSON mirror.

    Args:
        path: Mirror file path, or `None` for memory only.
    """

    def __init__(self, path=None):
        self.path = path
        self._lock = threading.Lock()
        self._images = self._load()

    def _load(self):
        if not self.path or not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.exception("Failed to load ephemeral image store from %s", self.path)
            return []

        images = []
        for record in data if isinstance(data, list) else []:
            try:
                images.append(GeneratedImage.from_record(record))
            except (AttributeError, TypeError, ValueError):
                logger.warning("Skipping malformed ephemeral record in %s", self.path)
        return images

    def _persist(self, images):
        if not self.path:
            return
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            atomic_json_save(self.path, [image.to_record() for image in images])
        except OSError as exc:
            raise StorageError(f"Failed to write ephemeral image store {self.path}") from exc

    def _replace(self, images):
        self._persist(images)
        self._images = images

    def add(self, image: GeneratedImage):
        """Insert or replace the record for `image.id`."""
        with self._lock:
            remaining = [item for item in self._images if item.id != image.id]
            self._replace([image] + remaining)

    def list_images(self) -> list[GeneratedImage]:
        with self._lock:
            return sort_newest_first(self._images)

    def get(self, image_id):
        with self._lock:
            for image in self._images:
                if image.id == image_id:
                    return image
        return None

    def remove(self, image_id) -> bool:
        with self._lock:
            remaining = [item for item in self._images if item.id != image_id]
            if len(remaining) == len(self._images):
                return False
            self._replace(remaining)
            return True

    def clear(self):
        with self._lock:
            self._replace([])

    def __len__(self):
        with self._lock:
            return len(self._images)
