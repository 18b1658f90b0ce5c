"""Durable filesystem image store (server side).

Persisted layout:
    - `<images_dir>/<id>.png`: raw raster bytes.
    - `<metadata_dir>/<id>.json`: `{id, prompt, model, aspectRatio, timestamp}`.

Public URLs:
    `<public_prefix>/<id>.png`, served statically by `fluxstudio.api.http_api`.

Failure handling:
    - Invalid ids raise `ValidationError` before touching the filesystem.
    - Real I/O failures raise `StorageError`.
    - Missing files on delete are not errors.
    - Unreadable metadata files are logged and skipped while listing.

Concurrency:
    Blocking file I/O is pushed to a worker thread by the async methods so the
    event loop stays responsive. JSON writes are atomic (`.tmp` + `os.replace`).
"""

import asyncio
import json
import logging
import os
import re

from fluxstudio.core.errors import StorageError, ValidationError
from fluxstudio.core.types import GeneratedImage, parse_timestamp


logger = logging.getLogger(__name__)

IMAGE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def validate_image_id(image_id) -> str:
    """Return `image_id` if it is safe to use as a file name."""
    if not isinstance(image_id, str) or not IMAGE_ID_PATTERN.match(image_id) or ".." in image_id:
        raise ValidationError("Invalid image ID")
    return image_id


def atomic_json_save(path, data):
    """Persist JSON data atomically via temporary file replacement."""
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    os.replace(tmp, path)


def _sort_key(record):
    try:
        return parse_timestamp(record.get("timestamp")).timestamp()
    except (TypeError, ValueError):
        return float("-inf")


def sort_records_newest_first(records):
    return sorted(records, key=_sort_key, reverse=True)


class FileImageStore:
    """Raster + metadata files keyed by image id."""

    def __init__(self, images_dir, metadata_dir, public_prefix="/generated-images"):
        self.images_dir = str(images_dir)
        self.metadata_dir = str(metadata_dir)
        self.public_prefix = public_prefix.rstrip("/")

    @classmethod
    def from_settings(cls, settings):
        return cls(settings.images_dir, settings.metadata_dir, settings.public_prefix)

    def image_path(self, image_id):
        return os.path.join(self.images_dir, f"{validate_image_id(image_id)}.png")

    def metadata_path(self, image_id):
        return os.path.join(self.metadata_dir, f"{validate_image_id(image_id)}.json")

    def public_url(self, image_id):
        return f"{self.public_prefix}/{image_id}.png"

    # -----------------------------------------------------
    # Blocking implementations (used directly by the HTTP routes' threads)
    # -----------------------------------------------------

    def store_sync(self, image_id, data: bytes, metadata=None) -> str:
        """Write raster bytes and optional metadata; return the public URL."""
        image_path = self.image_path(image_id)
        metadata_path = self.metadata_path(image_id)
        try:
            os.makedirs(self.images_dir, exist_ok=True)
            os.makedirs(self.metadata_dir, exist_ok=True)
            with open(image_path, "wb") as f:
                f.write(data)
            if metadata is not None:
                record = dict(metadata)
                record["id"] = image_id
                atomic_json_save(metadata_path, record)
        except OSError as exc:
            raise StorageError(f"Failed to store image {image_id}") from exc

        logger.info("Image stored image_id=%s bytes=%d", image_id, len(data))
        return self.public_url(image_id)

    def list_records_sync(self) -> list[dict]:
        """Return metadata records with `url`, newest first."""
        if not os.path.isdir(self.metadata_dir):
            return []
        try:
            names = os.listdir(self.metadata_dir)
        except OSError as exc:
            raise StorageError("Failed to list images") from exc

        records = []
        for name in names:
            if not name.endswith(".json"):
                continue
            path = os.path.join(self.metadata_dir, name)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    record = json.load(f)
            except (OSError, ValueError):
                logger.exception("Failed to read metadata file %s", path)
                continue
            if not isinstance(record, dict):
                logger.warning("Skipping malformed metadata file %s", path)
                continue
            image_id = name[: -len(".json")]
            record.setdefault("id", image_id)
            record["url"] = self.public_url(image_id)
            records.append(record)

        return sort_records_newest_first(records)

    def delete_sync(self, image_id) -> bool:
        """Remove raster and metadata; return whether anything existed."""
        removed = False
        for path in (self.image_path(image_id), self.metadata_path(image_id)):
            try:
                os.remove(path)
                removed = True
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise StorageError(f"Failed to delete image {image_id}") from exc
        logger.info("Image deleted image_id=%s existed=%s", image_id, removed)
        return removed

    # -----------------------------------------------------
    # DurableStore protocol
    # -----------------------------------------------------

    async def store(self, image: GeneratedImage, data: bytes) -> str:
        return await asyncio.to_thread(self.store_sync, image.id, data, image.to_metadata())

    async def list_images(self) -> list[GeneratedImage]:
        records = await asyncio.to_thread(self.list_records_sync)
        images = []
        for record in records:
            try:
                images.append(GeneratedImage.from_record(record))
            except (TypeError, ValueError):
                logger.warning("Skipping metadata record with invalid fields id=%r", record.get("id"))
        return images

    async def delete(self, image_id: str) -> None:
        await asyncio.to_thread(self.delete_sync, image_id)
