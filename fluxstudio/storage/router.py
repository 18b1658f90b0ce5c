"""Two-tier persistence router: durable first, ephemeral on failure.

Architectural role:
    Sole writer of `GeneratedImage` records. Callers never talk to a store
    directly; the router decides which tier receives each operation.

Fallback discipline:
    - save: durable; on `StorageError` the full record (with base64 data) goes
      to ephemeral storage and an inline `data:` URL is returned. Records
      without bytes (download failed) go to ephemeral storage only.
    - list: durable plus ephemeral-only records; if durable is empty or
      failing, ephemeral alone. Newest first.
    - delete: ephemeral and durable; durable I/O failures propagate.
    - clear_all: concurrent durable deletes, then an ephemeral wipe.
    - reconcile: migrate ephemeral records carrying data into durable storage.

Data is never silently dropped: `save` raises `StorageError` only when every
applicable tier failed.
"""

import asyncio
import base64
import binascii
import logging
from dataclasses import replace
from typing import Protocol

from fluxstudio.core.errors import StorageError
from fluxstudio.core.types import GeneratedImage
from fluxstudio.storage.ephemeral_store import sort_newest_first


logger = logging.getLogger(__name__)


class DurableStore(Protocol):
    """Async interface implemented by `FileImageStore` and `HttpImageStore`."""

    async def store(self, image: GeneratedImage, data: bytes) -> str:
        """Persist raster bytes and metadata; return a stable URL."""
        ...

    async def list_images(self) -> list[GeneratedImage]:
        ...

    async def delete(self, image_id: str) -> None:
        ...


def data_url(data: bytes, content_type="image/png") -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


class PersistenceRouter:
    """Route image persistence across a durable and an ephemeral tier."""

    def __init__(self, durable: DurableStore, ephemeral):
        self.durable = durable
        self.ephemeral = ephemeral

    async def save(self, image: GeneratedImage, data: bytes | None = None) -> str:
        """Persist `image` and return the URL it should be displayed from.

        Args:
            image: Record to persist (its `url` is used for URL-only saves).
            data: Raster bytes, or `None` when only a remote URL is known.

        Raises:
            StorageError: When neither tier accepted the record.
        """
        if data is None:
            try:
                self.ephemeral.add(replace(image, data=None))
            except StorageError as exc:
                raise StorageError(f"Failed to persist image {image.id}: {exc}") from exc
            logger.info("Image kept in ephemeral storage only image_id=%s", image.id)
            return image.url

        try:
            return await self.durable.store(replace(image, data=None), data)
        except StorageError as exc:
            logger.warning("Durable save failed for %s, falling back to ephemeral storage: %s", image.id, exc)

        inline_url = data_url(data)
        fallback = replace(
            image,
            url=inline_url,
            data=base64.b64encode(data).decode("ascii"),
        )
        try:
            self.ephemeral.add(fallback)
        except StorageError as exc:
            raise StorageError(
                f"Failed to persist image {image.id} in durable and ephemeral storage"
            ) from exc
        return inline_url

    async def list_images(self) -> list[GeneratedImage]:
        try:
            images = await self.durable.list_images()
        except StorageError as exc:
            logger.warning("Durable listing failed, using ephemeral storage: %s", exc)
            images = []

        local = self.ephemeral.list_images()
        if not images:
            return local

        # Ephemeral-only records (fallback saves, URL-only results) stay visible.
        durable_ids = {image.id for image in images}
        images = images + [image for image in local if image.id not in durable_ids]
        return sort_newest_first(images)

    async def delete(self, image_id: str):
        """Remove `image_id` from both tiers; absence is not an error."""
        self.ephemeral.remove(image_id)
        await self.durable.delete(image_id)

    def _wipe_ephemeral(self):
        logger.info("Clearing %d ephemeral image(s)", len(self.ephemeral))
        try:
            self.ephemeral.clear()
        except StorageError:
            logger.exception("Failed to clear ephemeral storage")

    async def clear_all(self) -> int:
        """Delete every record; return how many durable deletes succeeded.

        Partial durable failures are logged and left for the next listing.
        """
        try:
            images = await self.durable.list_images()
        except StorageError as exc:
            logger.warning("Durable enumeration failed, clearing ephemeral storage only: %s", exc)
            self._wipe_ephemeral()
            return 0

        results = await asyncio.gather(
            *(self.durable.delete(image.id) for image in images),
            return_exceptions=True,
        )
        deleted = 0
        for image, result in zip(images, results):
            if isinstance(result, BaseException):
                logger.warning("Failed to delete image %s: %s", image.id, result)
            else:
                deleted += 1

        self._wipe_ephemeral()
        logger.info("Cleared images deleted=%d failed=%d", deleted, len(images) - deleted)
        return deleted

    async def reconcile(self) -> int:
        """Move ephemeral records that carry data into durable storage.

        Oldest records migrate first. Stops at the first durable failure;
        URL-only records stay ephemeral.

        Returns:
            Number of records migrated.
        """
        migrated = 0
        for image in reversed(self.ephemeral.list_images()):
            if not image.data:
                continue
            try:
                raw = base64.b64decode(image.data, validate=True)
            except (binascii.Error, ValueError):
                logger.warning("Ephemeral record %s has undecodable data, skipping", image.id)
                continue

            try:
                await self.durable.store(replace(image, data=None), raw)
            except StorageError as exc:
                logger.info("Durable storage still unavailable, stopping reconciliation: %s", exc)
                break

            self.ephemeral.remove(image.id)
            migrated += 1

        if migrated:
            logger.info("Reconciled %d ephemeral image(s) into durable storage", migrated)
        return migrated

    async def run_reconciliation(self, interval: float, cancel=None):
        """Call `reconcile` every `interval` seconds until `cancel` fires."""
        while cancel is None or not cancel.cancelled:
            try:
                await self.reconcile()
            except StorageError:
                logger.exception("Reconciliation pass failed")

            if cancel is not None:
                if await cancel.wait(interval):
                    break
            else:
                await asyncio.sleep(interval)
