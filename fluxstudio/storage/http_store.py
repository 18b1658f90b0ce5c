"""Durable image store backed by the Flux Studio HTTP service (client side).

Talks to the image-store endpoints exposed by `fluxstudio.api.http_api`:
`POST /images/store`, `GET /images/list`, `DELETE /images/delete`.

Every transport failure or non-2xx response becomes `StorageError`, which
the persistence router treats as "durable storage unavailable".
"""

import base64
import logging

import httpx

from fluxstudio.core.errors import StorageError
from fluxstudio.core.types import GeneratedImage
from fluxstudio.image.client import extract_error_message


logger = logging.getLogger(__name__)


class HttpImageStore:
    """Remote durable store.

    Args:
        base_url: Service root, for example `http://127.0.0.1:8000`.
        timeout: Per-request deadline in seconds.
        transport: Optional httpx transport (tests use `ASGITransport`).
    """

    def __init__(self, base_url, timeout=30.0, transport=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _absolute(self, url):
        if url and url.startswith("/"):
            return f"{self.base_url}{url}"
        return url

    async def _call(self, method, path, json_body=None) -> dict:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=json_body)
        except httpx.RequestError as exc:
            raise StorageError(f"Image service unreachable: {exc.__class__.__name__}") from exc

        if not response.is_success:
            raise StorageError(extract_error_message(response, "Image service request failed"))
        try:
            body = response.json()
        except ValueError:
            raise StorageError("Image service returned a non-JSON response") from None
        if not isinstance(body, dict):
            raise StorageError("Image service returned an unexpected response shape")
        return body

    async def store(self, image: GeneratedImage, data: bytes) -> str:
        body = await self._call(
            "POST",
            "/images/store",
            {
                "imageId": image.id,
                "base64Data": base64.b64encode(data).decode("ascii"),
                "metadata": image.to_metadata(),
            },
        )
        if not body.get("success") or not body.get("imageUrl"):
            raise StorageError("Failed to store image on server")
        return self._absolute(body["imageUrl"])

    async def list_images(self) -> list[GeneratedImage]:
        body = await self._call("GET", "/images/list")
        images = []
        for record in body.get("images") or []:
            if not isinstance(record, dict):
                continue
            try:
                image = GeneratedImage.from_record(record)
            except (TypeError, ValueError):
                logger.warning("Skipping image record with invalid fields id=%r", record.get("id"))
                continue
            image.url = self._absolute(image.url)
            images.append(image)
        return images

    async def delete(self, image_id: str) -> None:
        await self._call("DELETE", "/images/delete", {"imageId": image_id})
