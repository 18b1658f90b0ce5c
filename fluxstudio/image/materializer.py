"""Result materializer: turn a Ready poll result into a storable image.

Processing flow:
    1. Read `result.sample`.
    2. Remote `http(s)` URL -> download through `FluxClient.fetch_remote_asset`.
       A failed download keeps the URL as the asset reference and returns no
       bytes, which routes persistence to ephemeral-only storage.
    3. Anything else is inline base64 (optionally a `data:` URL) and is decoded
       locally without any network call.
    4. Build the `GeneratedImage` record (id = job id, timestamp = now).
"""

import base64
import binascii
import logging
from dataclasses import dataclass

from fluxstudio.core.errors import DownloadError, ValidationError
from fluxstudio.core.types import GeneratedImage, GenerationJob, PollResult, utc_now


logger = logging.getLogger(__name__)


@dataclass
class MaterializedImage:
    image: GeneratedImage
    data: bytes | None = None


def is_remote_sample(sample: str) -> bool:
    return sample.lower().startswith(("http://", "https://"))


def decode_inline_sample(sample: str) -> bytes:
    """Decode inline base64 image data, accepting a `data:` URL prefix.

    Raises:
        ValidationError: When the sample is not valid base64.
    """
    payload = sample
    if payload.startswith("data:"):
        _, _, payload = payload.partition(",")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Provider returned an undecodable image sample") from None


class ResultMaterializer:
    """Resolve asset bytes for a Ready job.

    Args:
        client: Object exposing async `fetch_remote_asset(url)`.
        on_progress: Optional callable receiving progress message strings.
    """

    def __init__(self, client, on_progress=None):
        self.client = client
        self.on_progress = on_progress

    async def materialize(
        self,
        job: GenerationJob,
        result: PollResult,
        *,
        prompt: str,
        model: str,
        aspect_ratio: str,
    ) -> MaterializedImage:
        sample = result.sample
        if not sample:
            raise ValidationError("Ready result carries no sample")

        image = GeneratedImage(
            id=job.id,
            url="",
            prompt=prompt,
            model=model,
            aspect_ratio=aspect_ratio,
            timestamp=utc_now(),
        )

        if not is_remote_sample(sample):
            return MaterializedImage(image=image, data=decode_inline_sample(sample))

        if self.on_progress is not None:
            self.on_progress("Downloading image...")
        try:
            asset = await self.client.fetch_remote_asset(sample)
        except DownloadError as exc:
            logger.warning("Asset download failed for job %s, keeping remote URL: %s", job.id, exc)
            image.url = sample
            return MaterializedImage(image=image, data=None)

        return MaterializedImage(image=image, data=asset.data)
