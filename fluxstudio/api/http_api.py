"""
HTTP service for Flux Studio.

Architectural role:
- Proxy generation and polling calls to the FLUX Kontext provider so
  browser-style clients never talk to the provider directly.
- Proxy downloads of provider-hosted assets.
- Expose the durable image store (raster files + JSON metadata).

Endpoint responsibilities:
- `POST /flux/generate`: validate `apiKey`/`model`, forward params upstream.
- `POST /flux/poll`: validate `pollingUrl`/`apiKey`, forward one status check.
- `POST /flux/download`: fetch `imageUrl`, return `{base64, contentType}`.
- `POST /images/store`: write raster + metadata, return the public URL.
- `GET /images/list`: metadata records with `url`, newest first.
- `DELETE /images/delete`: remove raster + metadata (missing files are fine).
- `GET /health`: liveness.

Input validation behavior:
- Bodies are parsed as raw JSON objects; missing required fields -> HTTP 400
  `{"error": ...}`.
- Image metadata is validated with a pydantic model.

Error handling strategy:
- Every `FluxError` is rendered as `{"error": message}` with the error's
  status; upstream and download statuses are propagated unchanged.

Side effects:
- Creates the images directory at import so static serving can mount it.
- Emits verbose request logs only when `DEBUG == "true"`.
"""

from dotenv import load_dotenv

load_dotenv()

import asyncio
import base64
import binascii
import logging
import os

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as SchemaValidationError

from fluxstudio.core.errors import FluxError, ValidationError
from fluxstudio.core.types import FluxModel, parse_timestamp
from fluxstudio.image.client import FluxClient
from fluxstudio.image.provider_config import FluxSettings
from fluxstudio.storage.file_store import FileImageStore


logger = logging.getLogger(__name__)

# Sensitive request/response debug logging is opt-in.
DEBUG = os.getenv("DEBUG") == "true"

settings = FluxSettings()

app = FastAPI(
    title="Flux Studio",
    description="Proxy and image store for FLUX Kontext generation jobs.",
    version="0.1.0",
)

os.makedirs(settings.images_dir, exist_ok=True)
app.mount(
    settings.public_prefix,
    StaticFiles(directory=settings.images_dir, check_dir=False),
    name="generated-images",
)


# ============================================================
# Dependencies (overridden in tests)
# ============================================================

def get_settings() -> FluxSettings:
    return settings


def get_upstream_transport():
    """Return the httpx transport for provider calls (`None` = network)."""
    return None


def get_image_store() -> FileImageStore:
    return FileImageStore.from_settings(settings)


# ============================================================
# Schemas and helpers
# ============================================================

class ImageMetadata(BaseModel):
    """Metadata persisted next to each stored raster."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    prompt: str = ""
    model: str = ""
    aspectRatio: str = ""
    timestamp: str

    @field_validator("timestamp")
    @classmethod
    def _check_timestamp(cls, value):
        parse_timestamp(value)
        return value


def error_response(status_code, message):
    return JSONResponse(status_code=status_code, content={"error": message})


async def read_json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _has_text(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


@app.exception_handler(FluxError)
async def flux_error_handler(request: Request, exc: FluxError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return error_response(exc.status_code, exc.message)


# ============================================================
# Provider proxy
# ============================================================

@app.post("/flux/generate")
async def flux_generate(
    request: Request,
    transport=Depends(get_upstream_transport),
    current_settings: FluxSettings = Depends(get_settings),
):
    """Forward a generation request; returns the provider JSON unchanged."""
    body = await read_json_body(request)
    api_key = body.pop("apiKey", None)
    model = body.pop("model", None)

    if not _has_text(api_key):
        return error_response(400, "API key is required")
    if not isinstance(model, str) or model not in {variant.value for variant in FluxModel}:
        return error_response(400, "Valid model is required (flux-kontext-pro or flux-kontext-max)")

    if DEBUG:
        logger.info("Generate proxy model=%s params=%s", model, sorted(body))

    client = FluxClient(api_key, settings=current_settings, transport=transport)
    return await client.request_generation(model, body)


@app.post("/flux/poll")
async def flux_poll(
    request: Request,
    transport=Depends(get_upstream_transport),
    current_settings: FluxSettings = Depends(get_settings),
):
    """Forward one status check; returns the provider JSON unchanged."""
    body = await read_json_body(request)
    api_key = body.get("apiKey")
    polling_url = body.get("pollingUrl")

    if not _has_text(api_key):
        return error_response(400, "API key is required")
    if not _has_text(polling_url):
        return error_response(400, "Polling URL is required")

    client = FluxClient(api_key, settings=current_settings, transport=transport)
    data = await client.fetch_status(polling_url)

    if DEBUG:
        logger.info(
            "Poll proxy id=%s status=%s has_result=%s progress=%s",
            data.get("id"),
            data.get("status"),
            bool(data.get("result")),
            data.get("progress"),
        )
    return data


@app.post("/flux/download")
async def flux_download(
    request: Request,
    transport=Depends(get_upstream_transport),
    current_settings: FluxSettings = Depends(get_settings),
):
    """Download a provider-hosted asset and return it base64-encoded."""
    body = await read_json_body(request)
    image_url = body.get("imageUrl")
    if not _has_text(image_url):
        return error_response(400, "Image URL is required")

    client = FluxClient(None, settings=current_settings, transport=transport)
    asset = await client.fetch_remote_asset(image_url)
    return {
        "base64": base64.b64encode(asset.data).decode("ascii"),
        "contentType": asset.content_type,
    }


# ============================================================
# Image store
# ============================================================

@app.post("/images/store")
async def images_store(request: Request, store: FileImageStore = Depends(get_image_store)):
    body = await read_json_body(request)
    image_id = body.get("imageId")
    base64_data = body.get("base64Data")
    metadata = body.get("metadata")

    if not _has_text(image_id) or not _has_text(base64_data):
        return error_response(400, "Image ID and base64 data are required")

    try:
        data = base64.b64decode(base64_data, validate=True)
    except (binascii.Error, ValueError):
        return error_response(400, "base64Data is not valid base64")

    record = None
    if metadata is not None:
        if not isinstance(metadata, dict):
            return error_response(400, "metadata must be an object")
        try:
            record = ImageMetadata.model_validate(metadata).model_dump(exclude_none=True)
        except SchemaValidationError as exc:
            fields = ", ".join(str(error["loc"][0]) for error in exc.errors() if error.get("loc"))
            return error_response(400, f"Invalid metadata: {fields or 'unreadable'}")

    image_url = await asyncio.to_thread(store.store_sync, image_id, data, record)
    return {"success": True, "imageUrl": image_url, "imageId": image_id}


@app.get("/images/list")
async def images_list(store: FileImageStore = Depends(get_image_store)):
    records = await asyncio.to_thread(store.list_records_sync)
    return {"images": records}


@app.delete("/images/delete")
async def images_delete(request: Request, store: FileImageStore = Depends(get_image_store)):
    body = await read_json_body(request)
    image_id = body.get("imageId")
    if not _has_text(image_id):
        return error_response(400, "Image ID is required")

    await asyncio.to_thread(store.delete_sync, image_id)
    return {"success": True, "imageId": image_id}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
