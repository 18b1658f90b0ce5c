"""Shared fixtures: scripted provider transports and temporary stores."""

import json

import httpx
import pytest

from fluxstudio.core.types import GenerationJob, PollResult
from fluxstudio.image.provider_config import FluxSettings
from fluxstudio.storage.ephemeral_store import EphemeralImageStore
from fluxstudio.storage.file_store import FileImageStore


API_BASE = "https://api.test"
POLLING_URL = f"{API_BASE}/v1/get_result?id=job-1"
PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image-bytes"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path):
    return FluxSettings(
        api_base=API_BASE,
        submit_timeout=30,
        poll_timeout=10,
        download_timeout=30,
        max_attempts=60,
        poll_interval=0,
        images_dir=str(tmp_path / "generated-images"),
        metadata_dir=str(tmp_path / "image-metadata"),
        public_prefix="/generated-images",
        ephemeral_path=None,
        store_url=None,
    )


@pytest.fixture
def file_store(settings):
    return FileImageStore.from_settings(settings)


@pytest.fixture
def ephemeral_store():
    return EphemeralImageStore()


class FakeProvider:
    """httpx handler imitating the provider and an asset host.

    `poll_responses` items are JSON dicts, `httpx.Response` objects or
    exceptions to raise; the last item repeats once the script runs out.
    """

    def __init__(self, poll_responses, job_id="job-1", asset_bytes=PNG_BYTES, asset_status=200):
        self.poll_responses = list(poll_responses)
        self.job_id = job_id
        self.asset_bytes = asset_bytes
        self.asset_status = asset_status
        self.submitted = []
        self.submit_headers = []
        self.poll_count = 0
        self.asset_requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.test" and request.url.path.startswith("/v1/flux-"):
            self.submitted.append(json.loads(request.content))
            self.submit_headers.append(request.headers)
            return httpx.Response(200, json={"id": self.job_id, "polling_url": POLLING_URL})

        if request.url.host == "api.test" and request.url.path == "/v1/get_result":
            self.poll_count += 1
            item = self.poll_responses.pop(0) if len(self.poll_responses) > 1 else self.poll_responses[0]
            if isinstance(item, Exception):
                raise item
            if isinstance(item, httpx.Response):
                return item
            return httpx.Response(200, json=item)

        self.asset_requests.append(request)
        if self.asset_status != 200:
            return httpx.Response(self.asset_status, json={"error": "asset unavailable"})
        return httpx.Response(200, content=self.asset_bytes, headers={"content-type": "image/png"})

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)


class ScriptedClient:
    """In-memory stand-in for `FluxClient` used by orchestrator tests."""

    def __init__(self, settings, poll_items, submit_error=None):
        self.settings = settings
        self.poll_items = list(poll_items)
        self.submit_error = submit_error
        self.polls = 0

    async def submit(self, model, request):
        if self.submit_error is not None:
            raise self.submit_error
        return GenerationJob(id="job-1", polling_url=POLLING_URL, model=str(model))

    async def poll(self, polling_url):
        self.polls += 1
        item = self.poll_items.pop(0) if len(self.poll_items) > 1 else self.poll_items[0]
        if isinstance(item, Exception):
            raise item
        return PollResult.from_payload(item)


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def make_scripted_client(settings):
    def factory(poll_items, submit_error=None):
        return ScriptedClient(settings, poll_items, submit_error=submit_error)

    return factory
