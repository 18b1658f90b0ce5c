import httpx
import pytest

from fluxstudio.core.errors import (
    AuthError,
    DownloadError,
    RequestTimeoutError,
    TransportError,
    UpstreamError,
    ValidationError,
)
from fluxstudio.core.types import GenerationRequest, PollStatus
from fluxstudio.image.client import FluxClient
from fluxstudio.image.provider_config import DOWNLOAD_USER_AGENT

from tests.conftest import POLLING_URL, PNG_BYTES


def client_for(handler, settings, api_key="test-key"):
    return FluxClient(api_key, settings=settings, transport=httpx.MockTransport(handler))


def unreachable(request):
    raise AssertionError(f"unexpected request to {request.url}")


@pytest.mark.anyio
async def test_submit_without_key_makes_no_request(settings):
    client = client_for(unreachable, settings, api_key="  ")

    with pytest.raises(AuthError, match="API key is required"):
        await client.submit("flux-kontext-pro", GenerationRequest(prompt="a red ball"))


@pytest.mark.anyio
async def test_submit_rejects_unknown_model(settings):
    client = client_for(unreachable, settings)

    with pytest.raises(ValidationError):
        await client.submit("flux-schnell", GenerationRequest(prompt="a red ball"))


@pytest.mark.anyio
async def test_submit_sends_key_header_and_payload(settings, make_provider):
    provider = make_provider([{"status": "Pending"}])
    client = FluxClient("test-key", settings=settings, transport=provider.transport)

    job = await client.submit("flux-kontext-max", GenerationRequest(prompt="a red ball", seed=7))

    assert job.id == "job-1"
    assert job.polling_url == POLLING_URL
    assert job.model == "flux-kontext-max"
    assert provider.submit_headers[0]["x-key"] == "test-key"
    assert provider.submitted[0]["prompt"] == "a red ball"
    assert provider.submitted[0]["seed"] == 7
    assert provider.submitted[0]["output_format"] == "png"


@pytest.mark.anyio
async def test_request_generation_accepts_provider_shaped_dict(settings, make_provider):
    provider = make_provider([{"status": "Pending"}])
    client = FluxClient("test-key", settings=settings, transport=provider.transport)

    body = await client.request_generation("flux-kontext-pro", {"prompt": "a cat", "aspect_ratio": "9:16"})

    assert body == {"id": "job-1", "polling_url": POLLING_URL}
    assert provider.submitted[0]["aspect_ratio"] == "9:16"


@pytest.mark.anyio
async def test_submit_missing_polling_url_is_upstream_error(settings):
    client = client_for(lambda request: httpx.Response(200, json={"id": "job-1"}), settings)

    with pytest.raises(UpstreamError) as excinfo:
        await client.submit("flux-kontext-pro", GenerationRequest(prompt="a red ball"))
    assert excinfo.value.status == 502


@pytest.mark.anyio
async def test_upstream_status_and_message_are_preserved(settings):
    client = client_for(lambda request: httpx.Response(402, json={"detail": "Insufficient credits"}), settings)

    with pytest.raises(UpstreamError) as excinfo:
        await client.submit("flux-kontext-pro", GenerationRequest(prompt="a red ball"))
    assert excinfo.value.status == 402
    assert excinfo.value.message == "Insufficient credits"


@pytest.mark.anyio
async def test_rejected_key_is_auth_error(settings):
    client = client_for(lambda request: httpx.Response(403, json={"error": "Forbidden"}), settings)

    with pytest.raises(AuthError) as excinfo:
        await client.fetch_status(POLLING_URL)
    assert excinfo.value.status_code == 403


@pytest.mark.anyio
async def test_poll_timeout_is_request_timeout(settings):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(RequestTimeoutError):
        await client_for(handler, settings).poll(POLLING_URL)


@pytest.mark.anyio
async def test_connection_failure_is_transport_error(settings):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportError):
        await client_for(handler, settings).poll(POLLING_URL)


@pytest.mark.anyio
async def test_non_json_body_is_upstream_error(settings):
    client = client_for(lambda request: httpx.Response(200, text="<html>"), settings)

    with pytest.raises(UpstreamError, match="non-JSON"):
        await client.fetch_status(POLLING_URL)


@pytest.mark.anyio
async def test_poll_parses_ready_result(settings):
    body = {"id": "job-1", "status": "Ready", "result": {"sample": "https://x/img.png", "seed": 3}}
    client = client_for(lambda request: httpx.Response(200, json=body), settings)

    result = await client.poll(POLLING_URL)

    assert result.status is PollStatus.READY
    assert result.sample == "https://x/img.png"
    assert result.seed == 3


@pytest.mark.anyio
async def test_fetch_status_requires_polling_url(settings):
    with pytest.raises(ValidationError, match="Polling URL is required"):
        await client_for(unreachable, settings).fetch_status("")


@pytest.mark.anyio
async def test_fetch_remote_asset_follows_redirects_without_key(settings):
    seen = []

    def handler(request):
        seen.append(request)
        if request.url.path == "/start.png":
            return httpx.Response(302, headers={"location": "https://cdn.test/final.png"})
        return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})

    asset = await client_for(handler, settings).fetch_remote_asset("https://x/start.png")

    assert asset.data == PNG_BYTES
    assert asset.content_type == "image/png"
    assert [str(request.url) for request in seen] == ["https://x/start.png", "https://cdn.test/final.png"]
    assert all("x-key" not in request.headers for request in seen)
    assert seen[0].headers["user-agent"] == DOWNLOAD_USER_AGENT


@pytest.mark.anyio
async def test_fetch_remote_asset_redirect_limit(settings):
    def handler(request):
        hop = int(request.url.params.get("hop", "0"))
        return httpx.Response(302, headers={"location": f"https://x/loop.png?hop={hop + 1}"})

    with pytest.raises(DownloadError) as excinfo:
        await client_for(handler, settings).fetch_remote_asset("https://x/loop.png")
    assert excinfo.value.status == 502


@pytest.mark.anyio
async def test_fetch_remote_asset_propagates_status(settings):
    client = client_for(lambda request: httpx.Response(404, text="missing"), settings)

    with pytest.raises(DownloadError) as excinfo:
        await client.fetch_remote_asset("https://x/gone.png")
    assert excinfo.value.status == 404


@pytest.mark.anyio
async def test_fetch_remote_asset_rejects_non_http_urls(settings):
    with pytest.raises(DownloadError) as excinfo:
        await client_for(unreachable, settings).fetch_remote_asset("file:///etc/passwd")
    assert excinfo.value.status == 400


@pytest.mark.anyio
async def test_fetch_remote_asset_timeout(settings):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(DownloadError) as excinfo:
        await client_for(handler, settings).fetch_remote_asset("https://x/slow.png")
    assert excinfo.value.status == 504
