"""Remote job client for the FLUX Kontext generation API.

Processing flow:
    1. Validate the credential, model and request.
    2. Submit the generation payload to `<api_base>/v1/<model>`.
    3. Poll the provider-issued polling URL on demand.
    4. Download provider-hosted assets when asked.

Retry behavior:
    None. Each call is attempted once; retry policy belongs to
    `fluxstudio.image.polling`.

Deadlines:
    - submit: `FluxSettings.submit_timeout` (30 s)
    - poll: `FluxSettings.poll_timeout` (10 s)
    - asset download: `FluxSettings.download_timeout` (30 s), at most 5 redirects

Error handling strategy:
    httpx exceptions and non-2xx responses are converted into the
    `fluxstudio.core.errors` taxonomy; raw transport exceptions never escape.

Security considerations:
    The credential is passed into the constructor and sent only as the
    `x-key` header. Prompts and keys are not logged.
"""

import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from fluxstudio.core.errors import (
    AuthError,
    DownloadError,
    RequestTimeoutError,
    TransportError,
    UpstreamError,
    ValidationError,
)
from fluxstudio.core.types import FluxModel, GenerationJob, GenerationRequest, PollResult
from fluxstudio.image.provider_config import (
    DOWNLOAD_USER_AGENT,
    MAX_DOWNLOAD_REDIRECTS,
    FluxSettings,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteAsset:
    """Downloaded asset bytes and their declared content type."""

    data: bytes
    content_type: str = "image/png"


def extract_error_message(response: httpx.Response, default: str) -> str:
    """Pull a human-readable message out of an error response.

    Lookup order: JSON `error`, JSON `message`, JSON `detail` (string or a
    list of `{msg}` entries), raw text, then `default` with the status code.
    """
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in ("error", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
        detail = body.get("detail")
        if isinstance(detail, str) and detail:
            return detail
        if isinstance(detail, list):
            messages = [
                str(item.get("msg"))
                for item in detail
                if isinstance(item, dict) and item.get("msg")
            ]
            if messages:
                return "; ".join(messages)

    text = response.text.strip()
    if text:
        return text[:500]
    return f"{default} (HTTP {response.status_code})"


class FluxClient:
    """Stateless request/response client for one credential.

    Args:
        api_key: Provider credential; `None`/empty makes every provider call
            raise `AuthError`.
        settings: Endpoint and deadline configuration.
        transport: Optional httpx transport (used by tests and the proxy
            service to inject a mock provider).
    """

    def __init__(self, api_key, settings=None, transport=None):
        self.api_key = api_key.strip() if isinstance(api_key, str) and api_key.strip() else None
        self.settings = settings or FluxSettings()
        self._transport = transport

    def _auth_headers(self):
        if not self.api_key:
            raise AuthError("API key is required")
        return {"x-key": self.api_key, "Content-Type": "application/json"}

    async def _request_json(self, method, url, *, headers, timeout, label, json_body=None):
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=headers, json=json_body)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"{label} timed out after {timeout:g}s") from exc
        except httpx.RequestError as exc:
            raise TransportError(f"{label} failed: {exc.__class__.__name__}") from exc

        if response.status_code in (401, 403):
            raise AuthError(
                extract_error_message(response, "Invalid API key"),
                status_code=response.status_code,
            )
        if not response.is_success:
            raise UpstreamError(
                response.status_code,
                extract_error_message(response, f"{label} failed"),
            )

        try:
            body = response.json()
        except ValueError:
            raise UpstreamError(502, f"{label} returned a non-JSON response") from None
        if not isinstance(body, dict):
            raise UpstreamError(502, f"{label} returned an unexpected response shape")
        return body

    async def request_generation(self, model, request) -> dict:
        """Submit a generation request and return the provider JSON unchanged.

        Args:
            model: `FluxModel` or its string value.
            request: `GenerationRequest`, or a provider-shaped dict that is
                validated into one.

        Raises:
            AuthError, ValidationError, UpstreamError, RequestTimeoutError,
            TransportError.
        """
        headers = self._auth_headers()
        model = FluxModel.parse(model)
        if isinstance(request, dict):
            request = GenerationRequest.from_payload(request)
        if not isinstance(request, GenerationRequest):
            raise ValidationError("A generation request is required")

        url = f"{self.settings.api_base}/v1/{model.value}"
        logger.info(
            "Submitting generation model=%s aspect_ratio=%s prompt_chars=%d reference_image=%s",
            model.value,
            request.aspect_ratio.value,
            len(request.prompt),
            request.input_image is not None,
        )
        return await self._request_json(
            "POST",
            url,
            headers=headers,
            timeout=self.settings.submit_timeout,
            label="Generation request",
            json_body=request.to_payload(),
        )

    async def submit(self, model, request) -> GenerationJob:
        """Submit a generation request and return the job handle."""
        body = await self.request_generation(model, request)
        job_id = body.get("id")
        polling_url = body.get("polling_url")
        if not job_id or not polling_url:
            raise UpstreamError(502, "Provider did not return a job id and polling URL")
        logger.info("Generation job accepted id=%s", job_id)
        return GenerationJob(id=str(job_id), polling_url=str(polling_url), model=FluxModel.parse(model).value)

    async def fetch_status(self, polling_url) -> dict:
        """Poll the provider once and return the JSON body unchanged."""
        headers = self._auth_headers()
        if not polling_url:
            raise ValidationError("Polling URL is required")
        return await self._request_json(
            "GET",
            polling_url,
            headers=headers,
            timeout=self.settings.poll_timeout,
            label="Polling request",
        )

    async def poll(self, polling_url) -> PollResult:
        body = await self.fetch_status(polling_url)
        result = PollResult.from_payload(body)
        logger.debug(
            "Poll response id=%s status=%s progress=%s has_sample=%s",
            result.job_id,
            result.raw_status,
            result.progress,
            result.sample is not None,
        )
        return result

    async def fetch_remote_asset(self, url) -> RemoteAsset:
        """Download an external asset.

        No credential is sent. Redirects are followed up to
        `MAX_DOWNLOAD_REDIRECTS`.

        Raises:
            DownloadError: 400 for non-http(s) URLs, 504 on timeout, 502 on
                transport failure or too many redirects, otherwise the
                upstream status.
        """
        parsed = urlparse(str(url or ""))
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise DownloadError(400, "Image URL must be an absolute http(s) URL")

        headers = {"User-Agent": DOWNLOAD_USER_AGENT, "Accept": "image/*"}
        timeout = self.settings.download_timeout
        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                follow_redirects=True,
                max_redirects=MAX_DOWNLOAD_REDIRECTS,
                transport=self._transport,
            ) as client:
                response = await client.get(url, headers=headers)
        except httpx.TooManyRedirects as exc:
            raise DownloadError(502, "Image download exceeded the redirect limit") from exc
        except httpx.TimeoutException as exc:
            raise DownloadError(504, f"Image download timed out after {timeout:g}s") from exc
        except httpx.RequestError as exc:
            raise DownloadError(502, f"Image download failed: {exc.__class__.__name__}") from exc

        if not response.is_success:
            raise DownloadError(
                response.status_code,
                extract_error_message(response, "Image download failed"),
            )

        content_type = response.headers.get("content-type") or "image/png"
        logger.info("Downloaded remote asset bytes=%d content_type=%s", len(response.content), content_type)
        return RemoteAsset(data=response.content, content_type=content_type)
