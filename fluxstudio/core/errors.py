"""Error taxonomy shared by the client, orchestrator, stores and adapters.

Architectural role:
    Every failure that crosses a component boundary is expressed as a
    `FluxError` subclass so adapters can render one human-readable message and
    one HTTP status without inspecting transport internals.

Propagation policy:
    - Transport failures during polling are absorbed by the orchestrator.
    - Storage failures degrade from durable to ephemeral storage in the router.
    - Everything else propagates to the caller unchanged.

HTTP mapping:
    `status_code` is consumed by the FastAPI exception handler in
    `fluxstudio.api.http_api`. `UpstreamError` and `DownloadError` keep the
    provider status so proxy routes can propagate it.
"""


class FluxError(Exception):
    """Base class for all Flux Studio failures."""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self):
        return self.message


class ValidationError(FluxError):
    """Bad caller input (missing prompt, unknown model, malformed id)."""

    status_code = 400


class AuthError(FluxError):
    """Missing credential or a credential the provider rejected."""

    status_code = 401


class UpstreamError(FluxError):
    """Non-2xx response from the provider; status and message are preserved."""

    def __init__(self, status, message):
        super().__init__(message, status_code=status or 500)
        self.status = status


class TransportError(FluxError):
    """The provider could not be reached (DNS, connection reset, TLS...)."""

    status_code = 502


class RequestTimeoutError(TransportError):
    """A single request exceeded its deadline."""

    status_code = 504


class DownloadError(FluxError):
    """Fetching a remote asset failed."""

    def __init__(self, status, message):
        super().__init__(message, status_code=status or 500)
        self.status = status


class StorageError(FluxError):
    """An actual I/O failure in durable or ephemeral storage."""

    status_code = 500


class ModerationError(FluxError):
    """The provider moderated the request.

    Attributes:
        reasons: Provider moderation reasons, never empty.
    """

    status_code = 422

    def __init__(self, reasons):
        from fluxstudio.safety.moderation import format_moderation_message

        self.reasons = list(reasons) or ["Content moderated"]
        super().__init__(format_moderation_message(self.reasons))

    @property
    def guidance(self):
        """Per-reason explanation and suggestion for user-facing rendering."""
        from fluxstudio.safety.moderation import describe_reasons

        return describe_reasons(self.reasons)


class GenerationFailedError(FluxError):
    """The provider reported the job as failed or unknown."""

    status_code = 502


class GenerationTimeoutError(FluxError):
    """The poll loop exhausted its attempt budget."""

    status_code = 504


class JobCancelledError(FluxError):
    """The caller cancelled the job through its cancellation handle."""

    status_code = 499


class JobInProgressError(FluxError):
    """A second generation was started while one is active for the session."""

    status_code = 409
