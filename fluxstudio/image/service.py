"""Generation session used by the CLI and other callers.

Role in pipeline:
    - Validates caller parameters into a `GenerationRequest` (Preparing).
    - Runs the polling orchestrator for one job.
    - Materializes the Ready result and persists it through the router.
    - Returns the `GeneratedImage` with its resolved URL.

Mutual exclusion:
    One active generation per session key. A second concurrent call with the
    same key raises `JobInProgressError` instead of starting another job.

Error handling strategy:
    - Non-ready outcomes raise their mapped error (`ModerationError`,
      `GenerationFailedError`, `GenerationTimeoutError`, `JobCancelledError`
      or the submit error).
    - No `GeneratedImage` is created unless the job reached Ready.

Performance characteristics:
    - Latency is dominated by the provider; the session adds no waits of its own.
"""

import base64
import logging

from fluxstudio.core.errors import JobInProgressError, ValidationError
from fluxstudio.core.types import AspectRatio, FluxModel, GenerationRequest, ProgressUpdate
from fluxstudio.image.client import FluxClient
from fluxstudio.image.materializer import ResultMaterializer
from fluxstudio.image.polling import PollingOrchestrator
from fluxstudio.image.provider_config import FluxSettings
from fluxstudio.storage.ephemeral_store import EphemeralImageStore
from fluxstudio.storage.file_store import FileImageStore
from fluxstudio.storage.http_store import HttpImageStore
from fluxstudio.storage.router import PersistenceRouter


logger = logging.getLogger(__name__)


def encode_image_file(path) -> str:
    """Read a local reference image and return it as base64 text."""
    try:
        with open(path, "rb") as f:
            return base64.b64encode(f.read()).decode("ascii")
    except OSError as exc:
        raise ValidationError(f"Cannot read input image {path}: {exc.strerror or exc}") from exc


class FluxSession:
    """End-to-end generation plus image management for one credential.

    Args:
        client: `FluxClient` bound to the caller's credential.
        router: `PersistenceRouter` owning all image writes.
        max_attempts: Optional poll budget override.
        poll_interval: Optional poll interval override (seconds).
    """

    def __init__(self, client, router, max_attempts=None, poll_interval=None):
        self.client = client
        self.router = router
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self._active_sessions = set()

    @classmethod
    def from_settings(cls, api_key, settings=None, transport=None, store_transport=None):
        """Wire a session from `FluxSettings`.

        Durable storage is the HTTP service when `store_url` is set, otherwise
        the local filesystem layout.
        """
        settings = settings or FluxSettings()
        client = FluxClient(api_key, settings=settings, transport=transport)
        if settings.store_url:
            durable = HttpImageStore(settings.store_url, transport=store_transport)
        else:
            durable = FileImageStore.from_settings(settings)
        router = PersistenceRouter(durable, EphemeralImageStore(settings.ephemeral_path))
        return cls(client, router)

    def is_active(self, session_key="default") -> bool:
        return session_key in self._active_sessions

    async def generate(
        self,
        model,
        prompt,
        aspect_ratio=AspectRatio.SQUARE,
        input_image=None,
        seed=None,
        *,
        cancel=None,
        on_progress=None,
        session_key="default",
    ):
        """Generate, materialize and persist one image.

        Args:
            model: `FluxModel` or its string value.
            prompt: Text prompt.
            aspect_ratio: `AspectRatio` or its string value.
            input_image: Optional base64 reference image.
            seed: Optional integer seed.
            cancel: Optional `CancellationHandle`.
            on_progress: Optional callable receiving `ProgressUpdate` objects.
            session_key: Mutual-exclusion key.

        Returns:
            The persisted `GeneratedImage`, `url` set to its resolved location.
        """
        if session_key in self._active_sessions:
            raise JobInProgressError("A generation is already running for this session")
        self._active_sessions.add(session_key)
        try:
            return await self._generate(
                model, prompt, aspect_ratio, input_image, seed, cancel, on_progress
            )
        finally:
            self._active_sessions.discard(session_key)

    async def _generate(self, model, prompt, aspect_ratio, input_image, seed, cancel, on_progress):
        def notify(message):
            if on_progress is None:
                return
            try:
                on_progress(ProgressUpdate(message))
            except Exception:
                logger.exception("Progress callback failed")

        notify("Preparing request...")
        model = FluxModel.parse(model)
        if input_image is not None:
            notify("Processing input image...")
        request = GenerationRequest(
            prompt=prompt,
            aspect_ratio=aspect_ratio,
            input_image=input_image,
            seed=seed,
        )

        orchestrator = PollingOrchestrator(
            self.client,
            max_attempts=self.max_attempts,
            poll_interval=self.poll_interval,
            on_progress=on_progress,
        )
        outcome = await orchestrator.run(model, request, cancel)
        outcome.raise_for_state()

        materializer = ResultMaterializer(self.client, on_progress=notify)
        materialized = await materializer.materialize(
            outcome.job,
            outcome.result,
            prompt=request.prompt,
            model=model.value,
            aspect_ratio=request.aspect_ratio.value,
        )

        notify("Saving image...")
        image = materialized.image
        image.url = await self.router.save(image, materialized.data)
        logger.info("Generation complete image_id=%s attempts=%d", image.id, outcome.attempts)
        return image

    async def list_images(self):
        return await self.router.list_images()

    async def delete_image(self, image_id):
        await self.router.delete(image_id)

    async def clear_all(self):
        return await self.router.clear_all()

    async def reconcile(self):
        return await self.router.reconcile()

    async def run_reconciliation(self, interval, cancel=None):
        await self.router.run_reconciliation(interval, cancel)
