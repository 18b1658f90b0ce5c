"""Data contracts for generation jobs, poll results and stored images.

Architectural role:
    Defines the structural records exchanged between the remote job client,
    the polling orchestrator, the result materializer and the persistence
    router. Records are plain dataclasses; only `GenerationRequest` validates
    its own fields because it is the single entry point for caller input.

Lifecycle:
    - `GenerationRequest`: immutable once built, submitted once.
    - `GenerationJob`: exists for one generation attempt, never persisted.
    - `PollResult`: produced by each poll, consumed by the classifier.
    - `GeneratedImage`: the unit of persistence, keyed by job id.

Provider normalization:
    Provider status strings are matched case-insensitively
    (`"Ready"`, `"Task not found"`, `"Request Moderated"`...) and mapped to
    `PollStatus` members. Unknown strings map to `PollStatus.UNKNOWN` and are
    treated as non-terminal by the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from fluxstudio.core.errors import ValidationError


class FluxModel(str, Enum):
    """Supported FLUX Kontext model variants."""

    PRO = "flux-kontext-pro"
    MAX = "flux-kontext-max"

    @classmethod
    def parse(cls, value) -> "FluxModel":
        """Return the model for `value` or raise `ValidationError`."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            raise ValidationError(
                "Valid model is required (flux-kontext-pro or flux-kontext-max)"
            ) from None


class AspectRatio(str, Enum):
    """The seven output ratios accepted by the provider."""

    ULTRA_WIDE = "21:9"
    WIDE = "16:9"
    CLASSIC = "4:3"
    SQUARE = "1:1"
    PORTRAIT = "3:4"
    TALL = "9:16"
    ULTRA_TALL = "9:21"

    @classmethod
    def parse(cls, value) -> "AspectRatio":
        """Return the ratio for `value` or raise `ValidationError`."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            allowed = ", ".join(ratio.value for ratio in cls)
            raise ValidationError(
                f"Unsupported aspect ratio {value!r} (expected one of {allowed})"
            ) from None


class PollStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not-found"
    MODERATED = "moderated"
    UNKNOWN = "unknown"

    @classmethod
    def normalize(cls, raw) -> "PollStatus":
        """Map a provider status string to a `PollStatus` member."""
        key = str(raw or "").strip().lower().replace("_", " ").replace("-", " ")
        return _STATUS_ALIASES.get(key, cls.UNKNOWN)


_STATUS_ALIASES = {
    "pending": PollStatus.PENDING,
    "queued": PollStatus.PENDING,
    "processing": PollStatus.PENDING,
    "ready": PollStatus.READY,
    "completed": PollStatus.COMPLETED,
    "failed": PollStatus.FAILED,
    "error": PollStatus.FAILED,
    "task not found": PollStatus.NOT_FOUND,
    "not found": PollStatus.NOT_FOUND,
    "request moderated": PollStatus.MODERATED,
    "content moderated": PollStatus.MODERATED,
    "moderated": PollStatus.MODERATED,
}

OUTPUT_FORMAT = "png"
MIN_SAFETY_TOLERANCE = 0
MAX_SAFETY_TOLERANCE = 6
DEFAULT_SAFETY_TOLERANCE = 2
DEFAULT_MODERATION_REASON = "Content moderated"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with millisecond precision and `Z`."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_timestamp(value) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Raises:
        ValueError: When `value` is not a parseable timestamp.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_int(value, name):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    return value


@dataclass(frozen=True)
class GenerationRequest:
    """Validated generation parameters submitted to the provider.

    Attributes:
        prompt: Non-empty text prompt (checked after trimming).
        aspect_ratio: One of the seven `AspectRatio` values.
        input_image: Optional base64 reference image for image-to-image edits.
        seed: Optional deterministic seed.
        safety_tolerance: Provider moderation tolerance, 0 (strict) to 6.
        prompt_upsampling: Let the provider rewrite the prompt.
        output_format: Always `png`.
        webhook_url: Passed through untouched.
        webhook_secret: Passed through untouched.
    """

    prompt: str
    aspect_ratio: AspectRatio = AspectRatio.SQUARE
    input_image: str | None = None
    seed: int | None = None
    safety_tolerance: int = DEFAULT_SAFETY_TOLERANCE
    prompt_upsampling: bool = False
    output_format: str = OUTPUT_FORMAT
    webhook_url: str | None = None
    webhook_secret: str | None = None

    def __post_init__(self):
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise ValidationError("Prompt is required")
        object.__setattr__(self, "aspect_ratio", AspectRatio.parse(self.aspect_ratio))

        if self.output_format != OUTPUT_FORMAT:
            raise ValidationError(f"Output format must be {OUTPUT_FORMAT!r}")

        tolerance = _optional_int(self.safety_tolerance, "safety_tolerance")
        if tolerance is None or not MIN_SAFETY_TOLERANCE <= tolerance <= MAX_SAFETY_TOLERANCE:
            raise ValidationError(
                f"safety_tolerance must be between {MIN_SAFETY_TOLERANCE} and {MAX_SAFETY_TOLERANCE}"
            )
        _optional_int(self.seed, "seed")

        if self.input_image is not None and not isinstance(self.input_image, str):
            raise ValidationError("input_image must be base64 text")

    @classmethod
    def from_payload(cls, body: dict) -> "GenerationRequest":
        """Build a request from provider-shaped JSON (snake_case keys).

        Unknown keys are ignored. Missing optional keys take their defaults.
        """
        aspect_ratio = body.get("aspect_ratio")
        tolerance = body.get("safety_tolerance")
        output_format = body.get("output_format")
        return cls(
            prompt=body.get("prompt"),
            aspect_ratio=aspect_ratio if aspect_ratio is not None else AspectRatio.SQUARE,
            input_image=body.get("input_image") or None,
            seed=body.get("seed"),
            safety_tolerance=tolerance if tolerance is not None else DEFAULT_SAFETY_TOLERANCE,
            prompt_upsampling=bool(body.get("prompt_upsampling", False)),
            output_format=output_format if output_format is not None else OUTPUT_FORMAT,
            webhook_url=body.get("webhook_url"),
            webhook_secret=body.get("webhook_secret"),
        )

    def to_payload(self) -> dict:
        """Return the provider JSON body, omitting unset optional fields."""
        payload = {
            "prompt": self.prompt,
            "aspect_ratio": self.aspect_ratio.value,
            "output_format": self.output_format,
            "prompt_upsampling": self.prompt_upsampling,
            "safety_tolerance": self.safety_tolerance,
        }
        optional = {
            "input_image": self.input_image,
            "seed": self.seed,
            "webhook_url": self.webhook_url,
            "webhook_secret": self.webhook_secret,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload


@dataclass(frozen=True)
class GenerationJob:
    """Handle for one submitted job. Lives for a single generation attempt."""

    id: str
    polling_url: str
    model: str
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class PollResult:
    """One classified-ready snapshot of a provider poll response."""

    status: PollStatus
    raw_status: str = ""
    job_id: str | None = None
    progress: float | None = None
    sample: str | None = None
    seed: int | None = None
    start_time: float | None = None
    end_time: float | None = None
    duration: float | None = None
    moderation_reasons: list[str] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "PollResult":
        """Parse a provider poll body.

        `details` may be a mapping carrying `"Moderation Reasons"`, a plain
        string, or absent; only the mapping form contributes reasons.
        """
        raw_status = str(payload.get("status") or "")
        result = payload.get("result")
        if not isinstance(result, dict):
            result = {}

        progress = payload.get("progress")
        if isinstance(progress, (int, float)) and not isinstance(progress, bool):
            progress = min(max(float(progress), 0.0), 1.0)
        else:
            progress = None

        reasons = []
        details = payload.get("details")
        if isinstance(details, dict):
            found = details.get("Moderation Reasons")
            if isinstance(found, str):
                found = [found]
            if isinstance(found, list):
                reasons = [str(reason) for reason in found if reason]

        error = payload.get("error")
        sample = result.get("sample")

        return cls(
            status=PollStatus.normalize(raw_status),
            raw_status=raw_status,
            job_id=payload.get("id"),
            progress=progress,
            sample=sample if isinstance(sample, str) and sample else None,
            seed=result.get("seed"),
            start_time=result.get("start_time"),
            end_time=result.get("end_time"),
            duration=result.get("duration"),
            moderation_reasons=reasons,
            error=str(error) if error else None,
        )


@dataclass
class GeneratedImage:
    """A persisted generation result.

    `data` holds base64 bytes only while the record lives in ephemeral
    storage; durable storage keeps the raster as a file instead.
    """

    id: str
    url: str
    prompt: str
    model: str
    aspect_ratio: str
    timestamp: datetime = field(default_factory=utc_now)
    data: str | None = None

    def to_metadata(self) -> dict:
        return {
            "id": self.id,
            "prompt": self.prompt,
            "model": self.model,
            "aspectRatio": self.aspect_ratio,
            "timestamp": format_timestamp(self.timestamp),
        }

    def to_record(self) -> dict:
        record = self.to_metadata()
        record["url"] = self.url
        if self.data is not None:
            record["data"] = self.data
        return record

    @classmethod
    def from_record(cls, record: dict) -> "GeneratedImage":
        """Rebuild an image from metadata or an ephemeral record.

        Raises:
            ValueError: When the id is missing or the timestamp is unparseable.
        """
        image_id = record.get("id")
        if not image_id:
            raise ValueError("record has no id")
        return cls(
            id=str(image_id),
            url=str(record.get("url") or ""),
            prompt=str(record.get("prompt") or ""),
            model=str(record.get("model") or ""),
            aspect_ratio=str(record.get("aspectRatio") or ""),
            timestamp=parse_timestamp(record.get("timestamp")),
            data=record.get("data"),
        )


class JobState(str, Enum):
    PREPARING = "preparing"
    SUBMITTED = "submitted"
    POLLING = "polling"
    READY = "ready"
    MODERATED = "moderated"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ProgressUpdate:
    """User-facing progress notification emitted during a generation."""

    message: str
    attempt: int = 0
    max_attempts: int = 0
    percent: int | None = None
