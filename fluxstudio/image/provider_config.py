"""Provider/runtime configuration for image generation and storage.

Architectural role:
    Centralizes provider endpoints, request deadlines, polling bounds, storage
    locations and credential lookup for `fluxstudio.image` and
    `fluxstudio.storage`.

Resolution:
    - `.env` is loaded once at import via `load_dotenv()`.
    - `FluxSettings` fields default from environment variables when the
      dataclass is instantiated, so tests can build settings explicitly.

Credential handling:
    Credentials are never stored in module globals. `resolve_api_key` returns a
    key for the caller to pass explicitly into `FluxClient`.

Relevant environment variables:
    - `BFL_API_BASE`, `BFL_API_KEY`, `BFL_KEY_FILE`
    - `FLUX_SUBMIT_TIMEOUT`, `FLUX_POLL_TIMEOUT`, `FLUX_DOWNLOAD_TIMEOUT`
    - `FLUX_MAX_ATTEMPTS`, `FLUX_POLL_INTERVAL`
    - `FLUX_IMAGES_DIR`, `FLUX_METADATA_DIR`, `FLUX_PUBLIC_PREFIX`
    - `FLUX_EPHEMERAL_PATH`, `FLUX_STORE_URL`
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


DEFAULT_API_BASE = "https://api.bfl.ai"
DEFAULT_KEY_FILE = "config/bfl.key"

# Generic browser user-agent used when fetching provider-hosted assets.
DOWNLOAD_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
)
MAX_DOWNLOAD_REDIRECTS = 5


def _env_float(name, default):
    return float(os.getenv(name, str(default)))


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class FluxSettings:
    """Runtime settings shared by the client, orchestrator and stores."""

    api_base: str = field(default_factory=lambda: os.getenv("BFL_API_BASE", DEFAULT_API_BASE).rstrip("/"))
    submit_timeout: float = field(default_factory=lambda: _env_float("FLUX_SUBMIT_TIMEOUT", 30))
    poll_timeout: float = field(default_factory=lambda: _env_float("FLUX_POLL_TIMEOUT", 10))
    download_timeout: float = field(default_factory=lambda: _env_float("FLUX_DOWNLOAD_TIMEOUT", 30))
    max_attempts: int = field(default_factory=lambda: _env_int("FLUX_MAX_ATTEMPTS", 60))
    poll_interval: float = field(default_factory=lambda: _env_float("FLUX_POLL_INTERVAL", 2.0))
    images_dir: str = field(default_factory=lambda: os.getenv("FLUX_IMAGES_DIR", "public/generated-images"))
    metadata_dir: str = field(default_factory=lambda: os.getenv("FLUX_METADATA_DIR", "data/image-metadata"))
    public_prefix: str = field(default_factory=lambda: os.getenv("FLUX_PUBLIC_PREFIX", "/generated-images").rstrip("/"))
    ephemeral_path: str | None = field(
        default_factory=lambda: os.getenv("FLUX_EPHEMERAL_PATH", "data/ephemeral-images.json") or None
    )
    store_url: str | None = field(default_factory=lambda: os.getenv("FLUX_STORE_URL") or None)


def load_key(path):
    """Load a locally stored API key.

    Args:
        path: Key file path or `None`.

    Returns:
        Stripped file contents, or `None` when the path is unset, missing or
        empty.
    """
    if not path or not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        key = f.read().strip()
    return key or None


def resolve_api_key(explicit=None):
    """Return the credential to pass into `FluxClient`.

    Resolution order:
        1. `explicit` argument (for example a CLI flag).
        2. Locally stored key file (`BFL_KEY_FILE`, default `config/bfl.key`).
        3. Process-level default `BFL_API_KEY`.

    Returns:
        Key string or `None`; the client raises `AuthError` on `None`.
    """
    if explicit and explicit.strip():
        return explicit.strip()
    stored = load_key(os.getenv("BFL_KEY_FILE", DEFAULT_KEY_FILE))
    if stored:
        return stored
    return os.getenv("BFL_API_KEY") or None
