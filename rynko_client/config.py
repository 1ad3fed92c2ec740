from typing import FrozenSet

from pydantic import BaseModel, ConfigDict

SDK_NAME = "rynko-python"
SDK_VERSION = "1.0.0"

DEFAULT_BASE_URL = "https://api.rynko.dev/api/v1"
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 30000
DEFAULT_MAX_JITTER_MS = 1000
DEFAULT_RETRYABLE_STATUSES = frozenset({429, 503, 504})

_VERSION_SUFFIX = "/api/v1"


class ClientConfig(BaseModel):
    """Immutable settings shared by every request a client makes"""

    model_config = ConfigDict(frozen=True)

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    max_jitter_ms: int = DEFAULT_MAX_JITTER_MS
    retryable_statuses: FrozenSet[int] = DEFAULT_RETRYABLE_STATUSES
    retry_enabled: bool = True

    @property
    def max_attempts(self) -> int:
        return self.max_retries if self.retry_enabled else 1

    @property
    def base_url_without_version(self) -> str:
        """Root URL for the routes that live outside /api/v1 (auth, templates)"""
        base = self.base_url.rstrip("/")
        if base.endswith(_VERSION_SUFFIX):
            return base[: -len(_VERSION_SUFFIX)]
        return base

    @property
    def user_agent(self) -> str:
        return f"{SDK_NAME}/{SDK_VERSION}"
