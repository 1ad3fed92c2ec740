from typing import Optional


class RynkoError(Exception):
    """Base class for every error raised by the SDK"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ApiError(RynkoError):
    """Non-2xx response from the API"""

    def __init__(self, message: str, code: Optional[str] = None, status_code: int = 0):
        super().__init__(message)
        self.code = code
        self.status_code = status_code

    def __str__(self) -> str:
        if self.code:
            return f"[{self.status_code}] {self.code}: {self.message}"
        return f"[{self.status_code}] {self.message}"


class TransportError(RynkoError):
    """Network failure before a response was received (DNS, reset, timeout)"""


class SerializationError(RynkoError):
    """A request body or response payload could not be converted to or from JSON"""


class PollTimeoutError(RynkoError, TimeoutError):
    def __init__(self, resource_id: str, timeout_ms: int):
        super().__init__(
            f"Timeout waiting for {resource_id} to complete after {timeout_ms}ms"
        )
        self.resource_id = resource_id
        self.timeout_ms = timeout_ms


class WebhookSignatureError(RynkoError):
    """Webhook payload failed authentication; ``reason`` says why"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ConfigurationError(RynkoError):
    pass
