"""Webhook signature verification and event parsing.

Rynko signs each delivery with HMAC-SHA256 over ``"<timestamp>.<payload>"``
using the subscription secret, and sends the result in the
``X-Rynko-Signature`` header as ``v1=<hex>`` together with the unix timestamp
in ``X-Rynko-Timestamp``. Verify before trusting the payload::

    event = client.webhooks.construct_event(
        body, headers[SIGNATURE_HEADER], headers[TIMESTAMP_HEADER], secret
    )
"""

import hashlib
import hmac
import json
import re
import time
from typing import Any, Optional, Union

from loguru import logger
from pydantic import ValidationError

from rynko_client.errors import SerializationError, WebhookSignatureError
from rynko_client.http_client import HttpClient
from rynko_client.models import (
    EVENT_TYPES_BY_PREFIX,
    ListResponse,
    WebhookEvent,
    WebhookSubscription,
    WebhookSubscriptionsPage,
)

SIGNATURE_HEADER = "X-Rynko-Signature"
TIMESTAMP_HEADER = "X-Rynko-Timestamp"
SIGNATURE_PREFIX = "v1="
TIMESTAMP_TOLERANCE_SECONDS = 300
# ASCII digits only; int() alone also takes whitespace, underscores and other scripts
_TIMESTAMP_RE = re.compile(r"-?[0-9]+")

Payload = Union[str, bytes]


def _as_bytes(payload: Payload) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return payload


def compute_signature(payload: Payload, timestamp: str, secret: str) -> str:
    """Lowercase hex HMAC-SHA256 of ``timestamp + "." + payload``"""
    signed_payload = timestamp.encode("utf-8") + b"." + _as_bytes(payload)
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(
    payload: Optional[Payload],
    signature: Optional[str],
    timestamp: Optional[str],
    secret: Optional[str],
    *,
    tolerance_seconds: int = TIMESTAMP_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> None:
    """Raises WebhookSignatureError unless the delivery is authentic and fresh.

    The timestamp window is symmetric: deliveries dated too far in the past
    or in the future are both rejected. ``signature`` may carry the ``v1=``
    prefix or be the bare hex digest.
    """
    if payload is None or signature is None or timestamp is None or secret is None:
        raise WebhookSignatureError("Missing required parameters for signature verification")

    if not _TIMESTAMP_RE.fullmatch(timestamp):
        raise WebhookSignatureError("Invalid timestamp format")
    timestamp_seconds = int(timestamp)

    current_seconds = int(time.time() if now is None else now)
    if abs(current_seconds - timestamp_seconds) > tolerance_seconds:
        raise WebhookSignatureError("Timestamp is outside the tolerance window")

    expected = compute_signature(payload, timestamp, secret)
    actual = signature[len(SIGNATURE_PREFIX):] if signature.startswith(SIGNATURE_PREFIX) else signature

    # compare_digest checks length first, then touches every byte
    if not hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8")):
        raise WebhookSignatureError("Signature verification failed")


def parse_event(payload: Payload) -> WebhookEvent:
    """Parses a webhook body into DocumentEvent, BatchEvent or a plain WebhookEvent"""
    try:
        raw: Any = json.loads(payload)
    except ValueError as e:
        raise SerializationError(f"Failed to parse webhook event: {e}") from e
    if not isinstance(raw, dict):
        raise SerializationError("Failed to parse webhook event: expected a JSON object")

    prefix = str(raw.get("type", "")).split(".", 1)[0]
    event_cls = EVENT_TYPES_BY_PREFIX.get(prefix, WebhookEvent)
    try:
        return event_cls.model_validate(raw)
    except ValidationError as e:
        raise SerializationError(f"Failed to parse webhook event: {e}") from e


class WebhooksResource:
    def __init__(self, http_client: HttpClient):
        self.http_client = http_client
        self.logger = logger

    async def list(
        self, page: Optional[int] = None, limit: Optional[int] = None
    ) -> ListResponse[WebhookSubscription]:
        """Lists webhook subscriptions; the API answers with ``{data, total}``"""
        effective_page = page if page is not None else 1
        effective_limit = limit if limit is not None else 20
        response: WebhookSubscriptionsPage = await self.http_client.get(
            "/webhook-subscriptions",
            {"page": effective_page, "limit": effective_limit},
            WebhookSubscriptionsPage,
        )
        return ListResponse[WebhookSubscription].from_total(
            response.data, response.total, effective_page, effective_limit
        )

    async def get(self, webhook_id: str) -> WebhookSubscription:
        return await self.http_client.get(
            f"/webhook-subscriptions/{webhook_id}", response_type=WebhookSubscription
        )

    def verify_signature(
        self,
        payload: Optional[Payload],
        signature: Optional[str],
        timestamp: Optional[str],
        secret: Optional[str],
    ) -> None:
        verify_signature(payload, signature, timestamp, secret)

    def construct_event(
        self,
        payload: Payload,
        signature: Optional[str] = None,
        timestamp: Optional[str] = None,
        secret: Optional[str] = None,
    ) -> WebhookEvent:
        """Parses a delivery, verifying it first when any signing input is given.

        Verification failures short-circuit before the payload is parsed.
        """
        if signature is not None or timestamp is not None or secret is not None:
            try:
                verify_signature(payload, signature, timestamp, secret)
            except WebhookSignatureError as e:
                self.logger.error(f"Rejected webhook delivery: {e.reason}")
                raise
        return parse_event(payload)
