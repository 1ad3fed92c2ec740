import asyncio
import json
from typing import Any, Dict, Mapping, NamedTuple, Optional

import aiohttp
from loguru import logger
from pydantic import BaseModel, TypeAdapter, ValidationError

from rynko_client.config import ClientConfig
from rynko_client.errors import ApiError, RynkoError, SerializationError, TransportError
from rynko_client.models import ApiErrorBody
from rynko_client.retry import RetryPolicy


class RawResponse(NamedTuple):
    status: int
    headers: Mapping[str, str]
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def _serialize_body(body: Any) -> str:
    """Converts a request body to JSON, accepting pydantic models or plain values"""
    if isinstance(body, BaseModel):
        body = body.model_dump(mode="json", by_alias=True, exclude_none=True)
    try:
        return json.dumps(body)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Failed to serialize request body: {e}") from e


def _clean_params(params: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    if not params:
        return {}
    return {key: str(value) for key, value in params.items() if value is not None}


def error_from_response(status: int, text: str) -> ApiError:
    """Builds an ApiError from a failed response, falling back to the raw body"""
    try:
        error = ApiErrorBody.model_validate_json(text)
    except ValidationError:
        return ApiError(f"HTTP {status}: {text}", None, status)
    return ApiError(error.message, error.code, status)


class HttpClient:
    """Sends requests to the Rynko API, retrying on retryable statuses"""

    def __init__(self, config: ClientConfig, retry_policy: Optional[RetryPolicy] = None):
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy(config)
        self.logger = logger
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout_s = self.config.timeout_ms / 1000
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(
                    total=None,
                    connect=timeout_s,
                    sock_connect=timeout_s,
                    sock_read=timeout_s,
                )
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self, has_body: bool, authenticate: bool) -> Dict[str, str]:
        headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
        }
        if authenticate:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    def build_url(self, path: str, absolute: bool = False) -> str:
        if absolute:
            return path
        return f"{self.config.base_url.rstrip('/')}{path}"

    async def _send_once(
        self,
        method: str,
        url: str,
        params: Dict[str, str],
        data: Optional[str],
        headers: Dict[str, str],
    ) -> RawResponse:
        """Performs a single HTTP round trip"""
        session = self._get_session()
        try:
            async with session.request(
                method, url, params=params or None, data=data, headers=headers
            ) as response:
                body = await response.read()
                return RawResponse(response.status, response.headers, body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"{method} {url} failed: {e!r}")
            raise TransportError(f"Request failed: {e}") from e

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        response_type: Any = None,
        absolute: bool = False,
        authenticate: bool = True,
        raw: bool = False,
    ) -> Any:
        """Sends a request and decodes the response.

        ``response_type`` is any type pydantic can validate against (a model
        class, ``ListResponse[Template]``, ``List[str]``...). When it is None
        the decoded JSON is returned as-is. An empty success body yields None,
        and ``raw=True`` returns the body bytes untouched.
        """
        data = _serialize_body(body) if body is not None else None
        url = self.build_url(path, absolute)
        query = _clean_params(params)
        headers = self._headers(data is not None, authenticate)

        response = await self._execute_with_retry(method, url, query, data, headers)

        if raw:
            return response.body
        if not response.body.strip():
            return None
        try:
            if response_type is None:
                return json.loads(response.body)
            return TypeAdapter(response_type).validate_json(response.body)
        except (ValueError, ValidationError) as e:
            raise SerializationError(f"Failed to parse response from {url}: {e}") from e

    async def _execute_with_retry(
        self,
        method: str,
        url: str,
        params: Dict[str, str],
        data: Optional[str],
        headers: Dict[str, str],
    ) -> RawResponse:
        max_attempts = self.config.max_attempts
        last_error: Optional[ApiError] = None

        for attempt in range(max_attempts):
            response = await self._send_once(method, url, params, data, headers)
            if response.ok:
                return response

            error = error_from_response(response.status, response.text)
            decision = self.retry_policy.decide(
                response.status, attempt, response.headers.get("Retry-After")
            )
            if not decision.should_retry:
                self.logger.error(
                    f"{method} {url} returned {response.status} "
                    f"on attempt {attempt + 1}/{max_attempts}: {error.message}"
                )
                raise error

            last_error = error
            self.logger.debug(
                f"{method} {url} returned {response.status}, "
                f"retrying in {decision.delay_ms}ms (attempt {attempt + 1}/{max_attempts})"
            )
            await asyncio.sleep(decision.delay_ms / 1000)

        if last_error is not None:
            raise last_error

        raise RynkoError("Request failed after retries")

    async def get(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        response_type: Any = None,
    ) -> Any:
        return await self.request("GET", path, params=params, response_type=response_type)

    async def get_absolute(
        self,
        url: str,
        params: Optional[Mapping[str, Any]] = None,
        response_type: Any = None,
    ) -> Any:
        return await self.request(
            "GET", url, params=params, response_type=response_type, absolute=True
        )

    async def post(self, path: str, body: Any, response_type: Any = None) -> Any:
        return await self.request("POST", path, body=body, response_type=response_type)

    async def put(self, path: str, body: Any, response_type: Any = None) -> Any:
        return await self.request("PUT", path, body=body, response_type=response_type)

    async def patch(self, path: str, body: Any, response_type: Any = None) -> Any:
        return await self.request("PATCH", path, body=body, response_type=response_type)

    async def delete(self, path: str) -> None:
        await self.request("DELETE", path)

    async def download(self, url: str) -> bytes:
        """Fetches a pre-signed file URL; these must not carry the API key"""
        return await self.request("GET", url, absolute=True, authenticate=False, raw=True)
