from typing import Optional

from loguru import logger

from rynko_client.config import DEFAULT_BASE_URL, ClientConfig
from rynko_client.documents import DocumentsResource
from rynko_client.errors import ApiError, ConfigurationError, TransportError
from rynko_client.http_client import HttpClient
from rynko_client.models import User
from rynko_client.templates import TemplatesResource
from rynko_client.webhooks import WebhooksResource


class RynkoClient:
    """Entry point for the Rynko document generation API.

    Example::

        async with RynkoClient(api_key) as client:
            job = await client.documents.generate(
                GenerateRequest(template_id="tmpl_invoice", variables={"invoiceNumber": "INV-001"})
            )
            done = await client.documents.wait_for_completion(job.job_id)
            print(done.download_url)

    One client may be shared by any number of concurrent tasks.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        config: Optional[ClientConfig] = None,
    ):
        if config is None:
            if not api_key:
                raise ConfigurationError("API key is required")
            config = ClientConfig(api_key=api_key, base_url=base_url or DEFAULT_BASE_URL)
        elif not config.api_key:
            raise ConfigurationError("API key is required")

        self.config = config
        self.logger = logger
        self.http_client = HttpClient(config)
        self.documents = DocumentsResource(self.http_client)
        self.templates = TemplatesResource(self.http_client)
        self.webhooks = WebhooksResource(self.http_client)

    async def me(self) -> User:
        """Returns the user the API key belongs to"""
        return await self.http_client.get_absolute(
            f"{self.config.base_url_without_version}/api/auth/verify", response_type=User
        )

    async def verify_api_key(self) -> bool:
        try:
            await self.me()
        except (ApiError, TransportError) as e:
            self.logger.debug(f"API key verification failed: {e}")
            return False
        return True

    async def close(self) -> None:
        await self.http_client.close()

    async def __aenter__(self) -> "RynkoClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
