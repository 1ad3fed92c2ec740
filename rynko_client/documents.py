from typing import Optional

from loguru import logger

from rynko_client.http_client import HttpClient
from rynko_client.models import (
    BatchStatusResult,
    GenerateBatchRequest,
    GenerateBatchResult,
    GenerateRequest,
    GenerateResult,
    JobsPage,
    ListResponse,
)
from rynko_client.polling import (
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_POLL_TIMEOUT_MS,
    StatusCallback,
    poll_until_terminal,
)


class DocumentsResource:
    """Document generation jobs: submit, inspect, wait and download"""

    def __init__(self, http_client: HttpClient):
        self.http_client = http_client
        self.logger = logger

    async def generate(self, request: GenerateRequest) -> GenerateResult:
        """Queues a single document; the result is usually still ``queued``"""
        result = await self.http_client.post(
            "/documents/generate", request, GenerateResult
        )
        self.logger.debug(f"Submitted job {result.job_id} for template {request.template_id}")
        return result

    async def generate_batch(self, request: GenerateBatchRequest) -> GenerateBatchResult:
        result = await self.http_client.post(
            "/documents/generate/batch", request, GenerateBatchResult
        )
        self.logger.debug(
            f"Submitted batch {result.batch_id} with {len(request.documents)} documents"
        )
        return result

    async def get(self, job_id: str) -> GenerateResult:
        return await self.http_client.get(
            f"/documents/jobs/{job_id}", response_type=GenerateResult
        )

    async def get_batch(self, batch_id: str) -> BatchStatusResult:
        return await self.http_client.get(
            f"/documents/batches/{batch_id}", response_type=BatchStatusResult
        )

    async def list(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        template_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> ListResponse[GenerateResult]:
        """Lists jobs; the API pages by offset and answers with ``{jobs, total}``"""
        effective_page = page if page is not None else 1
        effective_limit = limit if limit is not None else 20
        params = {
            "limit": effective_limit,
            "offset": (effective_page - 1) * effective_limit,
            "templateId": template_id,
            "workspaceId": workspace_id,
            "status": status,
        }
        response: JobsPage = await self.http_client.get(
            "/documents/jobs", params, JobsPage
        )
        return ListResponse[GenerateResult].from_total(
            response.jobs, response.total, effective_page, effective_limit
        )

    async def delete(self, job_id: str) -> None:
        await self.http_client.delete(f"/documents/jobs/{job_id}")

    async def wait_for_completion(
        self,
        job_id: str,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS,
        on_status_change: Optional[StatusCallback] = None,
    ) -> GenerateResult:
        """Polls a job until it is completed or failed"""
        return await poll_until_terminal(
            lambda: self.get(job_id),
            GenerateResult.is_terminal,
            resource_id=job_id,
            poll_interval_ms=poll_interval_ms,
            timeout_ms=timeout_ms,
            on_status_change=on_status_change,
        )

    async def wait_for_batch_completion(
        self,
        batch_id: str,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS,
        on_status_change: Optional[StatusCallback] = None,
    ) -> BatchStatusResult:
        """Polls a batch until it is completed, partial or failed"""
        return await poll_until_terminal(
            lambda: self.get_batch(batch_id),
            BatchStatusResult.is_terminal,
            resource_id=batch_id,
            poll_interval_ms=poll_interval_ms,
            timeout_ms=timeout_ms,
            on_status_change=on_status_change,
        )

    async def download(self, download_url: str) -> bytes:
        return await self.http_client.download(download_url)
