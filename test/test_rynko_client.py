import asyncio

import pytest
from rynko_client.config import ClientConfig
from rynko_client.errors import ApiError, PollTimeoutError, TransportError
from rynko_client.models import (
    BatchDocumentSpec,
    BatchStatus,
    GenerateBatchRequest,
    GenerateRequest,
    JobStatus,
)
from rynko_client.rynko_client import RynkoClient

JOB_PATH = "/api/v1/documents/jobs/{}"


@pytest.mark.asyncio
async def test_generate_and_wait_for_completion(server, client):
    """Submitted job is polled through queued and processing until completed."""
    status_changes = []

    async def status_callback(snapshot):
        status_changes.append(snapshot.status)

    job = await client.documents.generate(
        GenerateRequest(template_id="tmpl_invoice", variables={"invoiceNumber": "INV-001"})
    )
    assert job.status == JobStatus.queued

    result = await client.documents.wait_for_completion(
        job.job_id, poll_interval_ms=10, on_status_change=status_callback
    )

    assert result.status == JobStatus.completed
    assert result.download_url.endswith(f"/files/{job.job_id}.pdf")
    assert status_changes == [JobStatus.queued, JobStatus.processing, JobStatus.completed]
    assert len(server.requests_to(JOB_PATH.format(job.job_id))) == 3


@pytest.mark.asyncio
async def test_wait_returns_completed_download_url(server, client):
    """Scripted server answers are returned verbatim once terminal."""
    server.script_job(
        "job_1",
        [
            {"status": "processing"},
            {"status": "completed", "downloadUrl": "https://x/y"},
        ],
    )

    result = await client.documents.wait_for_completion("job_1", poll_interval_ms=10)

    assert result.is_completed()
    assert result.download_url == "https://x/y"
    assert len(server.requests_to(JOB_PATH.format("job_1"))) == 2


@pytest.mark.asyncio
async def test_failed_job_is_terminal(server, client):
    """A failed job ends the wait and exposes its error details."""
    server.error_rate = 1.0
    job = await client.documents.generate(GenerateRequest(template_id="tmpl_invoice"))

    result = await client.documents.wait_for_completion(job.job_id, poll_interval_ms=10)

    assert result.is_failed()
    assert result.error_code == "ERR_RENDER"
    assert result.error_message == "Render failed"


@pytest.mark.asyncio
async def test_wait_for_completion_times_out(server, client):
    """A job that never finishes raises PollTimeoutError and polling stops."""
    server.completion_polls = 10_000
    job = await client.documents.generate(GenerateRequest(template_id="tmpl_invoice"))

    with pytest.raises(PollTimeoutError) as exc_info:
        await client.documents.wait_for_completion(
            job.job_id, poll_interval_ms=20, timeout_ms=100
        )

    assert exc_info.value.resource_id == job.job_id
    polls = len(server.requests_to(JOB_PATH.format(job.job_id)))
    await asyncio.sleep(0.1)
    assert len(server.requests_to(JOB_PATH.format(job.job_id))) == polls


@pytest.mark.asyncio
async def test_cancelling_wait_propagates(server, client):
    """Cancelling a waiting task surfaces as CancelledError, not a retry."""
    server.completion_polls = 10_000
    job = await client.documents.generate(GenerateRequest(template_id="tmpl_invoice"))

    task = asyncio.create_task(
        client.documents.wait_for_completion(job.job_id, poll_interval_ms=1000)
    )
    await asyncio.sleep(0.1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(server.requests_to(JOB_PATH.format(job.job_id))) == 1


@pytest.mark.asyncio
async def test_retries_rate_limited_requests(server, client):
    """Two 429s followed by a success take exactly three attempts."""
    server.script_job("job_1", [{"status": "completed"}])
    server.fail_next(429, count=2)

    result = await client.documents.get("job_1")

    assert result.status == JobStatus.completed
    assert len(server.requests_to(JOB_PATH.format("job_1"))) == 3


@pytest.mark.asyncio
async def test_retry_after_header_is_honoured(server, client):
    server.script_job("job_1", [{"status": "queued"}])
    server.fail_next(503, retry_after="0")

    result = await client.documents.get("job_1")

    assert result.status == JobStatus.queued
    assert len(server.requests_to(JOB_PATH.format("job_1"))) == 2


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(server, client):
    """Retryable failures stop after max_retries attempts with the last error."""
    server.fail_next(429, count=5)

    with pytest.raises(ApiError) as exc_info:
        await client.documents.get("job_1")

    assert exc_info.value.status_code == 429
    assert exc_info.value.code == "ERR_429"
    assert len(server.requests_to(JOB_PATH.format("job_1"))) == 3


@pytest.mark.asyncio
async def test_non_retryable_status_is_not_retried(server, client):
    server.fail_next(500, count=3)

    with pytest.raises(ApiError) as exc_info:
        await client.documents.get("job_1")

    assert exc_info.value.status_code == 500
    assert len(server.requests_to(JOB_PATH.format("job_1"))) == 1


@pytest.mark.asyncio
async def test_retry_disabled_makes_single_attempt(server, config):
    server.fail_next(429, count=3)
    no_retry = config.model_copy(update={"retry_enabled": False})

    async with RynkoClient(config=no_retry) as client:
        with pytest.raises(ApiError):
            await client.documents.get("job_1")

    assert len(server.requests_to(JOB_PATH.format("job_1"))) == 1


@pytest.mark.asyncio
async def test_error_body_that_is_not_json(server, client):
    server.fail_next(502, body="Bad gateway")

    with pytest.raises(ApiError) as exc_info:
        await client.documents.get("job_1")

    assert exc_info.value.message == "HTTP 502: Bad gateway"
    assert exc_info.value.code is None
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_not_found_maps_to_api_error(client):
    with pytest.raises(ApiError) as exc_info:
        await client.documents.get("job_missing")

    assert exc_info.value.status_code == 404
    assert exc_info.value.code == "ERR_JOB_404"


@pytest.mark.asyncio
async def test_server_unavailable(unused_tcp_port_factory):
    """Connection failures raise TransportError without retrying."""
    config = ClientConfig(
        api_key="test-key",
        base_url=f"http://localhost:{unused_tcp_port_factory()}/api/v1",
        initial_delay_ms=10,
    )

    async with RynkoClient(config=config) as client:
        with pytest.raises(TransportError):
            await client.documents.get("job_1")


@pytest.mark.asyncio
async def test_invalid_api_key(server, config):
    bad_key = config.model_copy(update={"api_key": "wrong-key"})

    async with RynkoClient(config=bad_key) as client:
        with pytest.raises(ApiError) as exc_info:
            await client.documents.get("job_1")
        assert await client.verify_api_key() is False

    assert exc_info.value.status_code == 401
    assert exc_info.value.code == "ERR_AUTH_001"


@pytest.mark.asyncio
async def test_me_and_verify_api_key(server, client):
    user = await client.me()

    assert user.id == "usr_1"
    assert user.email_verified is True
    assert await client.verify_api_key() is True
    assert server.requests_to("/api/auth/verify")


@pytest.mark.asyncio
async def test_request_headers(server, client):
    await client.documents.generate(GenerateRequest(template_id="tmpl_invoice"))

    headers = server.requests_to("/api/v1/documents/generate", method="POST")[0]["headers"]
    assert headers["Authorization"] == "Bearer test-key"
    assert headers["User-Agent"] == "rynko-python/1.0.0"
    assert headers["Accept"] == "application/json"
    assert headers["Content-Type"].startswith("application/json")


@pytest.mark.asyncio
async def test_generate_sends_camel_case_payload(server, client):
    await client.documents.generate(
        GenerateRequest(
            template_id="tmpl_invoice",
            workspace_id="ws_1",
            metadata={"orderId": "ord_1"},
        )
    )

    job = next(iter(server.jobs.values()))
    assert job["templateId"] == "tmpl_invoice"
    assert job["metadata"] == {"orderId": "ord_1"}


@pytest.mark.asyncio
async def test_list_jobs_normalizes_pagination(server, client):
    for _ in range(3):
        await client.documents.generate(GenerateRequest(template_id="tmpl_invoice"))

    first = await client.documents.list(page=1, limit=2)
    second = await client.documents.list(page=2, limit=2)

    assert len(first.data) == 2
    assert first.meta.total == 3
    assert first.meta.total_pages == 2
    assert first.has_more()
    assert len(second.data) == 1
    assert not second.has_more()
    assert server.requests_to("/api/v1/documents/jobs")[-1]["query"] == {
        "limit": "2",
        "offset": "2",
    }


@pytest.mark.asyncio
async def test_delete_job(server, client):
    job = await client.documents.generate(GenerateRequest(template_id="tmpl_invoice"))

    assert await client.documents.delete(job.job_id) is None
    assert job.job_id not in server.jobs


@pytest.mark.asyncio
async def test_download_does_not_send_api_key(server, client):
    job = await client.documents.generate(GenerateRequest(template_id="tmpl_invoice"))
    result = await client.documents.wait_for_completion(job.job_id, poll_interval_ms=10)

    content = await client.documents.download(result.download_url)

    assert content.startswith(b"%PDF")
    file_request = server.request_log[-1]
    assert file_request["path"].startswith("/files/")
    assert "Authorization" not in file_request["headers"]


@pytest.mark.asyncio
async def test_batch_generation_with_partial_failure(server, client):
    request = GenerateBatchRequest(
        template_id="tmpl_invoice",
        documents=[
            BatchDocumentSpec(variables={"n": 1}),
            BatchDocumentSpec(variables={"n": 2}),
            BatchDocumentSpec(variables={"n": 3}, metadata={"fail": True}),
        ],
    )

    batch = await client.documents.generate_batch(request)
    assert batch.total_jobs == 3

    result = await client.documents.wait_for_batch_completion(batch.batch_id, poll_interval_ms=10)

    assert result.status == BatchStatus.partial
    assert result.is_terminal()
    assert result.completed_jobs == 2
    assert result.failed_jobs == 1
    assert result.progress_percent == 100


@pytest.mark.asyncio
async def test_templates_list_filter_and_get(server, client):
    server.templates = [
        {"id": "tmpl_1", "shortId": "inv", "name": "Invoice", "outputFormats": ["pdf"]},
        {"id": "tmpl_2", "shortId": "rep", "name": "Report", "outputFormats": ["xlsx"]},
        {"id": "tmpl_3", "name": "Both", "outputFormats": ["pdf", "excel"]},
    ]

    templates = await client.templates.list(limit=2)
    pdf = await client.templates.list_pdf()
    excel = await client.templates.list_excel()
    by_short_id = await client.templates.get("inv")

    assert [t.id for t in templates.data] == ["tmpl_1", "tmpl_2"]
    assert templates.meta.total_pages == 2
    assert templates.has_more()
    assert [t.id for t in pdf.data] == ["tmpl_1", "tmpl_3"]
    assert [t.id for t in excel.data] == ["tmpl_2", "tmpl_3"]
    assert by_short_id.id == "tmpl_1"
    assert server.requests_to("/api/templates/attachment")[0]["query"] == {"limit": "2"}


@pytest.mark.asyncio
async def test_webhook_subscriptions(server, client):
    server.subscriptions = [
        {"id": f"wh_{i}", "url": f"https://example.com/{i}", "events": ["document.completed"], "isActive": i % 2 == 0}
        for i in range(3)
    ]

    page = await client.webhooks.list(page=1, limit=2)
    subscription = await client.webhooks.get("wh_1")

    assert [s.id for s in page.data] == ["wh_0", "wh_1"]
    assert page.meta.total == 3
    assert page.has_more()
    assert subscription.active is False
    assert subscription.events == ["document.completed"]


@pytest.mark.asyncio
async def test_multiple_clients(server, config):
    """Test multiple clients polling simultaneously."""

    async def run_client():
        async with RynkoClient(config=config) as client:
            job = await client.documents.generate(GenerateRequest(template_id="tmpl_invoice"))
            return await client.documents.wait_for_completion(job.job_id, poll_interval_ms=10)

    results = await asyncio.gather(*[run_client() for _ in range(3)])

    assert len({result.job_id for result in results}) == 3
    for result in results:
        assert result.status == JobStatus.completed
