import asyncio
import os
import time

from rynko_client.config import ClientConfig
from rynko_client.errors import ApiError, PollTimeoutError, WebhookSignatureError
from rynko_client.models import GenerateRequest
from rynko_client.rynko_client import RynkoClient
from rynko_client.webhooks import compute_signature
from rynko_mock_server import MockRynkoServer


async def status_changed(snapshot):
    print(f"Status changed to: {getattr(snapshot.status, 'value', snapshot.status)}")


async def main():
    PORT = 8000
    api_key = os.environ.get("RYNKO_API_KEY", "demo-key")
    server = MockRynkoServer(api_key=api_key, completion_polls=3, error_rate=0.1)
    await server.start(port=PORT)
    print(f"Server started on {server.base_url}")

    # the first request is rate limited to show the retry loop at work
    server.fail_next(429, retry_after="1")

    config = ClientConfig(api_key=api_key, base_url=server.base_url, initial_delay_ms=500)

    async with RynkoClient(config=config) as client:
        try:
            job = await client.documents.generate(
                GenerateRequest(
                    template_id="tmpl_invoice",
                    variables={"invoiceNumber": "INV-001", "customerName": "Acme Corp"},
                    metadata={"orderId": "ord_12345"},
                )
            )
            print(f"Submitted job {job.job_id} ({getattr(job.status, 'value', job.status)})")

            final = await client.documents.wait_for_completion(
                job.job_id, poll_interval_ms=500, on_status_change=status_changed
            )
            if final.is_completed():
                content = await client.documents.download(final.download_url)
                print(f"Downloaded {len(content)} bytes from {final.download_url}")
            else:
                print(f"Job failed: {final.error_code} {final.error_message}")
        except PollTimeoutError as e:
            print(f"Polling timed out: {e}")
        except ApiError as e:
            print(f"API error {e.status_code} ({e.code}): {e.message}")

    secret = "whsec_demo"
    payload = '{"id":"evt_1","type":"document.completed","data":{"jobId":"job_1","downloadUrl":"https://x/y"}}'
    timestamp = str(int(time.time()))
    signature = "v1=" + compute_signature(payload, timestamp, secret)
    try:
        event = client.webhooks.construct_event(payload, signature, timestamp, secret)
        print(f"Webhook {event.type} for {event.data.job_id}: {event.data.download_url}")
    except WebhookSignatureError as e:
        print(f"Rejected webhook: {e.reason}")

    await server.stop()


if __name__ == "__main__":
    asyncio.run(main())
