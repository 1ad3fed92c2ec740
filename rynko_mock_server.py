import itertools
import random
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional

from aiohttp import web
from loguru import logger

API_PREFIX = "/api/v1"


class MockRynkoServer:
    """In-process stand-in for the Rynko REST API.

    Jobs and batches advance one state per poll (queued, processing, then
    completed) unless ``scripted_statuses`` dictates the sequence. Failures
    queued with ``fail_next`` are served before any normal handling, which is
    how tests drive the client's retry loop.
    """

    def __init__(
        self,
        api_key: str = "test-key",
        completion_polls: int = 2,
        error_rate: float = 0.0,
    ):
        self.api_key = api_key
        self.completion_polls = completion_polls
        self.error_rate = error_rate
        self.port: Optional[int] = None
        self.request_log: List[Dict[str, Any]] = []
        self.scripted_statuses: Dict[str, Deque[Dict[str, Any]]] = {}
        self.templates: List[Dict[str, Any]] = []
        self.subscriptions: List[Dict[str, Any]] = []
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.batches: Dict[str, Dict[str, Any]] = {}
        self._polls: Dict[str, int] = defaultdict(int)
        self._failures: Deque[Dict[str, Any]] = deque()
        self._ids = itertools.count(1)
        self._runner: Optional[web.AppRunner] = None
        self.logger = logger

        self.app = web.Application(middlewares=[self._record, self._inject_failures, self._authenticate])
        self.app.router.add_post(f"{API_PREFIX}/documents/generate", self.handle_generate)
        self.app.router.add_post(f"{API_PREFIX}/documents/generate/batch", self.handle_generate_batch)
        self.app.router.add_get(f"{API_PREFIX}/documents/jobs", self.handle_list_jobs)
        self.app.router.add_get(f"{API_PREFIX}/documents/jobs/{{job_id}}", self.handle_job_status)
        self.app.router.add_delete(f"{API_PREFIX}/documents/jobs/{{job_id}}", self.handle_delete_job)
        self.app.router.add_get(f"{API_PREFIX}/documents/batches/{{batch_id}}", self.handle_batch_status)
        self.app.router.add_get(f"{API_PREFIX}/webhook-subscriptions", self.handle_list_subscriptions)
        self.app.router.add_get(f"{API_PREFIX}/webhook-subscriptions/{{webhook_id}}", self.handle_get_subscription)
        self.app.router.add_get("/api/templates/attachment", self.handle_list_templates)
        self.app.router.add_get("/api/templates/{template_id}", self.handle_get_template)
        self.app.router.add_get("/api/auth/verify", self.handle_verify)
        self.app.router.add_get("/files/{name}", self.handle_file)

    @property
    def base_url(self) -> str:
        return f"http://localhost:{self.port}{API_PREFIX}"

    @property
    def root_url(self) -> str:
        return f"http://localhost:{self.port}"

    def fail_next(
        self,
        status: int,
        count: int = 1,
        retry_after: Optional[str] = None,
        body: Optional[Any] = None,
    ) -> None:
        """Queue ``count`` failing responses for the next API requests"""
        for _ in range(count):
            self._failures.append({"status": status, "retry_after": retry_after, "body": body})

    def script_job(self, job_id: str, statuses: List[Dict[str, Any]]) -> None:
        """Serve ``statuses`` in order for a job, repeating the last one"""
        self.scripted_statuses[job_id] = deque(statuses)

    def requests_to(self, path: str, method: str = "GET") -> List[Dict[str, Any]]:
        return [r for r in self.request_log if r["path"] == path and r["method"] == method]

    @web.middleware
    async def _record(self, request: web.Request, handler):
        self.request_log.append(
            {
                "method": request.method,
                "path": request.path,
                "query": dict(request.query),
                "headers": dict(request.headers),
            }
        )
        return await handler(request)

    @web.middleware
    async def _inject_failures(self, request: web.Request, handler):
        if self._failures and request.path.startswith("/api"):
            failure = self._failures.popleft()
            headers = {}
            if failure["retry_after"] is not None:
                headers["Retry-After"] = failure["retry_after"]
            self.logger.info(f"Returning injected {failure['status']} for {request.path}")
            if isinstance(failure["body"], str):
                return web.Response(status=failure["status"], text=failure["body"], headers=headers)
            body = failure["body"] or {
                "message": "Injected failure",
                "code": f"ERR_{failure['status']}",
                "statusCode": failure["status"],
            }
            return web.json_response(body, status=failure["status"], headers=headers)
        return await handler(request)

    @web.middleware
    async def _authenticate(self, request: web.Request, handler):
        if request.path.startswith("/api") and (
            request.headers.get("Authorization") != f"Bearer {self.api_key}"
        ):
            return web.json_response(
                {"message": "Invalid API key", "code": "ERR_AUTH_001", "statusCode": 401},
                status=401,
            )
        return await handler(request)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._ids)}"

    def _advance(self, resource_id: str) -> str:
        polls = self._polls[resource_id]
        self._polls[resource_id] += 1
        if polls == 0:
            return "queued"
        if polls < self.completion_polls:
            return "processing"
        return "completed"

    async def handle_generate(self, request: web.Request) -> web.Response:
        body = await request.json()
        job_id = self._next_id("job")
        self.jobs[job_id] = {
            "jobId": job_id,
            "templateId": body["templateId"],
            "format": body.get("format", "pdf"),
            "metadata": body.get("metadata"),
            "status": "queued",
        }
        self.logger.info(f"Queued {job_id} for template {body['templateId']}")
        return web.json_response(
            {
                "jobId": job_id,
                "status": "queued",
                "statusUrl": f"{self.base_url}/documents/jobs/{job_id}",
                "estimatedWaitSeconds": 1,
            },
            status=202,
        )

    async def handle_job_status(self, request: web.Request) -> web.Response:
        job_id = request.match_info["job_id"]

        scripted = self.scripted_statuses.get(job_id)
        if scripted:
            payload = scripted.popleft() if len(scripted) > 1 else scripted[0]
            return web.json_response({"jobId": job_id, **payload})

        if job_id not in self.jobs:
            return web.json_response(
                {"message": f"Job {job_id} not found", "code": "ERR_JOB_404", "statusCode": 404},
                status=404,
            )

        job = self.jobs[job_id]
        if job["status"] not in ("completed", "failed"):
            if random.random() < self.error_rate:
                job.update(status="failed", errorMessage="Render failed", errorCode="ERR_RENDER")
            else:
                job["status"] = self._advance(job_id)
                if job["status"] == "completed":
                    job["downloadUrl"] = f"{self.root_url}/files/{job_id}.{job['format']}"
        self.logger.info(f"Returning {job['status']} status for {job_id}")
        return web.json_response(job)

    async def handle_list_jobs(self, request: web.Request) -> web.Response:
        limit = int(request.query.get("limit", 20))
        offset = int(request.query.get("offset", 0))
        jobs = list(self.jobs.values())
        if "status" in request.query:
            jobs = [job for job in jobs if job["status"] == request.query["status"]]
        return web.json_response({"jobs": jobs[offset : offset + limit], "total": len(jobs)})

    async def handle_delete_job(self, request: web.Request) -> web.Response:
        self.jobs.pop(request.match_info["job_id"], None)
        return web.Response(status=204)

    async def handle_generate_batch(self, request: web.Request) -> web.Response:
        body = await request.json()
        batch_id = self._next_id("batch")
        total = len(body["documents"])
        failing = sum(1 for doc in body["documents"] if (doc.get("metadata") or {}).get("fail"))
        self.batches[batch_id] = {
            "batchId": batch_id,
            "templateId": body["templateId"],
            "format": body.get("format", "pdf"),
            "status": "queued",
            "totalJobs": total,
            "completedJobs": 0,
            "failedJobs": 0,
            "metadata": body.get("metadata"),
            "_failing": failing,
        }
        return web.json_response(
            {
                "batchId": batch_id,
                "status": "queued",
                "totalJobs": total,
                "statusUrl": f"{self.base_url}/documents/batches/{batch_id}",
            },
            status=202,
        )

    async def handle_batch_status(self, request: web.Request) -> web.Response:
        batch_id = request.match_info["batch_id"]
        if batch_id not in self.batches:
            return web.json_response(
                {"message": f"Batch {batch_id} not found", "code": "ERR_BATCH_404", "statusCode": 404},
                status=404,
            )
        batch = self.batches[batch_id]
        status = self._advance(batch_id)
        if status == "completed":
            failing = batch["_failing"]
            batch["failedJobs"] = failing
            batch["completedJobs"] = batch["totalJobs"] - failing
            if failing == batch["totalJobs"]:
                status = "failed"
            elif failing:
                status = "partial"
        batch["status"] = status
        return web.json_response({k: v for k, v in batch.items() if not k.startswith("_")})

    async def handle_list_subscriptions(self, request: web.Request) -> web.Response:
        page = int(request.query.get("page", 1))
        limit = int(request.query.get("limit", 20))
        start = (page - 1) * limit
        return web.json_response(
            {"data": self.subscriptions[start : start + limit], "total": len(self.subscriptions)}
        )

    async def handle_get_subscription(self, request: web.Request) -> web.Response:
        webhook_id = request.match_info["webhook_id"]
        for subscription in self.subscriptions:
            if subscription["id"] == webhook_id:
                return web.json_response(subscription)
        return web.json_response(
            {"message": "Webhook not found", "code": "ERR_WEBHOOK_404", "statusCode": 404},
            status=404,
        )

    async def handle_list_templates(self, request: web.Request) -> web.Response:
        page = int(request.query.get("page", 1))
        limit = int(request.query.get("limit", 20))
        templates = self.templates
        if "search" in request.query:
            term = request.query["search"].lower()
            templates = [t for t in templates if term in t.get("name", "").lower()]
        start = (page - 1) * limit
        total = len(templates)
        return web.json_response(
            {
                "data": templates[start : start + limit],
                "meta": {
                    "page": page,
                    "limit": limit,
                    "total": total,
                    "totalPages": max(1, -(-total // limit)),
                },
            }
        )

    async def handle_get_template(self, request: web.Request) -> web.Response:
        key = request.match_info["template_id"]
        for template in self.templates:
            if key in (template["id"], template.get("shortId"), template.get("slug")):
                return web.json_response(template)
        return web.json_response(
            {"message": "Template not found", "code": "ERR_TMPL_001", "statusCode": 404},
            status=404,
        )

    async def handle_verify(self, request: web.Request) -> web.Response:
        return web.json_response(
            {"id": "usr_1", "email": "dev@example.com", "name": "Dev", "emailVerified": True}
        )

    async def handle_file(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        return web.Response(body=f"%PDF-mock {name}".encode(), content_type="application/pdf")

    async def start(self, port: int = 8080):
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, "localhost", port)
        await site.start()
        self.port = port
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
