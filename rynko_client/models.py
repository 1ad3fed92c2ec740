import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

T = TypeVar("T")

SDK_SOURCE = "sdk_python"


class ApiModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python"""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class JobStatus(str, Enum):
    queued = "queued"
    processing = "processing"
    completed = "completed"
    failed = "failed"


class BatchStatus(str, Enum):
    queued = "queued"
    processing = "processing"
    completed = "completed"
    partial = "partial"
    failed = "failed"


JOB_TERMINAL_STATUSES = frozenset({JobStatus.completed, JobStatus.failed})
BATCH_TERMINAL_STATUSES = frozenset(
    {BatchStatus.completed, BatchStatus.partial, BatchStatus.failed}
)


class TemplateVariable(ApiModel):
    name: str
    type: Optional[str] = None
    description: Optional[str] = None
    required: bool = False
    default_value: Any = None


class Template(ApiModel):
    id: str
    short_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    output_formats: List[str] = Field(default_factory=list)
    variables: List[TemplateVariable] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def supports(self, *formats: str) -> bool:
        return any(fmt in self.output_formats for fmt in formats)


class GenerateRequest(ApiModel):
    template_id: str = Field(min_length=1)
    format: str = "pdf"
    variables: Dict[str, Any] = Field(default_factory=dict)
    workspace_id: Optional[str] = None
    filename: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    source: str = SDK_SOURCE


class BatchDocumentSpec(ApiModel):
    variables: Dict[str, Any] = Field(default_factory=dict)
    filename: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class GenerateBatchRequest(ApiModel):
    template_id: str = Field(min_length=1)
    format: str = "pdf"
    documents: List[BatchDocumentSpec] = Field(min_length=1)
    webhook_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    use_draft: Optional[bool] = None
    use_credit: Optional[bool] = None
    source: str = SDK_SOURCE


class GenerateResult(ApiModel):
    """Snapshot of a single document-generation job"""

    job_id: str
    # statuses this SDK does not know yet stay plain strings and are non-terminal
    status: Union[JobStatus, str] = Field(union_mode="left_to_right")
    status_url: Optional[str] = None
    estimated_wait_seconds: Optional[int] = None
    download_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    format: Optional[str] = None
    template_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None

    def is_terminal(self) -> bool:
        return self.status in JOB_TERMINAL_STATUSES

    def is_completed(self) -> bool:
        return self.status == JobStatus.completed

    def is_failed(self) -> bool:
        return self.status == JobStatus.failed


class GenerateBatchResult(ApiModel):
    batch_id: str
    status: Union[BatchStatus, str] = Field(union_mode="left_to_right")
    total_jobs: int = 0
    status_url: Optional[str] = None
    estimated_wait_seconds: Optional[int] = None


class BatchStatusResult(ApiModel):
    batch_id: str
    status: Union[BatchStatus, str] = Field(union_mode="left_to_right")
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    template_short_id: Optional[str] = None
    format: Optional[str] = None
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    processing_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def is_terminal(self) -> bool:
        return self.status in BATCH_TERMINAL_STATUSES

    def is_completed(self) -> bool:
        return self.status == BatchStatus.completed

    def is_partial(self) -> bool:
        return self.status == BatchStatus.partial

    def is_failed(self) -> bool:
        return self.status == BatchStatus.failed

    @property
    def progress_percent(self) -> int:
        if self.total_jobs == 0:
            return 0
        return (self.completed_jobs + self.failed_jobs) * 100 // self.total_jobs


class ApiErrorBody(ApiModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    message: str
    code: Optional[str] = None
    status_code: Optional[int] = None


class PaginationMeta(ApiModel):
    page: int = 1
    limit: int = 20
    total: int = 0
    total_pages: int = 1


class ListResponse(ApiModel, Generic[T]):
    """One page of results, whatever envelope the endpoint used"""

    data: List[T] = Field(default_factory=list)
    meta: PaginationMeta = Field(default_factory=PaginationMeta)

    def has_more(self) -> bool:
        return self.meta.page < self.meta.total_pages

    @classmethod
    def from_total(
        cls, items: List[T], total: int, page: int, limit: int
    ) -> "ListResponse[T]":
        """Builds a page from a ``{<items>: [...], total: N}`` style response"""
        total_pages = math.ceil(total / limit) if limit > 0 else 1
        meta = PaginationMeta(page=page, limit=limit, total=total, total_pages=total_pages)
        return cls(data=items, meta=meta)


class JobsPage(ApiModel):
    jobs: List[GenerateResult] = Field(default_factory=list)
    total: int = 0


class User(ApiModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    team_id: Optional[str] = None
    workspace_id: Optional[str] = None
    email_verified: bool = False
    created_at: Optional[datetime] = None


class WebhookSubscription(ApiModel):
    id: str
    url: str
    events: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    active: bool = Field(True, validation_alias=AliasChoices("isActive", "active"))
    secret: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WebhookSubscriptionsPage(ApiModel):
    data: List[WebhookSubscription] = Field(default_factory=list)
    total: int = 0


class DocumentEventData(ApiModel):
    job_id: Optional[str] = None
    status: Optional[str] = None
    template_id: Optional[str] = None
    format: Optional[str] = None
    download_url: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class BatchEventData(ApiModel):
    batch_id: Optional[str] = None
    status: Optional[str] = None
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    metadata: Optional[Dict[str, Any]] = None


class WebhookEvent(ApiModel):
    """Webhook delivery whose type has no typed payload view"""

    id: str
    type: str
    created_at: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("createdAt", "timestamp")
    )
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _null_data_is_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    def is_document_event(self) -> bool:
        return False

    def is_batch_event(self) -> bool:
        return False


class DocumentEvent(WebhookEvent):
    data: DocumentEventData = Field(default_factory=DocumentEventData)

    def is_document_event(self) -> bool:
        return True


class BatchEvent(WebhookEvent):
    data: BatchEventData = Field(default_factory=BatchEventData)

    def is_batch_event(self) -> bool:
        return True


EVENT_TYPES_BY_PREFIX = {
    "document": DocumentEvent,
    "batch": BatchEvent,
}
