"""Try-on job models.

These are read-through projections of the provider's queue state: nothing here
is persisted, and the gateway never mutates a job locally. Field names are
snake_case in Python and camelCase on the wire (and in the cache).
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

OutputFormat = Literal["jpeg", "png"]
Priority = Literal["low", "normal"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )


class TryOnState(str, Enum):
    """Normalized job status exposed to clients."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"


PROVIDER_STATUS_MAP = {
    "IN_QUEUE": TryOnState.QUEUED,
    "IN_PROGRESS": TryOnState.PROCESSING,
    "COMPLETED": TryOnState.COMPLETED,
}


def map_queue_status(raw_status: str | None) -> TryOnState:
    """Map a provider status string; anything unknown is treated as queued."""
    return PROVIDER_STATUS_MAP.get(raw_status or "", TryOnState.QUEUED)


class GenerationRequest(CamelModel):
    """Validated, sanitized user input for one try-on submission."""

    prompt: str
    image_urls: list[str] = Field(min_length=1, max_length=10)
    num_images: int | None = Field(default=None, ge=1, le=4)
    output_format: OutputFormat | None = None
    sync_mode: bool | None = None
    priority: Priority | None = None
    webhook_url: str | None = None
    hint: str | None = None


class RequestLog(CamelModel):
    """One provider log line."""

    model_config = ConfigDict(extra="allow")

    message: str = ""
    level: str | None = None
    source: str | None = None
    timestamp: str | None = None


class JobMetrics(CamelModel):
    inference_time: float | None = None


class Job(CamelModel):
    id: str
    model_id: str
    status: TryOnState
    queue_position: int | None = Field(default=None, ge=0)
    logs: list[RequestLog] | None = None
    metrics: JobMetrics | None = None


class QueueMetadata(CamelModel):
    """Provider-side queue record paired 1:1 with a Job."""

    request_id: str
    status_url: str
    response_url: str
    cancel_url: str
    raw_status: str


class ResultImage(BaseModel):
    model_config = ConfigDict(extra="allow")

    url: str


class GenerationResult(BaseModel):
    """Terminal payload of a completed job."""

    model_config = ConfigDict(extra="allow")

    images: list[ResultImage] = Field(default_factory=list)
    description: str = ""


class StatusResponse(CamelModel):
    """Normalized provider view of a job: job + queue metadata (+ result)."""

    job: Job
    queue: QueueMetadata
    result: GenerationResult | None = None
