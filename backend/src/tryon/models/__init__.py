"""Pydantic models for try-on jobs.

Nothing here is persisted; jobs are projections of the provider's queue.
"""

from tryon.models.try_on import (
    GenerationRequest,
    GenerationResult,
    Job,
    JobMetrics,
    QueueMetadata,
    RequestLog,
    ResultImage,
    StatusResponse,
    TryOnState,
    map_queue_status,
)

__all__ = [
    "GenerationRequest",
    "GenerationResult",
    "Job",
    "JobMetrics",
    "QueueMetadata",
    "RequestLog",
    "ResultImage",
    "StatusResponse",
    "TryOnState",
    "map_queue_status",
]
