"""Hairstyle generation orchestration over the fal.ai queue.

Submit path:  build payload → submit (with retries) → normalize → cache status
Status path:  cache-first → status (with retries) → normalize → cache status →
              fetch + cache result on completion (or fall back to a cached result)
"""

from typing import Any, Callable

import structlog
from pydantic import ValidationError

from tryon.models.try_on import (
    GenerationRequest,
    GenerationResult,
    Job,
    JobMetrics,
    QueueMetadata,
    RequestLog,
    StatusResponse,
    TryOnState,
    map_queue_status,
)
from tryon.services.exceptions import FalApiError
from tryon.services.fal.client import FalQueueClient
from tryon.services.fal.retry import FalRetryExecutor
from tryon.services.try_on_cache import TryOnCache

logger = structlog.get_logger()


def build_model_input(request: GenerationRequest) -> dict[str, Any]:
    """Map a GenerationRequest onto the model's snake_case input payload.

    Optional fields that were not provided are omitted entirely.

    Raises:
        ValueError: If prompt or image URLs are missing
    """
    if not request.prompt:
        raise ValueError("A prompt is required for hairstyle generation")

    if not request.image_urls:
        raise ValueError("At least one image URL is required for hairstyle generation")

    payload: dict[str, Any] = {
        "prompt": request.prompt,
        "image_urls": list(request.image_urls),
    }

    if request.num_images is not None:
        payload["num_images"] = request.num_images

    if request.output_format:
        payload["output_format"] = request.output_format

    if request.sync_mode is not None:
        payload["sync_mode"] = request.sync_mode

    return payload


def normalize_queue_status(raw: dict[str, Any], model_id: str) -> StatusResponse:
    """Turn a raw provider queue status into the Job + QueueMetadata model."""
    raw_status = raw.get("status") or "IN_QUEUE"
    request_id = str(raw.get("request_id", ""))

    job = Job(id=request_id, model_id=model_id, status=map_queue_status(raw_status))

    queue_position = raw.get("queue_position")
    if isinstance(queue_position, int) and not isinstance(queue_position, bool):
        job.queue_position = max(0, queue_position)

    logs = raw.get("logs")
    if isinstance(logs, list):
        job.logs = [RequestLog.model_validate(entry) for entry in logs if isinstance(entry, dict)]

    metrics = raw.get("metrics")
    if isinstance(metrics, dict) and metrics:
        job.metrics = JobMetrics(inference_time=metrics.get("inference_time"))

    queue = QueueMetadata(
        request_id=request_id,
        status_url=raw.get("status_url", ""),
        response_url=raw.get("response_url", ""),
        cancel_url=raw.get("cancel_url", ""),
        raw_status=raw_status,
    )
    return StatusResponse(job=job, queue=queue)


class GenerationService:
    """Submits try-on jobs and reads their status through the shared executor."""

    def __init__(
        self,
        client_factory: Callable[[], FalQueueClient],
        executor: FalRetryExecutor,
        cache: TryOnCache,
        model_id: str,
    ):
        """Initialize generation service.

        Args:
            client_factory: Builds the provider client on first use. Raises
                FalClientConfigError when credentials are missing; it is called
                outside the executor so that error never counts as a failure.
            executor: Process-wide retry/circuit-breaker executor
            cache: Try-on response cache
            model_id: Provider endpoint id (e.g. "fal-ai/nano-banana/edit")
        """
        self._client_factory = client_factory
        self._client: FalQueueClient | None = None
        self.executor = executor
        self.cache = cache
        self.model_id = model_id

    def get_client(self) -> FalQueueClient:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    async def submit(self, request: GenerationRequest) -> StatusResponse:
        """Enqueue a hairstyle generation and return the normalized queue view."""
        model_input = build_model_input(request)
        client = self.get_client()

        raw_status = await self.executor.execute(
            lambda: client.submit(
                self.model_id,
                model_input,
                priority=request.priority,
                webhook_url=request.webhook_url,
                hint=request.hint,
            ),
            operation_name="queue.submit",
        )

        normalized = normalize_queue_status(raw_status, self.model_id)
        await self.cache.set_status(normalized)

        logger.info(
            "generation.submitted",
            request_id=normalized.job.id,
            model_id=self.model_id,
            image_count=len(request.image_urls),
            queue_position=normalized.job.queue_position,
        )
        return normalized

    async def get_status(
        self, request_id: str, include_result: bool = True, logs: bool = False
    ) -> StatusResponse:
        """Current status of a job, with the result once it has completed.

        Log-bearing responses bypass the cache in both directions.

        Raises:
            FalApiError, CircuitOpenError, FalClientConfigError: Provider failures.
                Cached entries for the job are invalidated before re-raising.
        """
        if not logs:
            cached = await self.cache.get_status(request_id, include_result)
            if cached is not None:
                logger.debug("generation.status_cache_hit", request_id=request_id)
                return cached

        client = self.get_client()

        try:
            raw_status = await self.executor.execute(
                lambda: client.status(self.model_id, request_id, logs=logs),
                operation_name="queue.status",
                request_id=request_id,
            )
            normalized = normalize_queue_status(raw_status, self.model_id)

            if not logs:
                await self.cache.set_status(normalized)

            if include_result:
                if normalized.job.status == TryOnState.COMPLETED:
                    raw_result = await self.executor.execute(
                        lambda: client.result(self.model_id, request_id),
                        operation_name="queue.result",
                        request_id=request_id,
                    )
                    result = _parse_result(raw_result, request_id)
                    normalized.result = result
                    await self.cache.set_result(request_id, result)
                elif not logs:
                    normalized.result = await self.cache.get_result(request_id)

            return normalized

        except Exception:
            if not logs:
                await self.cache.invalidate(request_id)
            raise


def _parse_result(raw: dict[str, Any], request_id: str) -> GenerationResult:
    # Some endpoints wrap the model output in {"data": ...}
    payload = raw.get("data") if isinstance(raw.get("data"), dict) else raw
    try:
        return GenerationResult.model_validate(payload)
    except ValidationError as e:
        raise FalApiError(
            status=502,
            body=raw,
            message=f"Unexpected result payload for request {request_id}: {e.error_count()} errors",
        ) from e
