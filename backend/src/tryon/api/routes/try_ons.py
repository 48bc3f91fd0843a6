"""Try-on job API endpoints.

This module implements the client-facing job abstraction over the fal.ai queue:
- POST /api/v1/try-ons - Queue a hairstyle transformation
- GET /api/v1/try-ons/{job_id} - Poll a job's status (and result once completed)

Each request runs the same stages, any of which can short-circuit to an error:
authenticate → rate limit → read/validate body → capacity check (submit only)
→ generation service → serialize.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Query, Request, status

from tryon.api.dependencies import (
    get_client_key,
    get_current_user,
    get_gateway_state,
    get_generation_service,
    get_settings,
)
from tryon.api.validation import check_declared_length, parse_json_body, parse_submit_payload
from tryon.core.config import Settings
from tryon.core.state import GatewayState
from tryon.models.try_on import Job, QueueMetadata, TryOnState
from tryon.services.auth import AuthUser
from tryon.services.exceptions import (
    GatewayError,
    TryOnUnexpectedError,
    TryOnValidationError,
    UnauthorizedError,
)
from tryon.services.generation import GenerationService

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/try-ons", tags=["try-ons"])


def serialize_job(job: Job) -> dict[str, Any]:
    """Client view of a job; absent optional fields and empty logs are omitted."""
    serialized: dict[str, Any] = {
        "id": job.id,
        "modelId": job.model_id,
        "status": job.status.value,
    }

    if job.queue_position is not None:
        serialized["queuePosition"] = job.queue_position

    if job.metrics is not None:
        serialized["metrics"] = job.metrics.model_dump(by_alias=True)

    if job.logs:
        serialized["logs"] = [log.model_dump(by_alias=True, exclude_none=True) for log in job.logs]

    return serialized


def build_meta(job: Job, queue: QueueMetadata) -> dict[str, Any]:
    return {
        "modelId": job.model_id,
        "provider": {
            "requestId": queue.request_id,
            "rawStatus": queue.raw_status,
            "statusUrl": queue.status_url,
            "responseUrl": queue.response_url,
        },
    }


def _parse_flag(value: str | None, default: bool) -> bool:
    # includeResult is on unless explicitly "false"; logs is off unless explicitly "true"
    if not value:
        return default
    if default:
        return value.lower() != "false"
    return value.lower() == "true"


def _unexpected(exc: Exception, **context: Any) -> TryOnUnexpectedError:
    logger.exception(
        "try_on.unexpected_error", error=str(exc), error_type=type(exc).__name__, **context
    )
    return TryOnUnexpectedError()


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def submit_try_on(
    request: Request,
    user: AuthUser | None = Depends(get_current_user),
    state: GatewayState = Depends(get_gateway_state),
    service: GenerationService = Depends(get_generation_service),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Queue a hairstyle transformation for the signed-in user.

    Returns:
        202 {"data": {"job": {...}}, "meta": {"modelId": ..., "provider": {...}}}

    Raises:
        GatewayError: Rendered by the gateway error handler (400, 401, 413,
            429, 404/4xx/5xx provider errors, 503, 500)

    Example:
        POST /api/v1/try-ons
        {"prompt": "add bangs", "imageUrls": ["https://example.com/a.jpg"]}

        Response 202:
        {"data": {"job": {"id": "req_123", "modelId": "fal-ai/nano-banana/edit",
                          "status": "queued", "queuePosition": 0}},
         "meta": {"modelId": "fal-ai/nano-banana/edit",
                  "provider": {"requestId": "req_123", "rawStatus": "IN_QUEUE", ...}}}
    """
    if user is None:
        raise UnauthorizedError("Sign-in required to queue hairstyle transformations.")

    client_key = get_client_key(request, user)

    try:
        state.try_on_rate_limiter.check(client_key)

        max_bytes = state.max_request_body_bytes
        check_declared_length(request.headers.get("content-length"), max_bytes)
        payload = parse_json_body(await request.body(), max_bytes)
        generation_request = parse_submit_payload(
            payload, allowed_hosts=settings.allowed_image_hosts
        )

        state.ownership.sweep_expired()
        with state.ownership.reservation(client_key):
            response = await service.submit(generation_request)
            state.ownership.register(client_key, response.job.id)

    except GatewayError:
        raise
    except Exception as e:
        raise _unexpected(e, client_key=client_key) from e

    logger.info(
        "try_on.submitted",
        job_id=response.job.id,
        client_key=client_key,
        active_jobs=len(state.ownership.active_jobs(client_key)),
    )

    return {
        "data": {"job": serialize_job(response.job)},
        "meta": build_meta(response.job, response.queue),
    }


@router.get("/{job_id}")
async def get_try_on_status(
    request: Request,
    job_id: str,
    include_result: str | None = Query(default=None, alias="includeResult"),
    logs: str | None = Query(default=None),
    user: AuthUser | None = Depends(get_current_user),
    state: GatewayState = Depends(get_gateway_state),
    service: GenerationService = Depends(get_generation_service),
) -> dict[str, Any]:
    """Poll a try-on job.

    Query params:
        includeResult: Include the result once completed (default true)
        logs: Include provider logs (default false; bypasses the cache)

    Returns:
        200 {"data": {"job": {...}, "result"?: {...}}, "meta": {...}}

    Releases the caller's queue slot once the job is observed completed.
    """
    if user is None:
        raise UnauthorizedError("Sign-in required to view hairstyle transformation status.")

    client_key = get_client_key(request, user)

    job_id = job_id.strip()
    if not job_id:
        raise TryOnValidationError("jobId", "jobId is required")

    want_result = _parse_flag(include_result, default=True)
    want_logs = _parse_flag(logs, default=False)

    try:
        state.try_on_rate_limiter.check(client_key)
        state.ownership.sweep_expired()

        response = await service.get_status(job_id, include_result=want_result, logs=want_logs)

    except GatewayError:
        raise
    except Exception as e:
        raise _unexpected(e, client_key=client_key, job_id=job_id) from e

    if response.job.status == TryOnState.COMPLETED:
        state.ownership.release(response.job.id)

    data: dict[str, Any] = {"job": serialize_job(response.job)}
    if response.result is not None:
        data["result"] = response.result.model_dump()

    return {
        "data": data,
        "meta": build_meta(response.job, response.queue),
    }
