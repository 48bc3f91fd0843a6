"""Caching of normalized try-on status responses and completed results.

Two independent entries per job:
- tryon:status:<id>  normalized {job, queue} view, short TTL (job state moves fast)
- tryon:result:<id>  completed result payload, long TTL (results are immutable)
"""

import structlog
from pydantic import ValidationError

from tryon.models.try_on import GenerationResult, StatusResponse
from tryon.services.cache import CacheBackend

logger = structlog.get_logger()

STATUS_CACHE_PREFIX = "tryon:status:"
RESULT_CACHE_PREFIX = "tryon:result:"
STATUS_CACHE_TTL_SECONDS = 5
RESULT_CACHE_TTL_SECONDS = 60 * 60 * 24


def status_cache_key(request_id: str) -> str:
    return f"{STATUS_CACHE_PREFIX}{request_id}"


def result_cache_key(request_id: str) -> str:
    return f"{RESULT_CACHE_PREFIX}{request_id}"


class TryOnCache:
    """Typed access to the try-on cache entries on top of a CacheBackend."""

    def __init__(
        self,
        backend: CacheBackend,
        status_ttl_seconds: int = STATUS_CACHE_TTL_SECONDS,
        result_ttl_seconds: int = RESULT_CACHE_TTL_SECONDS,
    ):
        self.backend = backend
        self.status_ttl_seconds = status_ttl_seconds
        self.result_ttl_seconds = result_ttl_seconds

    async def get_status(self, request_id: str, include_result: bool) -> StatusResponse | None:
        """Cached {job, queue}, plus the cached result when asked and available."""
        raw = await self.backend.get(status_cache_key(request_id))
        cached = _load(StatusResponse, raw, status_cache_key(request_id))
        if cached is None:
            return None

        response = StatusResponse(job=cached.job, queue=cached.queue)
        if include_result:
            response.result = await self.get_result(request_id)
        return response

    async def set_status(self, response: StatusResponse) -> None:
        # The status entry never embeds the result; results have their own TTL
        payload = StatusResponse(job=response.job, queue=response.queue)
        await self.backend.set(
            status_cache_key(response.job.id),
            payload.model_dump_json(by_alias=True, exclude_none=True),
            self.status_ttl_seconds,
        )

    async def get_result(self, request_id: str) -> GenerationResult | None:
        raw = await self.backend.get(result_cache_key(request_id))
        return _load(GenerationResult, raw, result_cache_key(request_id))

    async def set_result(self, request_id: str, result: GenerationResult) -> None:
        await self.backend.set(
            result_cache_key(request_id),
            result.model_dump_json(),
            self.result_ttl_seconds,
        )

    async def invalidate(self, request_id: str) -> None:
        await self.backend.delete(status_cache_key(request_id), result_cache_key(request_id))


def _load(model, raw: str | None, key: str):
    if not raw:
        return None
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        logger.error("cache.parse_failed", key=key, error=str(e))
        return None
