"""fal.ai queue client built on the fal_client SDK.

The SDK talks to the asynchronous queue API (https://queue.fal.run) and
returns typed handles and status objects. This wrapper turns them back into
the raw queue payload shape (request_id, status, status_url, ...) that the
generation service normalizes, and turns SDK failures into
FalApiError(status, body) so callers can decide whether to retry.
"""

from typing import Any

import httpx
import structlog
from fal_client.client import (
    AsyncClient,
    Completed,
    FalClientError,
    InProgress,
    Queued,
)

from tryon.core.config import Settings
from tryon.services.exceptions import FalApiError, FalClientConfigError

logger = structlog.get_logger()

DEFAULT_QUEUE_URL = "https://queue.fal.run"


def queue_app_path(model_id: str) -> str:
    """Owner/alias prefix used by the per-request queue endpoints.

    "fal-ai/nano-banana/edit" has status URLs under "fal-ai/nano-banana".
    """
    parts = [part for part in model_id.strip("/").split("/") if part]
    if len(parts) < 2:
        raise ValueError(f"Invalid fal.ai model id: {model_id!r}")
    return f"{parts[0]}/{parts[1]}"


def queue_urls(model_id: str, request_id: str) -> dict[str, str]:
    base = f"{DEFAULT_QUEUE_URL}/{queue_app_path(model_id)}/requests/{request_id}"
    return {
        "status_url": f"{base}/status",
        "response_url": base,
        "cancel_url": f"{base}/cancel",
    }


class FalQueueClient:
    """Queue operations for one fal.ai account."""

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        sdk_client: Any = None,
    ):
        """Initialize fal.ai queue client.

        Args:
            api_key: fal.ai API key (from FAL_API_KEY env var)
            timeout: Per-request timeout in seconds
            sdk_client: Optional preconfigured fal_client.AsyncClient

        Raises:
            FalClientConfigError: If api_key is empty
        """
        if not api_key:
            raise FalClientConfigError("FAL_API_KEY is not set. fal.ai integration is unavailable.")

        self.timeout = timeout
        self._sdk = sdk_client or AsyncClient(key=api_key, default_timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FalQueueClient":
        return cls(api_key=settings.fal_api_key, timeout=settings.fal_request_timeout_seconds)

    async def submit(
        self,
        model_id: str,
        input: dict[str, Any],
        priority: str | None = None,
        webhook_url: str | None = None,
        hint: str | None = None,
    ) -> dict[str, Any]:
        """Enqueue a request.

        Returns:
            Raw queue status: request_id, status, status_url, response_url
            and cancel_url
        """
        try:
            handle = await self._sdk.submit(
                model_id,
                arguments=input,
                hint=hint,
                webhook_url=webhook_url,
                priority=priority,
            )
        except FalClientError as e:
            raise _api_error(e, f"fal.ai submit to {model_id} failed") from e

        payload = queue_urls(model_id, handle.request_id)
        for field in ("status_url", "response_url", "cancel_url"):
            value = getattr(handle, field, None)
            if value:
                payload[field] = value

        # Submit answers are always "in queue"
        return {"request_id": handle.request_id, "status": "IN_QUEUE", **payload}

    async def status(self, model_id: str, request_id: str, logs: bool = False) -> dict[str, Any]:
        try:
            status = await self._sdk.status(model_id, request_id, with_logs=logs)
        except FalClientError as e:
            raise _api_error(e, f"fal.ai status for {request_id} failed") from e
        except ValueError as e:
            # The SDK rejects status values it does not recognize
            raise FalApiError(status=502, body=str(e), message=f"Unexpected fal.ai status: {e}") from e

        payload: dict[str, Any] = {"request_id": request_id, **queue_urls(model_id, request_id)}

        if isinstance(status, Queued):
            payload["status"] = "IN_QUEUE"
            payload["queue_position"] = status.position
        elif isinstance(status, InProgress):
            payload["status"] = "IN_PROGRESS"
            if status.logs is not None:
                payload["logs"] = status.logs
        elif isinstance(status, Completed):
            payload["status"] = "COMPLETED"
            if status.logs is not None:
                payload["logs"] = status.logs
            if status.metrics:
                payload["metrics"] = status.metrics
        else:
            raise FalApiError(
                status=502,
                body=repr(status),
                message=f"Unexpected fal.ai status type: {type(status).__name__}",
            )

        return payload

    async def result(self, model_id: str, request_id: str) -> dict[str, Any]:
        try:
            payload = await self._sdk.result(model_id, request_id)
        except FalClientError as e:
            raise _api_error(e, f"fal.ai result for {request_id} failed") from e
        except ValueError as e:
            raise FalApiError(
                status=502, body=None, message=f"Invalid JSON from fal.ai: {e}"
            ) from e

        if not isinstance(payload, dict):
            raise FalApiError(
                status=502,
                body=payload,
                message=f"Unexpected response shape from fal.ai: {type(payload).__name__}",
            )

        return payload


def _api_error(error: FalClientError, message: str) -> FalApiError:
    """Recover the HTTP status and body behind an SDK error."""
    response = getattr(error, "response", None)
    if not isinstance(response, httpx.Response) and isinstance(
        error.__cause__, httpx.HTTPStatusError
    ):
        response = error.__cause__.response

    if not isinstance(response, httpx.Response):
        logger.warning("fal.client_error_without_response", error=str(error))
        return FalApiError(status=502, body=str(error) or None, message=message)

    return FalApiError(
        status=response.status_code,
        body=_error_body(response),
        message=f"{message} ({response.status_code})",
    )


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text or None
