"""Request body parsing and validation for the try-on routes.

Validation is done by hand rather than through a Pydantic request model so
that every failure maps onto a 400 INVALID_REQUEST naming the offending
field, and so the body size can be enforced before any JSON parsing.
"""

import json
from typing import Any, Iterable

from tryon.models.try_on import GenerationRequest
from tryon.services.exceptions import RequestTooLargeError, TryOnValidationError
from tryon.services.url_validation import (
    DEFAULT_MAX_URL_LENGTH,
    describe_url_failure,
    validate_remote_url,
)

MAX_IMAGE_URLS = 10
MAX_URL_LENGTH = DEFAULT_MAX_URL_LENGTH
ALLOWED_OUTPUT_FORMATS = frozenset({"jpeg", "png"})
ALLOWED_PRIORITIES = frozenset({"low", "normal"})


def check_declared_length(content_length: str | None, max_bytes: int) -> None:
    """Reject early on a declared Content-Length above the cap.

    Unparseable values are ignored here; the actual byte count is checked
    again once the body has been read.
    """
    if not content_length:
        return
    try:
        declared = int(content_length)
    except ValueError:
        return
    if declared > max_bytes:
        raise RequestTooLargeError()


def parse_json_body(body: bytes, max_bytes: int) -> dict[str, Any]:
    """Decode a request body into a JSON object.

    Raises:
        RequestTooLargeError: Body is larger than max_bytes
        TryOnValidationError: Body is blank, not JSON, or not an object
    """
    if len(body) > max_bytes:
        raise RequestTooLargeError()

    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        raise TryOnValidationError("payload", "Invalid JSON payload")

    if not text.strip():
        raise TryOnValidationError("payload", "Request body must be a JSON object")

    try:
        parsed = json.loads(text)
    except ValueError:
        raise TryOnValidationError("payload", "Invalid JSON payload")

    if not isinstance(parsed, dict):
        raise TryOnValidationError("payload", "Request body must be a JSON object")

    return parsed


def _is_int(value: Any) -> bool:
    # JSON true/false decode to bool, which is an int subclass
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _sanitize_image_urls(image_urls: Any, allowed_hosts: Iterable[str] | None) -> list[str]:
    if not isinstance(image_urls, list) or len(image_urls) == 0:
        raise TryOnValidationError("imageUrls", "imageUrls must include at least one image URL")

    if len(image_urls) > MAX_IMAGE_URLS:
        raise TryOnValidationError("imageUrls", f"Maximum {MAX_IMAGE_URLS} image URLs allowed")

    sanitized = []
    for value in image_urls:
        if not isinstance(value, str):
            raise TryOnValidationError("imageUrls", "imageUrls must be strings")

        trimmed = value.strip()
        if not trimmed:
            continue

        if len(trimmed) > MAX_URL_LENGTH:
            raise TryOnValidationError(
                "imageUrls", f"URL exceeds maximum length of {MAX_URL_LENGTH} characters"
            )
        sanitized.append(trimmed)

    if not sanitized:
        raise TryOnValidationError("imageUrls", "imageUrls cannot be empty")

    for url in sanitized:
        validation = validate_remote_url(url, allowed_hosts=allowed_hosts)
        if not validation.valid:
            raise TryOnValidationError("imageUrls", describe_url_failure(validation.reason))

    return sanitized


def parse_submit_payload(
    payload: Any, allowed_hosts: Iterable[str] | None = None
) -> GenerationRequest:
    """Validate and sanitize a submission payload.

    Args:
        payload: Decoded JSON body
        allowed_hosts: Optional image/webhook host allow-list

    Returns:
        GenerationRequest with trimmed prompt and 1..10 vetted image URLs

    Raises:
        TryOnValidationError: On the first invalid field
    """
    if not isinstance(payload, dict):
        raise TryOnValidationError("payload", "Request body must be a JSON object")

    prompt = payload.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise TryOnValidationError("prompt", "prompt is required")

    image_urls = _sanitize_image_urls(payload.get("imageUrls"), allowed_hosts)

    num_images = payload.get("numImages")
    if num_images is not None:
        if not _is_int(num_images):
            raise TryOnValidationError("numImages", "numImages must be an integer between 1 and 4")
        num_images = int(num_images)
        if num_images < 1 or num_images > 4:
            raise TryOnValidationError("numImages", "numImages must be between 1 and 4")

    output_format = payload.get("outputFormat")
    if output_format is not None and (
        not isinstance(output_format, str) or output_format not in ALLOWED_OUTPUT_FORMATS
    ):
        raise TryOnValidationError("outputFormat", 'outputFormat must be either "jpeg" or "png"')

    sync_mode = payload.get("syncMode")
    if sync_mode is not None and not isinstance(sync_mode, bool):
        raise TryOnValidationError("syncMode", "syncMode must be a boolean")

    priority = payload.get("priority")
    if priority is not None and (
        not isinstance(priority, str) or priority not in ALLOWED_PRIORITIES
    ):
        raise TryOnValidationError("priority", 'priority must be either "low" or "normal"')

    webhook_url = None
    raw_webhook = payload.get("webhookUrl")
    if raw_webhook is not None:
        if not isinstance(raw_webhook, str):
            raise TryOnValidationError("webhookUrl", "webhookUrl must be a string")
        trimmed = raw_webhook.strip()
        if trimmed:
            validation = validate_remote_url(trimmed, allowed_hosts=allowed_hosts)
            if not validation.valid:
                raise TryOnValidationError("webhookUrl", describe_url_failure(validation.reason))
            webhook_url = trimmed

    hint = payload.get("hint")
    if hint is not None and not isinstance(hint, str):
        raise TryOnValidationError("hint", "hint must be a string")

    return GenerationRequest(
        prompt=prompt.strip(),
        image_urls=image_urls,
        num_images=num_images,
        output_format=output_format,
        sync_mode=sync_mode,
        priority=priority,
        webhook_url=webhook_url,
        hint=hint,
    )
