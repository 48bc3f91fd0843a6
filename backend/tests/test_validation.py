"""Tests for try-on request body parsing and payload validation."""

import pytest

from tryon.api.validation import check_declared_length, parse_json_body, parse_submit_payload
from tryon.services.exceptions import RequestTooLargeError, TryOnValidationError

IMAGE = "https://example.com/me.jpg"


def expect_invalid(payload, field, allowed_hosts=None) -> TryOnValidationError:
    with pytest.raises(TryOnValidationError) as exc_info:
        parse_submit_payload(payload, allowed_hosts=allowed_hosts)
    assert exc_info.value.field == field
    return exc_info.value


class TestBodyParsing:
    def test_declared_length_over_cap(self):
        with pytest.raises(RequestTooLargeError):
            check_declared_length("2048", max_bytes=1024)

    def test_declared_length_missing_or_garbage_is_ignored(self):
        check_declared_length(None, max_bytes=1024)
        check_declared_length("abc", max_bytes=1024)

    def test_actual_body_over_cap(self):
        with pytest.raises(RequestTooLargeError):
            parse_json_body(b"x" * 1025, max_bytes=1024)

    @pytest.mark.parametrize(
        "body, message",
        [
            (b"", "Request body must be a JSON object"),
            (b"   ", "Request body must be a JSON object"),
            (b"{not json", "Invalid JSON payload"),
            (b"[1, 2]", "Request body must be a JSON object"),
            (b"\xff\xfe", "Invalid JSON payload"),
        ],
    )
    def test_bad_bodies(self, body, message):
        with pytest.raises(TryOnValidationError) as exc_info:
            parse_json_body(body, max_bytes=1024)

        assert exc_info.value.field == "payload"
        assert exc_info.value.message == message

    def test_object_body(self):
        assert parse_json_body(b'{"prompt": "bob"}', max_bytes=1024) == {"prompt": "bob"}


class TestParseSubmitPayload:
    def test_minimal_payload(self):
        request = parse_submit_payload({"prompt": "  add bangs  ", "imageUrls": [IMAGE]})

        assert request.prompt == "add bangs"
        assert request.image_urls == [IMAGE]
        assert request.num_images is None
        assert request.webhook_url is None

    def test_full_payload(self):
        request = parse_submit_payload(
            {
                "prompt": "add bangs",
                "imageUrls": [IMAGE],
                "numImages": 2.0,
                "outputFormat": "png",
                "syncMode": True,
                "priority": "low",
                "webhookUrl": " https://hooks.example.com/cb ",
                "hint": "runner-1",
            }
        )

        assert request.num_images == 2
        assert request.output_format == "png"
        assert request.sync_mode is True
        assert request.priority == "low"
        assert request.webhook_url == "https://hooks.example.com/cb"
        assert request.hint == "runner-1"

    def test_image_urls_are_trimmed_and_blanks_dropped(self):
        request = parse_submit_payload(
            {"prompt": "p", "imageUrls": [f"  {IMAGE}  ", "", "   "]}
        )

        assert request.image_urls == [IMAGE]

    @pytest.mark.parametrize("prompt", [None, "", "   ", 42])
    def test_prompt_is_required(self, prompt):
        expect_invalid({"prompt": prompt, "imageUrls": [IMAGE]}, "prompt")

    @pytest.mark.parametrize("image_urls", [None, [], "https://example.com/a.jpg"])
    def test_image_urls_must_be_a_non_empty_list(self, image_urls):
        expect_invalid({"prompt": "p", "imageUrls": image_urls}, "imageUrls")

    def test_more_than_ten_urls_is_rejected(self):
        error = expect_invalid({"prompt": "p", "imageUrls": [IMAGE] * 11}, "imageUrls")

        assert error.message == "Maximum 10 image URLs allowed"

    def test_only_blank_urls_is_rejected(self):
        error = expect_invalid({"prompt": "p", "imageUrls": ["  ", ""]}, "imageUrls")

        assert error.message == "imageUrls cannot be empty"

    def test_non_string_url_is_rejected(self):
        expect_invalid({"prompt": "p", "imageUrls": [IMAGE, 5]}, "imageUrls")

    def test_overlong_url_is_rejected(self):
        url = "https://example.com/" + "a" * 2100

        error = expect_invalid({"prompt": "p", "imageUrls": [url]}, "imageUrls")

        assert "maximum length of 2048" in error.message

    @pytest.mark.parametrize(
        "url, message",
        [
            ("ftp://example.com/a.jpg", "image URL must use http or https"),
            ("http://192.168.0.10/a.jpg", "image URL host is not allowed"),
            ("http://localhost/a.jpg", "image URL host is not allowed"),
        ],
    )
    def test_unsafe_urls_are_rejected(self, url, message):
        error = expect_invalid({"prompt": "p", "imageUrls": [url]}, "imageUrls")

        assert error.message == message

    def test_allow_list_applies_to_images(self):
        expect_invalid(
            {"prompt": "p", "imageUrls": [IMAGE]},
            "imageUrls",
            allowed_hosts=frozenset({"cdn.example.org"}),
        )

    @pytest.mark.parametrize("num_images", [0, 5, 1.5, "2", True])
    def test_num_images_bounds_and_type(self, num_images):
        expect_invalid({"prompt": "p", "imageUrls": [IMAGE], "numImages": num_images}, "numImages")

    @pytest.mark.parametrize("output_format", ["gif", 1, ["png"]])
    def test_output_format(self, output_format):
        expect_invalid(
            {"prompt": "p", "imageUrls": [IMAGE], "outputFormat": output_format}, "outputFormat"
        )

    def test_sync_mode_must_be_boolean(self):
        expect_invalid({"prompt": "p", "imageUrls": [IMAGE], "syncMode": "yes"}, "syncMode")

    @pytest.mark.parametrize("priority", ["high", {"level": "low"}])
    def test_priority(self, priority):
        expect_invalid({"prompt": "p", "imageUrls": [IMAGE], "priority": priority}, "priority")

    def test_webhook_must_be_safe(self):
        expect_invalid(
            {"prompt": "p", "imageUrls": [IMAGE], "webhookUrl": "http://10.0.0.5/hook"},
            "webhookUrl",
        )

    def test_blank_webhook_is_ignored(self):
        request = parse_submit_payload({"prompt": "p", "imageUrls": [IMAGE], "webhookUrl": "  "})

        assert request.webhook_url is None

    def test_hint_must_be_string(self):
        expect_invalid({"prompt": "p", "imageUrls": [IMAGE], "hint": 3}, "hint")

    def test_non_object_payload(self):
        expect_invalid(["prompt"], "payload")
