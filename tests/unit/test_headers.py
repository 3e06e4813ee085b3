"""Unit tests for header utilities."""

from idempotent_coordinator.utils.headers import (
    OPTIONAL_VOLATILE_HEADERS,
    VOLATILE_HEADERS,
    add_replay_headers,
    filter_response_headers,
)


class TestFilterResponseHeaders:
    def test_removes_volatile_headers(self):
        headers = {
            "Content-Type": "application/json",
            "Date": "Mon, 01 Oct 2025 12:00:00 GMT",
            "Server": "uvicorn",
            "content-length": "12",
        }
        assert filter_response_headers(headers) == {"Content-Type": "application/json"}

    def test_comparison_is_case_insensitive(self):
        assert filter_response_headers({"DATE": "x", "x-custom": "y"}) == {"x-custom": "y"}

    def test_cookies_kept_by_default(self):
        headers = {"Set-Cookie": "a=b"}
        assert filter_response_headers(headers) == headers

    def test_cookies_removed_on_request(self):
        headers = {"Set-Cookie": "a=b", "ETag": "123", "x-id": "1"}
        assert filter_response_headers(headers, remove_cookies=True) == {"x-id": "1"}

    def test_additional_volatile(self):
        headers = {"X-Request-Id": "abc", "x-keep": "1"}
        assert filter_response_headers(headers, additional_volatile=["x-request-id"]) == {
            "x-keep": "1"
        }

    def test_does_not_mutate_input(self):
        headers = {"Date": "x"}
        filter_response_headers(headers)
        assert headers == {"Date": "x"}

    def test_header_sets_are_lowercase(self):
        assert all(h == h.lower() for h in VOLATILE_HEADERS | OPTIONAL_VOLATILE_HEADERS)


class TestAddReplayHeaders:
    def test_replay(self):
        result = add_replay_headers({"content-type": "text/plain"}, "POST /orders#abc")
        assert result == {
            "content-type": "text/plain",
            "Idempotent-Replay": "true",
            "Idempotency-Key": "POST /orders#abc",
        }

    def test_fresh_response(self):
        result = add_replay_headers({}, "k", is_replay=False)
        assert result["Idempotent-Replay"] == "false"

    def test_does_not_mutate_input(self):
        headers: dict[str, str] = {}
        add_replay_headers(headers, "k")
        assert headers == {}
