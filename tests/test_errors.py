"""Tests for services/errors.py.

Covers:
- classify_error boundary mapping (httpx, builtins, pydantic, duck-typed)
- HTTP response mapping to rate limit variants
- RequestContext rendering and parameter redaction
"""

from __future__ import annotations

import asyncio
import errno

import httpx
import pydantic
import pytest

from hubcore.services.errors import (
    ErrorKind,
    GraphQLError,
    HttpApiError,
    NetworkError,
    RateLimitError,
    RequestContext,
    RequestTimeoutError,
    SecondaryRateLimitError,
    ServiceError,
    UnknownServiceError,
    ValidationError,
    WebhookHandlerError,
    classify_error,
    error_from_response,
    parse_retry_after,
    summarize_params,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _response(status: int, headers: dict[str, str] | None = None, text: str = "") -> httpx.Response:
    request = httpx.Request("GET", "https://api.github.com/repos/o/r")
    return httpx.Response(status, headers=headers, text=text, request=request)


class _Model(pydantic.BaseModel):
    name: str


class _ForeignError(Exception):
    pass


# ---------------------------------------------------------------------------
# HTTP responses
# ---------------------------------------------------------------------------


class TestErrorFromResponse:
    def test_plain_http_error(self) -> None:
        error = error_from_response(_response(500, text="boom"), "github")
        assert type(error) is HttpApiError
        assert error.status == 500
        assert error.kind == ErrorKind.HTTP
        assert error.body == "boom"
        assert error.service_id == "github"

    def test_429_is_rate_limit(self) -> None:
        error = error_from_response(_response(429, {"Retry-After": "3"}))
        assert isinstance(error, RateLimitError)
        assert error.retry_after == 3.0

    def test_403_exhausted_quota_is_rate_limit(self) -> None:
        error = error_from_response(_response(403, {"X-RateLimit-Remaining": "0"}))
        assert isinstance(error, RateLimitError)
        assert error.kind == ErrorKind.RATE_LIMIT

    def test_403_with_retry_after_is_secondary(self) -> None:
        error = error_from_response(_response(403, {"Retry-After": "60"}))
        assert isinstance(error, SecondaryRateLimitError)
        assert error.retry_after == 60.0

    def test_plain_403(self) -> None:
        error = error_from_response(_response(403, {"X-RateLimit-Remaining": "42"}))
        assert type(error) is HttpApiError


class TestParseRetryAfter:
    @pytest.mark.parametrize(
        "value,expected",
        [("5", 5.0), ("1.5", 1.5), (" 2 ", 2.0), ("0", None), ("soon", None), (None, None)],
    )
    def test_values(self, value, expected) -> None:
        assert parse_retry_after(value) == expected


# ---------------------------------------------------------------------------
# classify_error
# ---------------------------------------------------------------------------


class TestClassifyError:
    def test_service_error_passes_through(self) -> None:
        error = HttpApiError(500)
        assert classify_error(error) is error

    def test_httpx_status_error(self) -> None:
        response = _response(429)
        exc = httpx.HTTPStatusError("too many", request=response.request, response=response)
        error = classify_error(exc, "github")
        assert isinstance(error, RateLimitError)
        assert error.__cause__ is exc

    def test_httpx_timeout(self) -> None:
        assert isinstance(classify_error(httpx.ReadTimeout("slow")), RequestTimeoutError)

    def test_httpx_transport_error(self) -> None:
        assert isinstance(classify_error(httpx.ConnectError("refused")), NetworkError)

    def test_builtin_timeouts(self) -> None:
        assert isinstance(classify_error(TimeoutError()), RequestTimeoutError)
        assert isinstance(classify_error(asyncio.TimeoutError()), RequestTimeoutError)

    def test_connection_errors(self) -> None:
        assert isinstance(classify_error(ConnectionResetError("reset")), NetworkError)
        assert isinstance(
            classify_error(OSError(errno.ENETUNREACH, "unreachable")), NetworkError
        )

    def test_pydantic_validation(self) -> None:
        with pytest.raises(pydantic.ValidationError) as exc_info:
            _Model.model_validate({})
        error = classify_error(exc_info.value)
        assert isinstance(error, ValidationError)
        assert error.issues and error.issues[0]["loc"] == ("name",)

    def test_duck_typed_status(self) -> None:
        exc = _ForeignError("Service Unavailable")
        exc.status = 503
        error = classify_error(exc)
        assert type(error) is HttpApiError
        assert error.status == 503

    def test_duck_typed_rate_limit_message(self) -> None:
        exc = _ForeignError("API rate limit exceeded")
        exc.status = 403
        assert isinstance(classify_error(exc), RateLimitError)

    def test_duck_typed_secondary_rate_limit(self) -> None:
        exc = _ForeignError("You have exceeded a secondary rate limit")
        exc.status = 403
        assert isinstance(classify_error(exc), SecondaryRateLimitError)

    def test_duck_typed_graphql_errors(self) -> None:
        exc = _ForeignError("query failed")
        exc.errors = [{"type": "RATE_LIMITED", "message": "slow"}]
        error = classify_error(exc)
        assert isinstance(error, GraphQLError)
        assert error.error_types == ["RATE_LIMITED"]

    @pytest.mark.parametrize("code", ["ECONNRESET", "ENOTFOUND", "ECONNREFUSED"])
    def test_duck_typed_network_codes(self, code: str) -> None:
        exc = _ForeignError("request failed")
        exc.code = code
        assert isinstance(classify_error(exc), NetworkError)

    def test_duck_typed_timeout_code(self) -> None:
        exc = _ForeignError("request failed")
        exc.code = "ETIMEDOUT"
        assert isinstance(classify_error(exc), RequestTimeoutError)

    def test_unrecognised(self) -> None:
        exc = ValueError("nope")
        error = classify_error(exc, "github")
        assert isinstance(error, UnknownServiceError)
        assert error.kind == ErrorKind.UNKNOWN
        assert error.__cause__ is exc


# ---------------------------------------------------------------------------
# Context and messages
# ---------------------------------------------------------------------------


class TestContext:
    def test_str_without_context(self) -> None:
        assert str(ServiceError("failed")) == "failed"

    def test_with_context_fills_service_id(self) -> None:
        error = HttpApiError(500, "HTTP 500")
        ctx = RequestContext(
            method="GET", operation="getRepository", attempt=2, max_retries=3, service_id="github"
        )
        assert error.with_context(ctx) is error
        assert error.service_id == "github"
        assert str(error) == "HTTP 500 [GET getRepository, attempt 2/3]"

    def test_to_dict(self) -> None:
        ctx = RequestContext(method="POST", operation="graphql")
        data = ctx.to_dict()
        assert data["method"] == "POST"
        assert data["operation"] == "graphql"
        assert isinstance(data["started_at"], str)

    def test_webhook_handler_message(self) -> None:
        error = WebhookHandlerError("issues", "id", RuntimeError("db down"))
        assert str(error) == "Handler for issues event failed: db down"
        assert error.kind == ErrorKind.WEBHOOK_HANDLER


class TestSummarizeParams:
    def test_redacts_sensitive_keys(self) -> None:
        summary = summarize_params(
            {"owner": "o", "access_token": "ghp_x", "Authorization": "Bearer y", "apiKey": "k"}
        )
        assert summary == {
            "owner": "o",
            "access_token": "[REDACTED]",
            "Authorization": "[REDACTED]",
            "apiKey": "[REDACTED]",
        }

    def test_key_words_redacted_only_when_naming_a_secret(self) -> None:
        summary = summarize_params(
            {
                "sort_key": "created",
                "keyword": "bug",
                "cacheKey": "c",
                "key": "k",
                "api_key": "k",
                "X-Api-Key": "k",
                "ssh_key": "k",
                "clientSecret": "s",
            }
        )
        assert summary["sort_key"] == "created"
        assert summary["keyword"] == "bug"
        assert summary["cacheKey"] == "c"
        for name in ("key", "api_key", "X-Api-Key", "ssh_key", "clientSecret"):
            assert summary[name] == "[REDACTED]"

    def test_truncates_long_strings(self) -> None:
        summary = summarize_params({"query": "q" * 150})
        assert summary["query"] == "q" * 100 + "..."

    def test_nested_and_long_lists(self) -> None:
        summary = summarize_params({"body": {"secret": "s", "n": 1}, "ids": list(range(20))})
        assert summary["body"] == {"secret": "[REDACTED]", "n": 1}
        assert summary["ids"] == "<20 items>"

    def test_empty(self) -> None:
        assert summarize_params(None) == {}
