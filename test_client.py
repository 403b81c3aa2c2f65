"""Tests for the request executor and auth strategies."""

import asyncio

import aiohttp
import pytest

from conftest import FakeResponse, FakeSession
from connectors.auth import BasicAuth, BearerAuth, HmacAuth, PreparedRequest, generate_signature
from connectors.client import ExecutorConfig, RequestExecutor, RetryConfig
from connectors.errors import ApiError, AuthError, MalformedResponse, NotFoundError, RateLimitExceeded
from connectors.normalizer import XML_ARRAY_TAGS


def make_executor(session, sleep, **overrides):
    config = ExecutorConfig(base_url="https://example.test/api", source_name="Test", **overrides)
    return RequestExecutor(config, BearerAuth("tok"), session=session, sleep=sleep)


class TestRetryConfig:
    def test_retry_after_header_parsed(self):
        assert RetryConfig().parse_retry_after("3") == 3.0

    def test_retry_after_defaults_when_missing_or_garbage(self):
        config = RetryConfig()
        assert config.parse_retry_after(None) == 10.0
        assert config.parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 10.0
        assert config.parse_retry_after("-5") == 10.0

    def test_transport_delay_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=4.0)
        assert [config.get_delay(i) for i in range(4)] == [1.0, 2.0, 4.0, 4.0]


class TestRateLimitBackoff:
    def test_retries_then_succeeds(self, session, sleep):
        session.add(
            "GET", "/api/tickets",
            FakeResponse(429, "", {"Retry-After": "2"}),
            FakeResponse(429, ""),
            FakeResponse(200, {"tickets": [1]}),
        )
        executor = make_executor(session, sleep)

        data = asyncio.run(executor.execute("/tickets"))

        assert data == {"tickets": [1]}
        assert sleep.delays == [2.0, 10.0]
        assert executor.request_count == 3

    def test_gives_up_after_five_retries(self, session, sleep):
        session.add("GET", "/api/tickets", FakeResponse(429, "", {"Retry-After": "1"}))
        executor = make_executor(session, sleep)

        with pytest.raises(RateLimitExceeded) as exc_info:
            asyncio.run(executor.execute("/tickets"))

        assert exc_info.value.retries == 5
        assert exc_info.value.status_code == 429
        assert len(session.calls) == 6
        assert sleep.delays == [1.0] * 5

    def test_max_total_wait_stops_early(self, session, sleep):
        session.add("GET", "/api/tickets", FakeResponse(429, "", {"Retry-After": "20"}))
        executor = make_executor(session, sleep, retry_config=RetryConfig(max_total_wait=30))

        with pytest.raises(RateLimitExceeded):
            asyncio.run(executor.execute("/tickets"))

        assert sleep.delays == [20.0]

    def test_extra_rate_limit_status(self, session, sleep):
        session.add("GET", "/api/tickets", FakeResponse(503, ""), FakeResponse(200, {"ok": True}))
        executor = make_executor(
            session, sleep, retry_config=RetryConfig(default_retry_after=90.0, rate_limit_statuses=(429, 503))
        )

        assert asyncio.run(executor.execute("/tickets")) == {"ok": True}
        assert sleep.delays == [90.0]

    def test_transport_error_retried(self, session, sleep):
        session.add(
            "GET", "/api/tickets",
            aiohttp.ClientConnectionError("reset"),
            FakeResponse(200, {"ok": True}),
        )
        executor = make_executor(session, sleep)

        assert asyncio.run(executor.execute("/tickets")) == {"ok": True}
        assert sleep.delays == [1.0]


class TestErrorMapping:
    @pytest.mark.parametrize("status,error", [(401, AuthError), (403, AuthError), (404, NotFoundError)])
    def test_status_specific_errors(self, session, sleep, status, error):
        session.add("GET", "/api/me", FakeResponse(status, "nope"))
        with pytest.raises(error) as exc_info:
            asyncio.run(make_executor(session, sleep).execute("/me"))
        assert exc_info.value.status_code == status
        assert sleep.delays == []

    def test_server_error_body_truncated(self, session, sleep):
        session.add("GET", "/api/me", FakeResponse(500, "x" * 500))
        with pytest.raises(ApiError) as exc_info:
            asyncio.run(make_executor(session, sleep).execute("/me"))
        assert not isinstance(exc_info.value, AuthError)
        assert len(exc_info.value.response_body) == 200

    def test_invalid_json_is_malformed(self, session, sleep):
        session.add("GET", "/api/me", FakeResponse(200, "{not json"))
        with pytest.raises(MalformedResponse):
            asyncio.run(make_executor(session, sleep).execute("/me"))


class TestDecoding:
    def test_empty_body_is_empty_dict(self, session, sleep):
        session.add("PUT", "/api/tickets/1", FakeResponse(204, ""))
        assert asyncio.run(make_executor(session, sleep).execute("/tickets/1", method="PUT", body={})) == {}

    def test_query_string_split_into_params(self, session, sleep):
        session.add("GET", "/api/tickets", FakeResponse(200, {"tickets": []}))
        asyncio.run(make_executor(session, sleep).execute("/tickets?page=2&per_page=100"))
        call = session.calls[0]
        assert call.url == "https://example.test/api/tickets"
        assert call.params == {"page": "2", "per_page": "100"}
        assert call.headers["Authorization"] == "Bearer tok"

    def test_xml_singleton_is_list(self, session, sleep):
        session.add(
            "GET", "/Tickets/Ticket",
            FakeResponse(200, '<tickets><ticket id="7"><subject>Hi</subject></ticket></tickets>'),
        )
        executor = make_executor(
            session, sleep, response_format="xml", endpoint_param="e", xml_array_tags=XML_ARRAY_TAGS
        )

        data = asyncio.run(executor.execute("/Tickets/Ticket"))

        assert isinstance(data["tickets"]["ticket"], list)
        assert data["tickets"]["ticket"][0]["@_id"] == "7"
        assert data["tickets"]["ticket"][0]["subject"] == "Hi"

    def test_broken_xml_is_malformed(self, session, sleep):
        session.add("GET", "/Base/User", FakeResponse(200, "<users><user>"))
        executor = make_executor(session, sleep, response_format="xml", endpoint_param="e")
        with pytest.raises(MalformedResponse):
            asyncio.run(executor.execute("/Base/User"))


class TestAuthStrategies:
    def test_basic_auth_header(self):
        request = PreparedRequest(method="GET", url="https://x")
        BasicAuth("agent@example.com/token", "abc").apply(request)
        assert request.headers["Authorization"] == "Basic YWdlbnRAZXhhbXBsZS5jb20vdG9rZW46YWJj"

    def test_hmac_signature_is_base64_sha256(self):
        # HMAC-SHA256("secret", "salt"), base64
        assert generate_signature("secret", "salt") == "hoVxX2132GWCjsm3bNMpI+Ooszpn2oRRM+IEMU9rsQs="

    def test_hmac_get_signs_query_post_signs_form(self):
        auth = HmacAuth("key", "secret", salt_factory=lambda: "s1")

        get = PreparedRequest(method="GET", url="https://x")
        auth.apply(get)
        assert get.params["apikey"] == "key"
        assert get.params["salt"] == "s1"
        assert get.data is None

        post = PreparedRequest(method="POST", url="https://x", data={"subject": "Hi"})
        auth.apply(post)
        assert post.data["signature"] == generate_signature("secret", "s1")
        assert post.data["subject"] == "Hi"
        assert "salt" not in post.params

    def test_hmac_fresh_salt_on_every_retry(self, sleep):
        session = FakeSession()
        session.add(
            "GET", "/Tickets/TicketStatus",
            FakeResponse(429, ""),
            FakeResponse(200, "<ticketstatuses/>"),
        )
        config = ExecutorConfig(
            base_url="https://help.example.test/api/index.php",
            source_name="Kayako Classic",
            response_format="xml",
            endpoint_param="e",
        )
        executor = RequestExecutor(config, HmacAuth("key", "secret"), session=session, sleep=sleep)

        asyncio.run(executor.execute("/Tickets/TicketStatus"))

        salts = [call.params["salt"] for call in session.calls]
        assert len(salts) == 2
        assert salts[0] != salts[1]
        signatures = [call.params["signature"] for call in session.calls]
        assert signatures[0] != signatures[1]


class TestSessionLifecycle:
    def test_injected_session_not_closed(self, session, sleep):
        executor = make_executor(session, sleep)
        asyncio.run(executor.disconnect())
        assert session.closed is False
