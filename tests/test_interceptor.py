"""
Tests for request interception: sandbox checks and interceptor callbacks.

Run with: pytest tests/test_interceptor.py -v
"""

import base64
import json
from unittest.mock import AsyncMock

import httpx
import pytest


def paused(url="https://example.com/", request_id="interception-1", **request):
    """A Fetch.requestPaused payload."""
    return {
        "requestId": request_id,
        "request": {"url": url, "method": "GET", "headers": {}, **request},
        "frameId": "F1",
        "resourceType": "Document",
    }


class TestRequestConversion:
    """Test converting between CDP payloads and httpx objects."""

    @pytest.mark.asyncio
    async def test_request(self):
        """Test method, URL and headers carry over."""
        from lodestar.network import cdp_request_to_request

        request = cdp_request_to_request(
            {
                "url": "https://example.com/search?q=1",
                "method": "GET",
                "headers": {"Accept": "text/html"},
            }
        )

        assert isinstance(request, httpx.Request)
        assert request.method == "GET"
        assert request.url.path == "/search"
        assert request.url.params["q"] == "1"
        assert request.headers["accept"] == "text/html"
        assert await request.aread() == b""

    @pytest.mark.asyncio
    async def test_request_body_from_entries(self):
        """Test the body is decoded from base64 post data entries."""
        from lodestar.network import cdp_request_to_request

        request = cdp_request_to_request(
            {
                "url": "https://example.com/api",
                "method": "POST",
                "headers": {"Content-Type": "application/json"},
                "hasPostData": True,
                "postDataEntries": [
                    {"bytes": base64.b64encode(b'{"a": ').decode()},
                    {"bytes": base64.b64encode(b"1}").decode()},
                ],
            }
        )

        assert request.method == "POST"
        assert await request.aread() == b'{"a": 1}'

    @pytest.mark.asyncio
    async def test_request_body_from_post_data(self):
        """Test plain post data is used when there are no entries."""
        from lodestar.network import cdp_request_to_request

        request = cdp_request_to_request(
            {"url": "https://example.com/form", "method": "POST", "postData": "a=1&b=2"}
        )

        assert await request.aread() == b"a=1&b=2"

    @pytest.mark.asyncio
    async def test_response(self):
        """Test status, headers and body become fulfill parameters."""
        from lodestar.network import response_to_cdp_response

        response = httpx.Response(
            201,
            headers=[("X-Test", "1"), ("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")],
            content=b"created",
        )
        params = await response_to_cdp_response(response)

        assert params["responseCode"] == 201
        assert params["responsePhrase"] == "Created"
        assert base64.b64decode(params["body"]) == b"created"
        cookies = [h["value"] for h in params["responseHeaders"] if h["name"].lower() == "set-cookie"]
        assert cookies == ["a=1", "b=2"]

    @pytest.mark.asyncio
    async def test_response_without_body(self):
        """Test a response without a body omits the body field."""
        from lodestar.network import response_to_cdp_response

        params = await response_to_cdp_response(httpx.Response(204))

        assert params["responseCode"] == 204
        assert "body" not in params


class TestSandboxPolicy:
    """Test sandbox decisions."""

    @pytest.mark.asyncio
    async def test_granted_host_continues(self):
        """Test a request to a granted host is continued."""
        from lodestar.network import InterceptionPolicy, Permissions

        policy = InterceptionPolicy.sandbox(Permissions(net=["example.com"]))
        decision = await policy.decide(paused("https://example.com/page"))

        assert decision.method == "Fetch.continueRequest"
        assert decision.params == {"requestId": "interception-1"}

    @pytest.mark.asyncio
    async def test_other_host_blocked(self):
        """Test requests to hosts that were not granted fail as blocked."""
        from lodestar.network import InterceptionPolicy, Permissions

        policy = InterceptionPolicy.sandbox(Permissions(net=["example.com"]))
        decision = await policy.decide(paused("https://tracker.example.net/pixel.gif"))

        assert decision.method == "Fetch.failRequest"
        assert decision.params["errorReason"] == "BlockedByClient"

    @pytest.mark.asyncio
    async def test_file_read_checked(self, tmp_path):
        """Test file URLs are checked against read grants."""
        from lodestar.network import InterceptionPolicy, Permissions

        allowed = tmp_path / "index.html"
        policy = InterceptionPolicy.sandbox(Permissions(read=[str(tmp_path)]))

        decision = await policy.decide(paused(allowed.as_uri()))
        assert decision.action == "continue"

        decision = await policy.decide(paused("file:///etc/passwd"))
        assert decision.action == "fail"

    @pytest.mark.asyncio
    async def test_data_urls_allowed(self):
        """Test data URLs pass the sandbox."""
        from lodestar.network import InterceptionPolicy, Permissions

        policy = InterceptionPolicy.sandbox(Permissions.none())
        decision = await policy.decide(paused("data:text/html,<p>hi</p>"))

        assert decision.action == "continue"

    @pytest.mark.asyncio
    async def test_defaults_to_environment(self, monkeypatch):
        """Test a sandbox without explicit permissions uses LODESTAR_ALLOW_NET."""
        from lodestar.config import get_env_settings
        from lodestar.network import InterceptionPolicy

        monkeypatch.setenv("LODESTAR_ALLOW_NET", "example.com")
        get_env_settings.cache_clear()

        policy = InterceptionPolicy.sandbox()
        assert (await policy.decide(paused("https://example.com/"))).action == "continue"
        assert (await policy.decide(paused("https://example.org/"))).action == "fail"


class TestInterceptorPolicy:
    """Test callback decisions."""

    @pytest.mark.asyncio
    async def test_none_continues(self):
        """Test returning None continues the request."""
        from lodestar.network import InterceptionPolicy

        seen = []

        def interceptor(request):
            seen.append(request)
            return None

        decision = await InterceptionPolicy.intercept(interceptor).decide(paused())

        assert decision.action == "continue"
        assert str(seen[0].url) == "https://example.com/"

    @pytest.mark.asyncio
    async def test_response_fulfills(self):
        """Test returning a response fulfills the request with it."""
        from lodestar.network import InterceptionPolicy

        def interceptor(request):
            return httpx.Response(200, json={"mocked": True})

        decision = await InterceptionPolicy.intercept(interceptor).decide(paused())

        assert decision.method == "Fetch.fulfillRequest"
        assert decision.params["requestId"] == "interception-1"
        assert decision.params["responseCode"] == 200
        assert json.loads(base64.b64decode(decision.params["body"])) == {"mocked": True}

    @pytest.mark.asyncio
    async def test_async_callback(self):
        """Test an async interceptor can read the request body."""
        from lodestar.network import InterceptionPolicy

        async def interceptor(request):
            body = await request.aread()
            return httpx.Response(200, content=body.upper())

        decision = await InterceptionPolicy.intercept(interceptor).decide(
            paused(method="POST", postData="echo")
        )

        assert base64.b64decode(decision.params["body"]) == b"ECHO"

    @pytest.mark.asyncio
    async def test_interceptor_error_fails(self):
        """Test InterceptorError fails the request with its reason."""
        from lodestar.exceptions import InterceptorError
        from lodestar.network import ErrorReason, InterceptionPolicy

        def interceptor(request):
            raise InterceptorError(ErrorReason.ACCESS_DENIED)

        decision = await InterceptionPolicy.intercept(interceptor).decide(paused())

        assert decision.method == "Fetch.failRequest"
        assert decision.params["errorReason"] == "AccessDenied"

    @pytest.mark.asyncio
    async def test_other_exception_fails(self):
        """Test an unexpected exception fails the request instead of hanging it."""
        from lodestar.network import InterceptionPolicy

        def interceptor(request):
            raise RuntimeError("bug in interceptor")

        decision = await InterceptionPolicy.intercept(interceptor).decide(paused())

        assert decision.action == "fail"
        assert decision.params["errorReason"] == "Failed"

    @pytest.mark.asyncio
    async def test_unexpected_return_fails(self):
        """Test an unexpected return value fails the request."""
        from lodestar.network import InterceptionPolicy

        decision = await InterceptionPolicy.intercept(lambda request: "nope").decide(paused())

        assert decision.params["errorReason"] == "Failed"


class TestPolicySetup:
    """Test policy construction and wiring."""

    def test_exactly_one_mode(self):
        """Test a policy needs exactly one of permissions or callback."""
        from lodestar.network import InterceptionPolicy, Permissions

        with pytest.raises(ValueError):
            InterceptionPolicy()
        with pytest.raises(ValueError):
            InterceptionPolicy(permissions=Permissions.all(), callback=lambda r: None)

    def test_from_page_options(self):
        """Test the policy built for each kind of page options."""
        from lodestar.config import PageOptions
        from lodestar.network import InterceptionMode, InterceptionPolicy, Permissions

        assert InterceptionPolicy.from_page_options(PageOptions()) is None

        policy = InterceptionPolicy.from_page_options(
            PageOptions(sandbox=Permissions(net=["example.com"]))
        )
        assert policy.mode == InterceptionMode.SANDBOX
        assert policy.permissions.net == ["example.com"]

        policy = InterceptionPolicy.from_page_options(PageOptions(interceptor=lambda r: None))
        assert policy.mode == InterceptionMode.INTERCEPTOR

    @pytest.mark.asyncio
    async def test_enable_pauses_every_url(self):
        """Test enabling pauses requests for every URL."""
        from lodestar.network import InterceptionPolicy, Permissions

        connection = AsyncMock()
        await InterceptionPolicy.sandbox(Permissions.all()).enable(connection)

        connection.send.assert_awaited_once_with(
            "Fetch.enable", {"patterns": [{"urlPattern": "*"}]}
        )

    @pytest.mark.asyncio
    async def test_handle_request_paused_sends_decision(self):
        """Test the decision for a paused request is sent."""
        from lodestar.network import InterceptionPolicy, Permissions

        connection = AsyncMock()
        policy = InterceptionPolicy.sandbox(Permissions.none())

        await policy.handle_request_paused(connection, paused("https://example.com/"))

        connection.send.assert_awaited_once_with(
            "Fetch.failRequest",
            {"requestId": "interception-1", "errorReason": "BlockedByClient"},
        )

    @pytest.mark.asyncio
    async def test_handle_request_paused_closed_connection(self):
        """Test a decision for a page that went away is dropped quietly."""
        from lodestar.exceptions import TransportClosedError
        from lodestar.network import InterceptionPolicy, Permissions

        connection = AsyncMock()
        connection.send.side_effect = TransportClosedError("closed")
        policy = InterceptionPolicy.sandbox(Permissions.all())

        await policy.handle_request_paused(connection, paused())

        connection.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_enable_with_auth_requests(self):
        """Test enabling with auth requests asks for auth challenges."""
        from lodestar.network import InterceptionPolicy

        connection = AsyncMock()
        await InterceptionPolicy.intercept(lambda request: None).enable(
            connection, handle_auth_requests=True
        )

        connection.send.assert_awaited_once_with(
            "Fetch.enable",
            {"patterns": [{"urlPattern": "*"}], "handleAuthRequests": True},
        )

    @pytest.mark.asyncio
    async def test_sandbox_redirect_away_blocked(self):
        """Test a granted host is let through but its redirect to another host is not."""
        from lodestar.network import InterceptionPolicy, Permissions

        connection = AsyncMock()
        policy = InterceptionPolicy.sandbox(Permissions(net=["example.com"]))

        await policy.handle_request_paused(connection, paused("https://example.com/login"))
        redirected = paused("https://evil.example.net/steal", request_id="interception-2")
        redirected["redirectedRequestId"] = "interception-1"
        await policy.handle_request_paused(connection, redirected)

        assert [c.args for c in connection.send.await_args_list] == [
            ("Fetch.continueRequest", {"requestId": "interception-1"}),
            (
                "Fetch.failRequest",
                {"requestId": "interception-2", "errorReason": "BlockedByClient"},
            ),
        ]
