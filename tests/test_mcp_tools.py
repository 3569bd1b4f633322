"""Tests for the MCP tool functions that forward to the HTTP service."""

import json

import httpx
import pytest

from hitl_browser.tools import agent_tools, scraping_tools, session_tools
from hitl_browser.tools.session_tools import _call_service


class FakeService:
    """Records calls made through ``_call_service`` and returns a canned result."""

    def __init__(self, result):
        self.result = result
        self.calls = []

    async def __call__(self, method, path, json_body=None, params=None):
        self.calls.append((method, path, json_body, params))
        return self.result


class TestCallService:
    """Tests for the httpx client wrapper."""

    @pytest.mark.asyncio
    async def test_post_returns_json(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"sessionId": "s1"})

        result = await _call_service("POST", "/session", {"site": "yelp"}, transport=httpx.MockTransport(handler))

        assert result == {"sessionId": "s1"}
        assert seen == {"method": "POST", "path": "/session", "body": {"site": "yelp"}}

    @pytest.mark.asyncio
    async def test_get_sends_params(self):
        def handler(request):
            return httpx.Response(200, json={"limit": request.url.params["limit"]})

        result = await _call_service("GET", "/audit", params={"limit": 5}, transport=httpx.MockTransport(handler))

        assert result == {"limit": "5"}

    @pytest.mark.asyncio
    async def test_error_code_from_body(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(429, json={"error": "MAX_SESSIONS_REACHED"}))
        assert await _call_service("POST", "/session", transport=transport) == {"error": "MAX_SESSIONS_REACHED"}

    @pytest.mark.asyncio
    async def test_retryable_flag_is_kept(self):
        body = {"error": "MAX_SESSIONS_REACHED", "retryable": True}
        transport = httpx.MockTransport(lambda r: httpx.Response(429, json=body))
        assert await _call_service("POST", "/session", transport=transport) == body

    @pytest.mark.asyncio
    async def test_error_without_json_body(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(500, text="oops"))
        assert await _call_service("POST", "/session", transport=transport) == {"error": "HTTP 500"}

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = await _call_service("GET", "/health", transport=httpx.MockTransport(handler))

        assert "not reachable" in result["error"]

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = await _call_service("GET", "/health", transport=httpx.MockTransport(handler))

        assert "timed out" in result["error"]


class TestSessionTools:
    @pytest.mark.asyncio
    async def test_create_session_sends_site(self, monkeypatch):
        service = FakeService({"sessionId": "s1", "viewUrl": "http://x/session/view/s1"})
        monkeypatch.setattr(session_tools, "_call_service", service)

        text = await session_tools.create_session("yelp")

        assert json.loads(text)["sessionId"] == "s1"
        assert service.calls == [("POST", "/session", {"site": "yelp"}, None)]

    @pytest.mark.asyncio
    async def test_capacity_error_says_retry(self, monkeypatch):
        service = FakeService({"error": "MAX_SESSIONS_REACHED", "retryable": True})
        monkeypatch.setattr(session_tools, "_call_service", service)

        text = await session_tools.create_session("xhs")

        assert text.startswith("Error: MAX_SESSIONS_REACHED")
        assert "retry" in text

    @pytest.mark.asyncio
    async def test_wait_for_login_error(self, monkeypatch):
        monkeypatch.setattr(session_tools, "_call_service", FakeService({"error": "SESSION_NOT_FOUND"}))
        assert await session_tools.wait_for_login("s1", 0) == "Error: SESSION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_destroy_messages(self, monkeypatch):
        monkeypatch.setattr(session_tools, "_call_service", FakeService({"ok": True}))
        assert await session_tools.destroy_session("s1") == "Session s1 destroyed."

        monkeypatch.setattr(session_tools, "_call_service", FakeService({"ok": False}))
        assert "not found" in await session_tools.destroy_session("s1")

    @pytest.mark.asyncio
    async def test_recent_audit(self, monkeypatch):
        service = FakeService({
            "records": [{"ts": "2026-01-01T00:00:00+00:00", "action": "search", "session_id": "s1", "keyword": "tea"}],
            "count": 1,
        })
        monkeypatch.setattr(session_tools, "_call_service", service)

        text = await session_tools.recent_audit("s1", 10)

        assert "1 audit records" in text
        assert "search session=s1 tea" in text
        assert service.calls[0][3] == {"limit": 10, "sessionId": "s1"}


class TestScrapingTools:
    @pytest.mark.asyncio
    async def test_search_need_login_message(self, monkeypatch):
        monkeypatch.setattr(scraping_tools, "_call_service", FakeService({"status": "NEED_LOGIN", "notes": []}))
        assert "not logged in" in await scraping_tools.search("s1", "tea")

    @pytest.mark.asyncio
    async def test_search_body(self, monkeypatch):
        service = FakeService({"status": "READY", "notes": []})
        monkeypatch.setattr(scraping_tools, "_call_service", service)

        await scraping_tools.search("s1", "tea", 5, 0, "yelp")

        assert service.calls[0][2] == {
            "sessionId": "s1", "query": "tea", "maxNotes": 5, "scrollTimes": 0, "site": "yelp",
        }

    @pytest.mark.asyncio
    async def test_open_and_extract_not_implemented(self, monkeypatch):
        monkeypatch.setattr(scraping_tools, "_call_service", FakeService({"status": "NOT_IMPLEMENTED", "note": None}))
        assert "not available" in await scraping_tools.open_and_extract("s1", "https://example.test/n1")


class TestAgentTools:
    @pytest.mark.asyncio
    async def test_need_login_points_to_view_url(self, monkeypatch):
        run = {"runId": "r1", "status": "NEED_LOGIN", "running": False, "viewUrl": "http://x/session/view/s1"}
        monkeypatch.setattr(agent_tools, "_call_service", FakeService(run))

        text = await agent_tools.agent_run("quiet cafes")

        assert text.startswith("Run r1 is NEED_LOGIN.")
        assert "http://x/session/view/s1" in text

    @pytest.mark.asyncio
    async def test_continue_only_sends_positive_timeout(self, monkeypatch):
        service = FakeService({"runId": "r1", "status": "DONE", "notes": [{"id": "n1"}]})
        monkeypatch.setattr(agent_tools, "_call_service", service)

        text = await agent_tools.agent_continue("r1")

        assert service.calls[0][2] == {"runId": "r1"}
        assert "with 1 results" in text

    @pytest.mark.asyncio
    async def test_status_error(self, monkeypatch):
        monkeypatch.setattr(agent_tools, "_call_service", FakeService({"error": "RUN_NOT_FOUND"}))
        assert await agent_tools.agent_status("r1") == "Error: RUN_NOT_FOUND"
