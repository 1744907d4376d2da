"""
HTTP tests for the JSON endpoint and the frame
==============================================

The evaluation service is replaced per test, so no request leaves the process.
"""

import asyncio
import html
import re
from unittest.mock import AsyncMock

import httpx
import pytest
from starlette.testclient import TestClient

from clankermon_valuation import server
from clankermon_valuation.config import Settings
from clankermon_valuation.core.errors import (
    ExecutionFailedError,
    PollTimeoutError,
    RemoteServiceError,
    ValidationError,
)
from clankermon_valuation.core.formatting import format_result
from clankermon_valuation.core.service import EvaluationService

POST_URL = re.compile(r'<meta property="fc:frame:post_url" content="([^"]+)" />')

RESULT = format_result("42", "Water", [
    {"category": "_Final", "usd_valuation": "12.3", "eth_valuation": "0.001"},
], "0xdonate")


@pytest.fixture
def settings(monkeypatch):
    settings = Settings(dune_api_key="secret", donation_address="0xdonate")
    monkeypatch.setattr(server, "_settings", settings)
    return settings


@pytest.fixture
def service(monkeypatch, settings):
    service = AsyncMock(spec=EvaluationService)
    service.evaluate.return_value = RESULT
    monkeypatch.setattr(server, "_service", service)
    return service


@pytest.fixture
def client(service):
    return TestClient(server.create_app())


def post_url(page: str) -> str:
    match = POST_URL.search(page)
    assert match, page
    return html.unescape(match.group(1))


class TestEvaluateEndpoint:

    def test_success(self, client, service):
        response = client.post("/api/evaluate", json={"level": "42", "cm_type": "Water"})

        assert response.status_code == 200
        assert response.json() == {
            "level": "42",
            "type": "Water",
            "valuations": [{"category": "_Final", "usd_valuation": "12.30", "eth_valuation": "0.001000"}],
            "donation_address": "0xdonate",
        }
        service.evaluate.assert_awaited_once_with("42", "Water")

    def test_validation_error(self, client, service):
        service.evaluate.side_effect = ValidationError("Missing parameters. Please provide level and cm_type")

        response = client.post("/api/evaluate", json={"level": "42"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing parameters. Please provide level and cm_type"}

    def test_timeout(self, client, service):
        service.evaluate.side_effect = PollTimeoutError("exec-1", 30)

        response = client.post("/api/evaluate", json={"level": "42", "cm_type": "Water"})

        assert response.status_code == 408
        assert response.json() == {"error": "Query timeout. Please try again."}

    def test_remote_failure(self, client, service):
        service.evaluate.side_effect = RemoteServiceError("execute failed", {"error": "invalid API Key"})

        response = client.post("/api/evaluate", json={"level": "42", "cm_type": "Water"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to evaluate Clankermon", "details": {"error": "invalid API Key"}}

    def test_failed_execution(self, client, service):
        service.evaluate.side_effect = ExecutionFailedError("failed", {"message": "query error"})

        response = client.post("/api/evaluate", json={"level": "42", "cm_type": "Water"})

        assert response.status_code == 500
        assert response.json()["details"] == {"message": "query error"}

    def test_unexpected_error(self, client, service):
        service.evaluate.side_effect = RuntimeError("kaboom")

        response = client.post("/api/evaluate", json={"level": "42", "cm_type": "Water"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to evaluate Clankermon", "details": "kaboom"}

    def test_non_json_body_is_missing_params(self, monkeypatch, settings):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"execution_id": "x"})

        real = EvaluationService(
            api_key="secret",
            query_id=1,
            sleep=AsyncMock(),
            client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        monkeypatch.setattr(server, "_service", real)
        client = TestClient(server.create_app())

        for kwargs in ({"content": b"level=42"}, {"json": {"cm_type": "Water"}}, {"json": {"level": "", "cm_type": "Water"}}):
            response = client.post("/api/evaluate", **kwargs)
            assert response.status_code == 400

        assert calls == []


class TestFrame:

    def test_entry_document(self, client):
        for path in ("/", "/frame"):
            response = client.get(path)
            assert response.status_code == 200
            assert "text/html" in response.headers["content-type"]
            assert post_url(response.text) == "http://testserver/api/frame/start"

    def test_full_flow(self, client, service):
        start = client.post("/api/frame/start")
        assert start.status_code == 200
        get_type_url = post_url(start.text)
        assert get_type_url == "http://testserver/api/frame/get-type"

        get_type = client.post(get_type_url, json={"untrustedData": {"inputText": "42"}})
        evaluate_url = post_url(get_type.text)
        assert evaluate_url == "http://testserver/api/frame/evaluate?level=42"

        result = client.post(evaluate_url, json={"untrustedData": {"inputText": "Water"}})

        service.evaluate.assert_awaited_once_with("42", "Water")
        assert result.status_code == 200
        assert "<p>USD: $12.30</p>" in result.text
        assert "<p>ETH: Ξ0.001000</p>" in result.text
        assert 'content="http://testserver/api/frame/donate"' in result.text

    def test_get_type_without_input_defaults_level(self, client):
        response = client.post("/api/frame/get-type", content=b"")
        assert post_url(response.text) == "http://testserver/api/frame/evaluate?level=1"

    def test_evaluate_without_type_uses_unknown(self, client, service):
        client.post("/api/frame/evaluate?level=7", json={})
        service.evaluate.assert_awaited_once_with("7", "Unknown")

    @pytest.mark.parametrize("error", [
        ValidationError("missing"),
        PollTimeoutError("exec-1", 30),
        RemoteServiceError("down"),
        RuntimeError("kaboom"),
    ])
    def test_every_failure_renders_error_card(self, client, service, error):
        service.evaluate.side_effect = error

        response = client.post("/api/frame/evaluate?level=42", json={"untrustedData": {"inputText": "Water"}})

        assert response.status_code == 200
        assert "<h1>Error</h1>" in response.text
        assert '<meta property="fc:frame:button:1" content="Try Again" />' in response.text
        assert 'content="http://testserver/api/frame/start"' in response.text

    def test_donate_is_fixed(self, client, service):
        for _ in range(2):
            response = client.post("/api/frame/donate", json={"untrustedData": {"inputText": "anything"}})

            assert response.status_code == 200
            assert response.json() == {
                "chainId": "eip155:8453",
                "method": "eth_sendTransaction",
                "params": {"abi": [], "to": "0xdonate", "value": "230000"},
            }
        service.evaluate.assert_not_called()


class TestMcpTool:

    @pytest.mark.asyncio
    async def test_tool_returns_result(self, service):
        result = await server.evaluate_clankermon("42", "Water")

        assert result["type"] == "Water"
        assert result["valuations"][0]["usd_valuation"] == "12.30"
        service.evaluate.assert_awaited_once_with("42", "Water")


class SlowService:
    """Evaluation that never finishes on its own and records its cancellation."""

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False

    async def evaluate(self, level, cm_type):
        self.started.set()
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return RESULT


class StubRequest:
    """Stands in for a Starlette request whose connection state is scripted."""

    def __init__(self, *disconnected):
        self._answers = list(disconnected)
        self.checks = 0

    async def is_disconnected(self):
        self.checks += 1
        return self._answers.pop(0) if len(self._answers) > 1 else self._answers[0]


class TestClientDisconnect:

    @pytest.fixture(autouse=True)
    def fast_checks(self, monkeypatch):
        monkeypatch.setattr(server, "DISCONNECT_CHECK_SECONDS", 0.01)

    @pytest.mark.asyncio
    async def test_disconnect_cancels_evaluation(self, monkeypatch):
        slow = SlowService()
        monkeypatch.setattr(server, "_service", slow)
        request = StubRequest(False, True)

        with pytest.raises(server.ClientDisconnected):
            await server._evaluate_while_connected(request, "42", "Water")

        assert slow.cancelled
        assert request.checks == 2

    @pytest.mark.asyncio
    async def test_connected_client_gets_result(self, service):
        request = StubRequest(False)

        result = await server._evaluate_while_connected(request, "42", "Water")

        assert result is RESULT
        service.evaluate.assert_awaited_once_with("42", "Water")

    @pytest.mark.asyncio
    async def test_cancelled_handler_cancels_evaluation(self, monkeypatch):
        slow = SlowService()
        monkeypatch.setattr(server, "_service", slow)
        handler = asyncio.create_task(server._evaluate_while_connected(StubRequest(False), "42", "Water"))
        await slow.started.wait()

        handler.cancel()
        with pytest.raises(asyncio.CancelledError):
            await handler
        for _ in range(3):
            await asyncio.sleep(0)

        assert slow.cancelled

    @pytest.mark.parametrize("path", ["/api/evaluate", "/api/frame/evaluate?level=42"])
    def test_disconnected_request_answers_499(self, monkeypatch, client, service, path):
        async def disconnected(request, level, cm_type):
            raise server.ClientDisconnected()

        monkeypatch.setattr(server, "_evaluate_while_connected", disconnected)

        response = client.post(path, json={"level": "42", "cm_type": "Water"})

        assert response.status_code == server.CLIENT_CLOSED_REQUEST == 499
        assert response.content == b""
