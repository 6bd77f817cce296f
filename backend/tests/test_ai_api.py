"""
Guardian Angel - AI Assistant Tests
===================================
"""

import json

import httpx
import pytest
from httpx import AsyncClient

from guardian.api.main import app
from guardian.core.integrations import AIChatClient, AIChatError, get_ai_chat_client


def sse(*chunks: str) -> bytes:
    lines = [f"data: {json.dumps({'choices': [{'delta': {'content': c}}]})}\n\n" for c in chunks]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


class FakeChatClient:
    def __init__(self, chunks=(), error=None, configured=True):
        self.chunks = chunks
        self.error = error
        self.configured = configured
        self.received = None

    async def stream(self, messages):
        self.received = messages
        for chunk in self.chunks:
            yield chunk
        if self.error:
            raise self.error


@pytest.fixture
def use_chat_client():
    def install(fake):
        app.dependency_overrides[get_ai_chat_client] = lambda: fake
        return fake

    yield install
    app.dependency_overrides.pop(get_ai_chat_client, None)


class TestAIChatClient:
    """Streaming against a mocked provider."""

    async def test_streams_content(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=sse("Hel", "lo"))

        client = AIChatClient(api_key="key", base_url="https://ai.test/v1", transport=httpx.MockTransport(handler))
        chunks = [c async for c in client.stream([{"role": "user", "content": "hi"}])]

        assert chunks == ["Hel", "lo"]
        assert seen["auth"] == "Bearer key"
        assert seen["body"]["stream"] is True

    async def test_rejected(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "bad key"}))
        client = AIChatClient(api_key="key", base_url="https://ai.test/v1", transport=transport)

        with pytest.raises(AIChatError) as exc_info:
            [c async for c in client.stream([])]
        assert exc_info.value.status_code == 401

    def test_not_configured(self):
        assert not AIChatClient(api_key="").configured


class TestChatEndpoint:
    """POST /ai/chat."""

    async def test_requires_auth(self, client: AsyncClient):
        response = await client.post("/api/v1/ai/chat", json={"messages": []})
        assert response.status_code == 401

    async def test_not_configured(self, client: AsyncClient, auth_headers: dict, use_chat_client):
        use_chat_client(FakeChatClient(configured=False))
        response = await client.post("/api/v1/ai/chat", json={"messages": []}, headers=auth_headers)
        assert response.status_code == 500

    @pytest.mark.parametrize("body", [{}, {"messages": "hi"}, [1, 2]])
    async def test_messages_required(self, client: AsyncClient, auth_headers: dict, use_chat_client, body):
        use_chat_client(FakeChatClient())
        response = await client.post("/api/v1/ai/chat", json=body, headers=auth_headers)
        assert response.status_code == 400

    async def test_stream(self, client: AsyncClient, auth_headers: dict, use_chat_client):
        fake = use_chat_client(FakeChatClient(chunks=["Plan ", "ahead"]))
        messages = [{"role": "user", "content": "Help"}]

        response = await client.post("/api/v1/ai/chat", json={"messages": messages}, headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.text == (
            'data: {"content": "Plan "}\n\n'
            'data: {"content": "ahead"}\n\n'
            "data: [DONE]\n\n"
        )
        assert fake.received == messages

    async def test_provider_error_in_band(self, client: AsyncClient, auth_headers: dict, use_chat_client):
        use_chat_client(FakeChatClient(chunks=["Par"], error=AIChatError("Completion request rejected", 429)))
        response = await client.post("/api/v1/ai/chat", json={"messages": []}, headers=auth_headers)

        assert response.status_code == 200
        assert 'data: {"error": "Completion request rejected"}' in response.text
        assert response.text.endswith("data: [DONE]\n\n")
