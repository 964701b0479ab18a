import asyncio
import json
import time
import unittest

import httpx

from chatbridge.config import CopilotConfig
from chatbridge.credentials import InMemoryCredentialStore
from chatbridge.errors import CredentialError, TransportError, UpstreamError
from chatbridge.providers.copilot import (
    MODEL_NOT_ENABLED_HINT,
    PROVIDER_ID,
    CopilotProvider,
    _TokenResponse,
    token_from_response,
)
from chatbridge.types import ChatCompletionRequest, Message, OAuthCredentials

CONFIG = CopilotConfig()

MODELS_PAYLOAD = {
    "data": [
        {
            "id": "gpt-4o",
            "name": "GPT-4o",
            "vendor": "Azure OpenAI",
            "capabilities": {
                "type": "chat",
                "limits": {"max_context_window_tokens": 128000, "max_output_tokens": 4096},
                "supports": {"streaming": True, "tool_calls": True, "vision": True},
            },
        },
        {"id": "gpt-4o", "name": "GPT-4o duplicate", "capabilities": {"type": "chat"}},
        {"id": "text-embedding-3-small", "capabilities": {"type": "embeddings"}},
        {"id": "o1", "capabilities": {"type": "chat"}, "policy": {"state": "disabled"}},
        {"id": "claude-sonnet-4", "vendor": "Anthropic", "capabilities": {"type": "chat", "supports": {}}},
    ]
}


class FakeCopilot:
    """In-process stand-in for the token, models and chat endpoints."""

    def __init__(self) -> None:
        self.token_calls = 0
        self.chat_requests: list[httpx.Request] = []
        self.chat_status = 200
        self.chat_error = b""
        self.token_status = 200
        self.fail_connect = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == CONFIG.token_url:
            self.token_calls += 1
            if self.token_status != 200:
                return httpx.Response(self.token_status, text="bad credentials")
            assert request.headers["Authorization"] == "token gho_secret"
            return httpx.Response(
                200, json={"token": f"cop-{self.token_calls}", "expires_at": int(time.time()) + 1800}
            )
        if url == CONFIG.models_url:
            return httpx.Response(200, json=MODELS_PAYLOAD)
        if url == CONFIG.chat_url:
            if self.fail_connect:
                raise httpx.ConnectError("connection refused", request=request)
            self.chat_requests.append(request)
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, content=self.chat_error)
            body = json.loads(request.content)
            if body.get("stream"):
                frames = [
                    {"id": "c1", "model": body["model"], "choices": [{"index": 0, "delta": {"role": "assistant"}}]},
                    {"id": "c1", "model": body["model"], "choices": [{"index": 0, "delta": {"content": "Hel"}}]},
                    {"id": "c1", "model": body["model"], "choices": [{"index": 0, "delta": {"content": "lo"}}]},
                ]
                sse = "".join(f"data: {json.dumps(f)}\n\n" for f in frames) + "data: [DONE]\n\n"
                return httpx.Response(200, content=sse.encode(), headers={"content-type": "text/event-stream"})
            return httpx.Response(
                200,
                json={
                    "id": "r1",
                    "model": body["model"],
                    "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hello"}}],
                },
            )
        return httpx.Response(404, json={"message": f"unexpected {url}"})


def _provider(fake: FakeCopilot, refresh_token: str = "gho_secret") -> CopilotProvider:
    store = InMemoryCredentialStore({PROVIDER_ID: OAuthCredentials(refresh_token=refresh_token)})
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake.handler))
    return CopilotProvider(store, config=CONFIG, http_client=http)


def _request(stream: bool, model: str = "gpt-4o") -> ChatCompletionRequest:
    return ChatCompletionRequest(
        model=model,
        messages=[
            Message(role="system", content="be brief"),
            Message(role="user", content="hi"),
        ],
        stream=stream,
    )


async def _text(provider: CopilotProvider, req: ChatCompletionRequest) -> str:
    async with await provider.chat_completion(req) as stream:
        parts = [c.choices[0].delta.content or "" async for c in stream if c.choices]
    return "".join(parts)


class ChatCompletionTests(unittest.TestCase):
    def test_streaming_completion(self) -> None:
        fake = FakeCopilot()
        provider = _provider(fake)

        async def scenario() -> list[str]:
            return [await _text(provider, _request(True)), await _text(provider, _request(True))]

        self.assertEqual(asyncio.run(scenario()), ["Hello", "Hello"])
        self.assertEqual(fake.token_calls, 1)

        sent = fake.chat_requests[0]
        self.assertEqual(sent.headers["Authorization"], "Bearer cop-1")
        self.assertEqual(sent.headers["Accept"], "text/event-stream")
        self.assertEqual(sent.headers["X-Initiator"], "user")
        body = json.loads(sent.content)
        self.assertEqual([m["role"] for m in body["messages"]], ["assistant", "user"])

    def test_non_streaming_completion(self) -> None:
        fake = FakeCopilot()
        provider = _provider(fake)

        async def scenario():
            stream = await provider.chat_completion(_request(False))
            with self.assertRaises(StopAsyncIteration):
                await stream.next()
            return stream.response

        response = asyncio.run(scenario())
        self.assertEqual(response.choices[0].message.content, "Hello")
        self.assertEqual(response.object, "chat.completion")
        self.assertGreater(response.created, 0)
        self.assertEqual(fake.chat_requests[0].headers["Accept"], "application/json")

    def test_model_not_enabled_hint(self) -> None:
        fake = FakeCopilot()
        fake.chat_status = 400
        fake.chat_error = b'{"error": {"message": "The requested model is not supported."}}'
        provider = _provider(fake)

        async def scenario() -> UpstreamError:
            stream = await provider.chat_completion(_request(True, model="o3"))
            with self.assertRaises(UpstreamError) as ctx:
                await stream.next()
            return ctx.exception

        err = asyncio.run(scenario())
        self.assertEqual(err.status_code, 400)
        self.assertEqual(err.hint, MODEL_NOT_ENABLED_HINT)
        self.assertIn("github.com/settings/copilot", str(err))

    def test_unauthorized_drops_cached_token(self) -> None:
        fake = FakeCopilot()
        fake.chat_status = 401
        fake.chat_error = b"unauthorized"
        provider = _provider(fake)

        async def scenario() -> None:
            for _ in range(2):
                stream = await provider.chat_completion(_request(True))
                with self.assertRaises(UpstreamError):
                    await stream.next()

        asyncio.run(scenario())
        self.assertEqual(fake.token_calls, 2)

    def test_connection_failure(self) -> None:
        fake = FakeCopilot()
        fake.fail_connect = True
        provider = _provider(fake)

        with self.assertRaises(TransportError) as ctx:
            asyncio.run(provider.chat_completion(_request(True)))
        self.assertIsInstance(ctx.exception.__cause__, httpx.ConnectError)


class CredentialTests(unittest.TestCase):
    def test_missing_github_token(self) -> None:
        fake = FakeCopilot()
        provider = _provider(fake, refresh_token="")

        with self.assertRaises(CredentialError) as ctx:
            asyncio.run(provider.chat_completion(_request(True)))
        self.assertIn("login copilot", str(ctx.exception))
        self.assertEqual(fake.token_calls, 0)

    def test_token_exchange_rejected(self) -> None:
        fake = FakeCopilot()
        fake.token_status = 403
        provider = _provider(fake)

        with self.assertRaises(CredentialError) as ctx:
            asyncio.run(provider.chat_completion(_request(True)))
        self.assertIn("403", str(ctx.exception))
        self.assertEqual(fake.chat_requests, [])

    def test_token_expiry_forms(self) -> None:
        absolute = token_from_response(_TokenResponse(token="t", expires_at=2000), now=1000)
        self.assertEqual(absolute.expires_at, 2000)
        relative = token_from_response(_TokenResponse(token="t", expires_in=1500), now=1000)
        self.assertEqual(relative.expires_at, 2500)
        refresh_in = token_from_response(_TokenResponse(token="t", refresh_in=1500), now=1000)
        self.assertEqual(refresh_in.expires_at, 2500)
        with self.assertRaises(CredentialError):
            token_from_response(_TokenResponse(token="t"), now=1000)
        with self.assertRaises(CredentialError):
            token_from_response(_TokenResponse(expires_at=2000), now=1000)


class ModelsTests(unittest.TestCase):
    def test_models_listing_and_support(self) -> None:
        fake = FakeCopilot()
        provider = _provider(fake)

        async def scenario():
            await provider.init()
            return await provider.models(), await provider.supports_model("claude-sonnet-4")

        models, supported = asyncio.run(scenario())

        self.assertEqual([m.id for m in models], ["gpt-4o", "claude-sonnet-4"])
        gpt = models[0]
        self.assertEqual(gpt.name, "GPT-4o")
        self.assertEqual(gpt.owned_by, "Azure OpenAI")
        self.assertEqual(gpt.context_window, 128000)
        self.assertTrue(gpt.supports_tools)
        self.assertTrue(gpt.supports_vision)
        self.assertTrue(models[1].supports_streaming)
        self.assertFalse(models[1].supports_tools)
        self.assertTrue(supported)

    def test_lifecycle(self) -> None:
        fake = FakeCopilot()
        provider = _provider(fake)

        async def scenario() -> None:
            async with provider:
                self.assertTrue(await provider.supports_model("gpt-4o"))
                await provider.refresh_models()
                self.assertFalse(await provider.supports_model("o1"))

        asyncio.run(scenario())


if __name__ == "__main__":
    unittest.main()
