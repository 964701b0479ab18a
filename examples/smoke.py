import asyncio
import os

from chatbridge.client import Gateway
from chatbridge.credentials import InMemoryCredentialStore
from chatbridge.errors import ChatBridgeError
from chatbridge.providers.copilot import PROVIDER_ID, CopilotProvider
from chatbridge.types import ChatCompletionRequest, Message, OAuthCredentials


async def main() -> None:
    store = InMemoryCredentialStore()
    store.set_credentials(PROVIDER_ID, OAuthCredentials(refresh_token=os.environ.get("GITHUB_TOKEN", "")))

    req = ChatCompletionRequest(
        model=os.environ.get("CHATBRIDGE_MODEL", "gpt-4o"),
        messages=[
            Message(role="system", content="Answer in one sentence."),
            Message(role="user", content="What is a server-sent event?"),
        ],
        stream=True,
    )

    async with Gateway([CopilotProvider(store)]) as gateway:
        print("Models:", ", ".join(m.id for m in await gateway.list_models()))
        try:
            async with await gateway.chat_completion(req) as stream:
                async for chunk in stream:
                    for choice in chunk.choices:
                        print(choice.delta.content or "", end="", flush=True)
            print()
        except ChatBridgeError as e:
            print("Request failed:", type(e).__name__, e)


if __name__ == "__main__":
    asyncio.run(main())
