"""Provider-agnostic base interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from types import TracebackType

from chatbridge.stream import ChatStream
from chatbridge.types import ChatCompletionRequest, ModelDescriptor


class BaseProvider(ABC):
    """Abstract base class for provider adapters."""

    name: str

    @abstractmethod
    async def models(self) -> tuple[ModelDescriptor, ...]:
        """Return the models currently served by the provider."""
        raise NotImplementedError

    @abstractmethod
    async def supports_model(self, model_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def chat_completion(self, req: ChatCompletionRequest) -> ChatStream:
        """Send the request upstream and return a stream over the response."""
        raise NotImplementedError

    async def init(self) -> None:
        """Prime caches before serving traffic."""

    def start(self) -> None:
        """Start background tasks. Requires a running event loop."""

    async def close(self) -> None:
        """Stop background tasks and release network resources."""

    async def refresh_models(self) -> None:
        """Force a refresh of the model list."""

    async def __aenter__(self) -> BaseProvider:
        await self.init()
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
