"""Async gateway routing canonical requests to provider adapters."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from types import TracebackType

from chatbridge.errors import UnsupportedModelError, UnsupportedProviderError
from chatbridge.providers.base import BaseProvider
from chatbridge.stream import ChatStream
from chatbridge.types import ChatCompletionRequest, ModelDescriptor


class Gateway:
    """High-level coordinator over the configured providers."""

    def __init__(self, providers: Iterable[BaseProvider] = ()) -> None:
        self._providers: dict[str, BaseProvider] = {}
        for provider in providers:
            self.add_provider(provider)

    def add_provider(self, provider: BaseProvider) -> None:
        self._providers[provider.name] = provider

    @property
    def providers(self) -> tuple[BaseProvider, ...]:
        return tuple(self._providers.values())

    def get_provider(self, name: str) -> BaseProvider:
        """Return a provider by its registered name."""
        try:
            return self._providers[name]
        except KeyError as exc:
            raise UnsupportedProviderError(name) from exc

    async def provider_for_model(self, model: str) -> BaseProvider:
        """Return the first provider whose catalog lists ``model``."""
        for provider in self._providers.values():
            if await provider.supports_model(model):
                return provider
        raise UnsupportedModelError(model)

    async def list_models(self) -> list[ModelDescriptor]:
        models: list[ModelDescriptor] = []
        for provider in self._providers.values():
            models.extend(await provider.models())
        return models

    async def chat_completion(self, req: ChatCompletionRequest) -> ChatStream:
        """Route a chat completion to the provider serving ``req.model``."""
        provider = await self.provider_for_model(req.model)
        return await provider.chat_completion(req)

    async def start(self) -> None:
        await asyncio.gather(*(p.init() for p in self._providers.values()))
        for provider in self._providers.values():
            provider.start()

    async def close(self) -> None:
        await asyncio.gather(*(p.close() for p in self._providers.values()))

    async def __aenter__(self) -> Gateway:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
