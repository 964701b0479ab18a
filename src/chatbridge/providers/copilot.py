"""GitHub Copilot provider implementation."""

from __future__ import annotations

import logging
import time

import httpx
from pydantic import BaseModel, ValidationError

from chatbridge.config import CopilotConfig
from chatbridge.credentials import CredentialStore, TokenBroker
from chatbridge.errors import CredentialError, DecodeError, TransportError, normalize_upstream_error
from chatbridge.models_cache import ModelsCache
from chatbridge.providers.base import BaseProvider
from chatbridge.providers.copilot_wire import build_wire_request, identification_headers
from chatbridge.stream import ChatStream
from chatbridge.types import CachedToken, ChatCompletionRequest, ModelDescriptor, OAuthCredentials

PROVIDER_ID = "copilot"

MODEL_NOT_ENABLED_HINT = (
    "Make sure the model is enabled in your Copilot settings: https://github.com/settings/copilot"
)


class _TokenResponse(BaseModel):
    token: str = ""
    expires_at: int | None = None
    expires_in: int | None = None
    refresh_in: int | None = None


class _Limits(BaseModel):
    max_context_window_tokens: int | None = None
    max_output_tokens: int | None = None


class _Supports(BaseModel):
    streaming: bool | None = None
    tool_calls: bool | None = None
    vision: bool | None = None


class _Capabilities(BaseModel):
    type: str | None = None
    limits: _Limits = _Limits()
    supports: _Supports = _Supports()


class _Policy(BaseModel):
    state: str | None = None


class _CopilotModel(BaseModel):
    id: str
    name: str = ""
    vendor: str = ""
    version: str | None = None
    preview: bool = False
    capabilities: _Capabilities = _Capabilities()
    policy: _Policy | None = None


class _ModelsResponse(BaseModel):
    data: list[_CopilotModel] = []


def token_from_response(payload: _TokenResponse, now: float | None = None) -> CachedToken:
    """Convert a token exchange payload, accepting absolute or relative expiry."""
    if not payload.token:
        raise CredentialError(PROVIDER_ID, "token response did not include a token")
    current = time.time() if now is None else now
    if payload.expires_at:
        expires_at = float(payload.expires_at)
    elif payload.expires_in:
        expires_at = current + payload.expires_in
    elif payload.refresh_in:
        expires_at = current + payload.refresh_in
    else:
        raise CredentialError(PROVIDER_ID, "token response did not include an expiry")
    return CachedToken(token=payload.token, expires_at=expires_at)


def descriptors_from_models(models: list[_CopilotModel]) -> list[ModelDescriptor]:
    """Keep enabled chat models, first entry wins on duplicate ids."""
    seen: set[str] = set()
    result: list[ModelDescriptor] = []
    for model in models:
        if model.capabilities.type not in (None, "chat"):
            continue
        if model.policy is not None and model.policy.state == "disabled":
            continue
        if model.id in seen:
            continue
        seen.add(model.id)
        supports = model.capabilities.supports
        limits = model.capabilities.limits
        result.append(
            ModelDescriptor(
                id=model.id,
                owned_by=model.vendor,
                name=model.name or model.id,
                version=model.version,
                preview=model.preview,
                context_window=limits.max_context_window_tokens,
                max_output_tokens=limits.max_output_tokens,
                supports_streaming=supports.streaming is not False,
                supports_tools=bool(supports.tool_calls),
                supports_vision=bool(supports.vision),
            )
        )
    return result


class CopilotClient:
    """HTTP access to the Copilot token, chat and models endpoints."""

    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        store: CredentialStore,
        *,
        config: CopilotConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or CopilotConfig()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.request_timeout, connect=self._config.connect_timeout)
        )
        self._tokens = TokenBroker(
            PROVIDER_ID,
            store,
            self._exchange_token,
            margin=self._config.token_refresh_margin,
        )

    @property
    def tokens(self) -> TokenBroker:
        return self._tokens

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def send_chat(self, req: ChatCompletionRequest) -> httpx.Response:
        """POST the translated request; the response body is left unread."""
        token = await self._tokens.get_access_token()
        wire = build_wire_request(req, token, self._config)
        request = self._client.build_request(
            "POST", self._config.chat_url, headers=wire.headers, json=wire.body
        )
        self._logger.debug("Sending %s request %s", req.model, wire.headers["X-Request-Id"])
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to send request: {exc}") from exc

        if response.status_code == 401:
            self._tokens.invalidate()
        return response

    async def list_models(self) -> list[ModelDescriptor]:
        token = await self._tokens.get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            **identification_headers(self._config),
        }
        try:
            response = await self._client.get(self._config.models_url, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to list models: {exc}") from exc

        if not response.is_success:
            raise normalize_upstream_error(response.status_code, response.content)
        try:
            payload = _ModelsResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise DecodeError(f"failed to parse models response: {exc}") from exc
        return descriptors_from_models(payload.data)

    async def _exchange_token(self, credentials: OAuthCredentials) -> CachedToken:
        # The GitHub OAuth token is kept as the refresh token.
        github_token = credentials.refresh_token
        if not github_token:
            raise CredentialError(
                PROVIDER_ID, f"no GitHub token found - please run: chatbridge login {PROVIDER_ID}"
            )

        headers = {
            "Authorization": f"token {github_token}",
            "Accept": "application/json",
            "User-Agent": self._config.user_agent,
            "Editor-Version": self._config.editor_version,
            "Editor-Plugin-Version": self._config.editor_plugin_version,
        }
        try:
            response = await self._client.get(self._config.token_url, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to request Copilot token: {exc}") from exc

        if response.status_code != 200:
            raise CredentialError(
                PROVIDER_ID,
                f"token request failed with status {response.status_code}: {response.text}",
            )
        try:
            payload = _TokenResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise CredentialError(PROVIDER_ID, f"failed to parse token response: {exc}") from exc
        return token_from_response(payload)


class CopilotProvider(BaseProvider):
    """OpenAI-compatible chat completions through GitHub Copilot."""

    name = PROVIDER_ID
    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        store: CredentialStore,
        *,
        config: CopilotConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or CopilotConfig.from_env()
        self._client = CopilotClient(store, config=self._config, http_client=http_client)
        self._models = ModelsCache(
            self._client.list_models,
            refresh_interval=self._config.models_refresh,
            name="copilot models",
        )

    @property
    def client(self) -> CopilotClient:
        return self._client

    async def models(self) -> tuple[ModelDescriptor, ...]:
        return (await self._models.get_models()).models

    async def supports_model(self, model_id: str) -> bool:
        return await self._models.supports_model(model_id)

    async def chat_completion(self, req: ChatCompletionRequest) -> ChatStream:
        response = await self._client.send_chat(req)
        return ChatStream(response, streaming=req.stream, model_hint=MODEL_NOT_ENABLED_HINT)

    async def init(self) -> None:
        await self._models.get_models()

    def start(self) -> None:
        self._models.start_background_refresh()

    async def close(self) -> None:
        await self._models.stop_background_refresh()
        await self._client.aclose()

    async def refresh_models(self) -> None:
        await self._models.refresh_models()
