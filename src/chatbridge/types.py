"""Canonical OpenAI-style chat completion models shared by all providers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Annotated, Any, Iterator, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

Role = Literal["system", "user", "assistant", "tool"]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class TextPart(_Frozen):
    type: Literal["text"] = "text"
    text: str


class ImageURL(_Frozen):
    url: str
    detail: Literal["auto", "low", "high"] | None = None


class ImageURLPart(_Frozen):
    type: Literal["image_url"] = "image_url"
    image_url: ImageURL


class ImagePart(_Frozen):
    """Inline image part used by some clients instead of ``image_url``."""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: Literal["image"] = "image"


class InputAudio(_Frozen):
    data: str
    format: str


class InputAudioPart(_Frozen):
    type: Literal["input_audio"] = "input_audio"
    input_audio: InputAudio


ContentPart = Annotated[
    Union[TextPart, ImageURLPart, ImagePart, InputAudioPart],
    Field(discriminator="type"),
]

IMAGE_PART_TYPES = frozenset({"image_url", "image"})


class FunctionCall(_Frozen):
    name: str
    arguments: str = ""


class ToolCall(_Frozen):
    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class Message(_Frozen):
    """Single chat message.

    ``content`` keeps the wire form (plain string or list of parts); use
    :attr:`parts` for a uniform view.
    """

    role: Role
    content: str | list[ContentPart] | None = None
    name: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    @property
    def parts(self) -> tuple[ContentPart, ...]:
        if self.content is None:
            return ()
        if isinstance(self.content, str):
            return (TextPart(text=self.content),)
        return tuple(self.content)


class FunctionDef(_Frozen):
    name: str
    description: str | None = None
    parameters: dict[str, Any] | None = None
    strict: bool | None = None


class ToolDef(_Frozen):
    """JSON-schema tool definition in OpenAI format."""

    type: Literal["function"] = "function"
    function: FunctionDef


class StreamOptions(_Frozen):
    include_usage: bool | None = None


class ChatCompletionRequest(_Frozen):
    """Canonical request shared by all providers."""

    model: str
    messages: list[Message]
    tools: list[ToolDef] | None = None
    # "none" | "auto" | "required" | {"type": "function", "function": {...}}
    tool_choice: str | dict[str, Any] | None = None
    stream: bool = False
    stream_options: StreamOptions | None = None
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    max_completion_tokens: int | None = None
    stop: str | list[str] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    response_format: dict[str, Any] | None = None
    parallel_tool_calls: bool | None = None


class _Upstream(BaseModel):
    # upstream payloads carry vendor fields we pass through untouched
    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _null_means_default(cls, data: Any) -> Any:
        # JSON null on a declared field falls back to the field default
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None or k not in cls.model_fields}
        return data


class Usage(_Upstream):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ToolCallDelta(_Upstream):
    index: int = 0
    id: str | None = None
    type: str | None = None
    function: dict[str, Any] | None = None


class Delta(_Upstream):
    role: str | None = None
    content: str | None = None
    tool_calls: list[ToolCallDelta] | None = None


class ChunkChoice(_Upstream):
    index: int = 0
    delta: Delta = Field(default_factory=Delta)
    finish_reason: str | None = None


class ChatCompletionChunk(_Upstream):
    """One streaming unit."""

    id: str = ""
    object: str = ""
    created: int = 0
    model: str = ""
    choices: list[ChunkChoice] = Field(default_factory=list)
    usage: Usage | None = None

    def normalized(self) -> ChatCompletionChunk:
        """Return a copy with ``object`` and ``created`` filled in."""
        return _fill_required(self, "chat.completion.chunk")


class ResponseMessage(_Upstream):
    role: str = "assistant"
    content: str | None = None
    tool_calls: list[dict[str, Any]] | None = None


class Choice(_Upstream):
    index: int = 0
    message: ResponseMessage = Field(default_factory=ResponseMessage)
    finish_reason: str | None = None


class ChatCompletionResponse(_Upstream):
    """Non-streaming completion."""

    id: str = ""
    object: str = ""
    created: int = 0
    model: str = ""
    choices: list[Choice] = Field(default_factory=list)
    usage: Usage | None = None

    def normalized(self) -> ChatCompletionResponse:
        return _fill_required(self, "chat.completion")


def _fill_required(payload: Any, object_kind: str) -> Any:
    update: dict[str, Any] = {}
    if not payload.object:
        update["object"] = object_kind
    if not payload.created:
        update["created"] = int(time.time())
    return payload.model_copy(update=update) if update else payload


class OAuthCredentials(_Frozen):
    """Long-lived credential record owned by the credential store."""

    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0


@dataclass(frozen=True)
class CachedToken:
    """Short-lived upstream access token."""

    token: str
    expires_at: float

    def is_valid(self, margin: float, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current + margin < self.expires_at


class ModelDescriptor(_Frozen):
    """Model entry in OpenAI ``/v1/models`` form plus capability flags."""

    id: str
    object: Literal["model"] = "model"
    created: int = 0
    owned_by: str = ""
    name: str = ""
    version: str | None = None
    preview: bool = False
    context_window: int | None = None
    max_output_tokens: int | None = None
    supports_streaming: bool = True
    supports_tools: bool = False
    supports_vision: bool = False


@dataclass(frozen=True)
class ModelCatalog:
    """Immutable snapshot of a provider's models."""

    models: tuple[ModelDescriptor, ...] = ()
    fetched_at: float = 0.0
    _ids: frozenset[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_ids", frozenset(m.id for m in self.models))

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self.models)

    def __len__(self) -> int:
        return len(self.models)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._ids
