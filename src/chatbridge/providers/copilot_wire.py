"""Translation of canonical requests into Copilot chat wire requests."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from chatbridge.config import CopilotConfig
from chatbridge.types import IMAGE_PART_TYPES, ChatCompletionRequest, Message

# Copilot rejects some system prompts; it accepts the same text as assistant.
SYSTEM_ROLE_REPLACEMENT = "assistant"


@dataclass(frozen=True)
class WireRequest:
    headers: dict[str, str]
    body: dict[str, Any]


def transform_messages(messages: Sequence[Message]) -> list[Message]:
    return [
        m.model_copy(update={"role": SYSTEM_ROLE_REPLACEMENT}) if m.role == "system" else m
        for m in messages
    ]


def get_initiator(messages: Sequence[Message]) -> str:
    """Return ``"user"`` for a first turn, ``"agent"`` once assistant/tool messages exist."""
    for message in messages:
        if message.role in ("assistant", "tool"):
            return "agent"
    return "user"


def has_image_content(messages: Sequence[Message]) -> bool:
    return any(part.type in IMAGE_PART_TYPES for message in messages for part in message.parts)


def identification_headers(config: CopilotConfig) -> dict[str, str]:
    """Static client headers sent on every Copilot API call."""
    return {
        "User-Agent": config.user_agent,
        "Editor-Version": config.editor_version,
        "Editor-Plugin-Version": config.editor_plugin_version,
        "Copilot-Integration-Id": config.integration_id,
        "X-GitHub-API-Version": config.github_api_version,
    }


def build_headers(
    req: ChatCompletionRequest,
    token: str,
    config: CopilotConfig,
    *,
    request_id: str | None = None,
) -> dict[str, str]:
    # Heuristics look at the caller's messages, before any role remapping.
    headers = {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
        "Accept": "text/event-stream" if req.stream else "application/json",
        **identification_headers(config),
        "X-Request-Id": request_id or str(uuid.uuid4()),
        "X-Initiator": get_initiator(req.messages),
        "Openai-Intent": config.openai_intent,
    }
    if has_image_content(req.messages):
        headers["Copilot-Vision-Request"] = "true"
    return headers


def build_body(req: ChatCompletionRequest) -> dict[str, Any]:
    wire = req.model_copy(update={"messages": transform_messages(req.messages)})
    return wire.model_dump(mode="json", exclude_none=True)


def build_wire_request(
    req: ChatCompletionRequest,
    token: str,
    config: CopilotConfig,
    *,
    request_id: str | None = None,
) -> WireRequest:
    return WireRequest(
        headers=build_headers(req, token, config, request_id=request_id),
        body=build_body(req),
    )
