"""Copilot provider settings and environment overrides."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from chatbridge.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CHATBRIDGE_COPILOT_"
MIN_MODELS_REFRESH = 60.0

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smh]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600}


@dataclass(frozen=True)
class EnvVarDoc:
    name: str
    description: str
    default: str


def parse_duration(value: str) -> float:
    """Parse ``"90"``, ``"90s"``, ``"15m"`` or ``"1h"`` into seconds."""
    match = _DURATION.match(value)
    if match is None:
        raise ConfigError(f"invalid duration: {value!r}")
    amount, unit = match.groups()
    return float(amount) * _UNIT_SECONDS[unit]


class CopilotConfig(BaseModel):
    """Endpoints, timeouts and client identification for the Copilot provider."""

    model_config = ConfigDict(frozen=True)

    token_url: str = "https://api.github.com/copilot_internal/v2/token"
    api_base_url: str = "https://api.githubcopilot.com"
    request_timeout: float = Field(default=300.0, gt=0)
    connect_timeout: float = Field(default=10.0, gt=0)
    token_refresh_margin: float = Field(default=60.0, ge=0)
    models_refresh: float = 30 * 60.0

    editor_version: str = "vscode/1.99.3"
    editor_plugin_version: str = "copilot-chat/0.26.7"
    user_agent: str = "GitHubCopilotChat/0.26.7"
    integration_id: str = "vscode-chat"
    github_api_version: str = "2025-04-01"
    openai_intent: str = "conversation-panel"

    @field_validator("models_refresh")
    @classmethod
    def _clamp_refresh(cls, value: float) -> float:
        return max(MIN_MODELS_REFRESH, value)

    @property
    def chat_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/chat/completions"

    @property
    def models_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/models"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CopilotConfig:
        """Build a config from defaults plus ``CHATBRIDGE_COPILOT_*`` variables.

        Invalid values are logged and ignored.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}

        for key, field, parse in _ENV_FIELDS:
            raw = env.get(ENV_PREFIX + key)
            if raw is None or not raw.strip():
                continue
            try:
                value = parse(raw.strip())
                cls.model_validate({field: value})
            except (ConfigError, ValidationError, ValueError) as exc:
                logger.warning("Ignoring %s%s=%r: %s", ENV_PREFIX, key, raw, exc)
                continue
            overrides[field] = value

        return cls(**overrides)


_ENV_FIELDS = (
    ("MODELS_REFRESH", "models_refresh", parse_duration),
    ("REQUEST_TIMEOUT", "request_timeout", parse_duration),
    ("API_BASE_URL", "api_base_url", str),
    ("TOKEN_URL", "token_url", str),
)


def env_var_docs() -> list[EnvVarDoc]:
    """Environment variables understood by :meth:`CopilotConfig.from_env`."""
    defaults = CopilotConfig()
    return [
        EnvVarDoc(
            ENV_PREFIX + "MODELS_REFRESH",
            "Interval between model list refreshes (e.g. 90s, 15m, 1h)",
            f"{defaults.models_refresh:.0f}s",
        ),
        EnvVarDoc(
            ENV_PREFIX + "REQUEST_TIMEOUT",
            "Timeout for upstream requests, including streamed reads",
            f"{defaults.request_timeout:.0f}s",
        ),
        EnvVarDoc(ENV_PREFIX + "API_BASE_URL", "Copilot API base URL", defaults.api_base_url),
        EnvVarDoc(ENV_PREFIX + "TOKEN_URL", "Copilot token exchange URL", defaults.token_url),
    ]
