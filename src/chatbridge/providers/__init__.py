"""Provider definitions for chatbridge."""

from .base import BaseProvider
from .copilot import CopilotClient, CopilotProvider

__all__ = [
    "BaseProvider",
    "CopilotClient",
    "CopilotProvider",
]
