"""Minimal server-sent events reader over an async line iterator."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class SSEEvent:
    """One dispatched event-stream frame."""

    data: str = ""
    event: str | None = None
    id: str | None = None
    retry: int | None = None

    @property
    def is_done(self) -> bool:
        return self.data.strip() == DONE_SENTINEL


class SSEReader:
    """Groups ``field: value`` lines into events separated by blank lines.

    A pending event is still dispatched when the line source ends without a
    trailing blank line.
    """

    def __init__(self, lines: AsyncIterator[str]) -> None:
        self._lines = lines

    def __aiter__(self) -> AsyncIterator[SSEEvent]:
        return self._events()

    async def _events(self) -> AsyncIterator[SSEEvent]:
        data: list[str] = []
        fields: dict[str, str] = {}
        pending = False

        async for raw in self._lines:
            line = raw.rstrip("\r\n")
            if not line:
                if pending:
                    yield _build_event(data, fields)
                data, fields, pending = [], {}, False
                continue
            if line.startswith(":"):
                continue

            name, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            if name == "data":
                data.append(value)
            elif name in ("event", "id", "retry"):
                fields[name] = value
            else:
                continue
            pending = True

        if pending:
            yield _build_event(data, fields)


def _build_event(data: list[str], fields: dict[str, str]) -> SSEEvent:
    retry = fields.get("retry")
    return SSEEvent(
        data="\n".join(data),
        event=fields.get("event"),
        id=fields.get("id"),
        retry=int(retry) if retry and retry.isdigit() else None,
    )
