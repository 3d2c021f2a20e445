"""Change-stream contract shared by push transports."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol


class ChangeKind(StrEnum):
    SUBSCRIBED = "SUBSCRIBED"
    INSERT = "INSERT"
    UPDATE = "UPDATE"


@dataclass(frozen=True)
class ChangeEvent:
    """One message from a change stream.

    ``SUBSCRIBED`` acknowledges the subscription and carries no record;
    ``INSERT``/``UPDATE`` carry the affected row.
    """

    kind: ChangeKind
    record: dict[str, Any] = field(default_factory=dict)
    table: str | None = None


class ChangeStream(Protocol):
    """Structural interface for push transports.

    ``subscribe`` yields a ``SUBSCRIBED`` event once the server confirms
    the subscription, then one event per row change. It raises
    :class:`binfleet.exceptions.ChangeStreamError` on failure and simply
    ends when the server closes the subscription.
    """

    def subscribe(self, table: str) -> AsyncIterator[ChangeEvent]: ...
