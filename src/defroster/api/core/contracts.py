"""Contracts for the collaborators the engine consumes but does not implement."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


__all__ = [
    "AdmissionGate",
    "AllowAllGate",
    "DispatchResult",
    "PushPayload",
    "PushTransport",
]


PushPayload = dict[str, str]
"""Flat string map delivered as the push data message."""


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of handing one batch of tokens to the push transport."""

    success_count: int
    failure_count: int
    failed_tokens: tuple[str, ...] = field(default_factory=tuple)


class PushTransport(Protocol):
    """Delivery contract for push notifications."""

    async def dispatch(self, tokens: list[str], payload: PushPayload) -> DispatchResult:
        """Send one payload to many tokens and report how many were accepted."""
        ...


class AdmissionGate(Protocol):
    """Rate limiting / authentication gate consulted before any core operation."""

    def admit(self, operation: str, client_id: str) -> bool: ...


class AllowAllGate:
    """Gate that admits every call, for local use."""

    def admit(self, operation: str, client_id: str) -> bool:
        return True
