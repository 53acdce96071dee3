"""
Push transports.

The engine only needs `dispatch(tokens, payload) -> DispatchResult`. Two
transports ship with it: one that logs and accepts everything, for local runs,
and one that hands batches to an HTTP push relay.
"""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from defroster.api.core.contracts import DispatchResult, PushPayload
from defroster.api.core.exceptions import TransportError


logger = logging.getLogger(__name__)


__all__ = ["HttpPushTransport", "NullPushTransport"]


class NullPushTransport:
    """Accepts every token without sending anything."""

    def __init__(self) -> None:
        self.sent: list[tuple[list[str], PushPayload]] = []

    async def dispatch(self, tokens: list[str], payload: PushPayload) -> DispatchResult:
        self.sent.append((list(tokens), dict(payload)))
        logger.info(f"Push for event {payload.get('id')} accepted for {len(tokens)} device(s) (not sent)")
        return DispatchResult(success_count=len(tokens), failure_count=0)


class HttpPushTransport:
    """
    Posts each batch to a push relay.

    Request body: {"tokens": [...], "data": {...}}
    Expected response: {"successCount": int, "failureCount": int, "failedTokens": [...]}
    """

    def __init__(self, relay_url: str, timeout_seconds: float = 30.0) -> None:
        self.relay_url = relay_url
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def dispatch(self, tokens: list[str], payload: PushPayload) -> DispatchResult:
        """
        Send one payload to a batch of tokens.

        Raises:
            TransportError: If the relay is unreachable, answers with an error
                            status, or returns an unexpected body
        """
        body = {"tokens": tokens, "data": payload}
        try:
            async with (
                aiohttp.ClientSession() as session,
                session.post(self.relay_url, json=body, timeout=self._timeout) as response,
            ):
                if response.status != 200:
                    raise TransportError(f"Push relay returned status {response.status}")
                data = await response.json()
        except (aiohttp.ClientError, TimeoutError) as e:
            raise TransportError(f"Push relay request failed: {e}") from e

        return _parse_result(data, tokens)


def _parse_result(data: Any, tokens: list[str]) -> DispatchResult:
    if not isinstance(data, dict):
        raise TransportError("Push relay response must be a JSON object")
    success_count = data.get("successCount")
    failure_count = data.get("failureCount")
    if not isinstance(success_count, int) or not isinstance(failure_count, int):
        raise TransportError("Push relay response is missing successCount/failureCount")

    failed_tokens = data.get("failedTokens") or []
    if not isinstance(failed_tokens, list):
        raise TransportError("Push relay failedTokens must be a list")
    known = set(tokens)
    attributed = tuple(token for token in failed_tokens if token in known)
    if failure_count > len(attributed):
        raise TransportError(f"Push relay reported {failure_count} failure(s) but named {len(attributed)} failed token(s)")
    return DispatchResult(success_count=success_count, failure_count=failure_count, failed_tokens=attributed)
