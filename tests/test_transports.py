"""
Unit tests for push transports.
"""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp

from defroster.api.core.exceptions import TransportError
from defroster.api.notifications.transports import HttpPushTransport, NullPushTransport


RELAY_URL = "https://relay.example.com/push"
PAYLOAD = {"id": "evt-1", "sightingType": "ICE"}


def mock_client_session(status=200, body=None, post_error=None):
    """Build a ClientSession double whose post() yields one response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=body)

    post_context = MagicMock()
    post_context.__aenter__ = AsyncMock(return_value=response)
    post_context.__aexit__ = AsyncMock(return_value=None)

    session = MagicMock()
    if post_error is not None:
        session.post = MagicMock(side_effect=post_error)
    else:
        session.post = MagicMock(return_value=post_context)

    session_context = MagicMock()
    session_context.__aenter__ = AsyncMock(return_value=session)
    session_context.__aexit__ = AsyncMock(return_value=None)
    return session_context, session


class TestNullPushTransport(unittest.TestCase):
    """Test suite for NullPushTransport"""

    def test_accepts_everything(self):
        """Test that every token is reported as delivered and recorded"""
        transport = NullPushTransport()
        result = asyncio.run(transport.dispatch(["a", "b"], PAYLOAD))
        self.assertEqual((result.success_count, result.failure_count, result.failed_tokens), (2, 0, ()))
        self.assertEqual(transport.sent, [(["a", "b"], PAYLOAD)])


class TestHttpPushTransport(unittest.TestCase):
    """Test suite for HttpPushTransport"""

    def dispatch(self, session_context, tokens=("a", "b", "c")):
        transport = HttpPushTransport(RELAY_URL, timeout_seconds=5)
        with patch("defroster.api.notifications.transports.aiohttp.ClientSession", return_value=session_context):
            return asyncio.run(transport.dispatch(list(tokens), PAYLOAD))

    def test_successful_dispatch(self):
        """Test that the relay response is turned into a DispatchResult"""
        session_context, session = mock_client_session(
            body={"successCount": 2, "failureCount": 1, "failedTokens": ["b"]}
        )
        result = self.dispatch(session_context)

        self.assertEqual(result.success_count, 2)
        self.assertEqual(result.failure_count, 1)
        self.assertEqual(result.failed_tokens, ("b",))
        args, kwargs = session.post.call_args
        self.assertEqual(args[0], RELAY_URL)
        self.assertEqual(kwargs["json"], {"tokens": ["a", "b", "c"], "data": PAYLOAD})

    def test_unknown_failed_tokens_ignored(self):
        """Test that failed tokens not in the batch are dropped"""
        session_context, _ = mock_client_session(body={"successCount": 3, "failureCount": 0, "failedTokens": ["zzz"]})
        self.assertEqual(self.dispatch(session_context).failed_tokens, ())

    def test_missing_failed_tokens(self):
        """Test that failedTokens is optional"""
        session_context, _ = mock_client_session(body={"successCount": 3, "failureCount": 0})
        self.assertEqual(self.dispatch(session_context).failed_tokens, ())

    def test_unnamed_failures_rejected(self):
        """Test that failures the relay does not attribute to tokens raise TransportError"""
        for body in [
            {"successCount": 2, "failureCount": 1},
            {"successCount": 1, "failureCount": 2, "failedTokens": ["b"]},
            {"successCount": 2, "failureCount": 1, "failedTokens": ["zzz"]},
        ]:
            session_context, _ = mock_client_session(body=body)
            with self.assertRaises(TransportError):
                self.dispatch(session_context)

    def test_error_status(self):
        """Test that a non-200 answer raises TransportError"""
        session_context, _ = mock_client_session(status=503)
        with self.assertRaises(TransportError) as context:
            self.dispatch(session_context)
        self.assertIn("503", str(context.exception))

    def test_connection_error(self):
        """Test that network errors raise TransportError"""
        session_context, _ = mock_client_session(post_error=aiohttp.ClientConnectionError("refused"))
        with self.assertRaises(TransportError):
            self.dispatch(session_context)

    def test_timeout(self):
        """Test that a timeout raises TransportError"""
        session_context, _ = mock_client_session(post_error=TimeoutError())
        with self.assertRaises(TransportError):
            self.dispatch(session_context)

    def test_malformed_body(self):
        """Test that unexpected response bodies raise TransportError"""
        for body in [[], {"successCount": "2", "failureCount": 0}, {"successCount": 1, "failureCount": 0, "failedTokens": "b"}]:
            session_context, _ = mock_client_session(body=body)
            with self.assertRaises(TransportError):
                self.dispatch(session_context)


if __name__ == "__main__":
    unittest.main()
