"""
Unit tests for the sighting service.
"""

import asyncio
import unittest
import uuid
from unittest.mock import AsyncMock, Mock

from defroster.api.core.clock import ManualClock
from defroster.api.core.constants import CLOCK_SKEW_TOLERANCE_MS, EVENT_TTL_MS
from defroster.api.core.enums import Collection, SightingCategory, StoreTier
from defroster.api.core.exceptions import InvalidArgumentError, NotFoundError, TransportError
from defroster.api.core.types import GeoLocation
from defroster.api.database.store import MemoryRecordStore
from defroster.api.location.geohash_utils import encode_location
from defroster.api.notifications.dispatcher import NotificationDispatcher
from defroster.api.notifications.transports import NullPushTransport
from defroster.api.sightings import SightingService, parse_category


NOW = 1_700_000_000_000
CHICAGO = GeoLocation(latitude=41.8781, longitude=-87.6298)
TOKEN = "f" * 40 + "_-" + "A1" * 40


class TestParseCategory(unittest.TestCase):
    """Test suite for parse_category"""

    def test_valid(self):
        """Test that exact values and enum members are accepted"""
        self.assertIs(parse_category("ICE"), SightingCategory.ICE)
        self.assertIs(parse_category("Army"), SightingCategory.ARMY)
        self.assertIs(parse_category(SightingCategory.POLICE), SightingCategory.POLICE)

    def test_invalid(self):
        """Test that unknown or wrongly cased values are rejected"""
        for value in ["ice", "Navy", "", None]:
            with self.assertRaises(InvalidArgumentError):
                parse_category(value)


class TestReportSighting(unittest.TestCase):
    """Test suite for SightingService.report_sighting"""

    def setUp(self):
        """Create a service with a null transport"""
        self.store = MemoryRecordStore(tier=StoreTier.SERVER)
        self.clock = ManualClock(start=NOW)
        self.transport = NullPushTransport()
        self.dispatcher = NotificationDispatcher(self.store, self.transport, clock=self.clock)
        self.service = SightingService(self.store, self.dispatcher, clock=self.clock)

    def test_report_stores_event(self):
        """Test that the event is stamped with server time, TTL and cell code"""

        async def body():
            result = await self.service.report_sighting("ICE", CHICAGO)
            stored = await self.store.get(Collection.EVENTS, result.event.id)
            return result, stored

        result, stored = asyncio.run(body())
        self.assertIsNotNone(result.event.id)
        self.assertEqual(stored, result.event)
        self.assertEqual(stored.created_at, NOW)
        self.assertEqual(stored.expires_at, NOW + EVENT_TTL_MS)
        self.assertEqual(stored.cell_code, encode_location(CHICAGO, 7))
        self.assertEqual(stored.category, SightingCategory.ICE)

    def test_report_notifies_nearby_devices(self):
        """Test that registered devices near the sighting are pushed"""
        device_id = str(uuid.uuid4())

        async def body():
            await self.service.register_device(device_id, TOKEN, GeoLocation(latitude=41.88, longitude=-87.63))
            return await self.service.report_sighting(SightingCategory.POLICE, CHICAGO)

        result = asyncio.run(body())
        self.assertEqual(result.notified_devices, 1)
        self.assertEqual(self.transport.sent[0][0], [TOKEN])
        self.assertEqual(self.transport.sent[0][1]["id"], result.event.id)

    def test_report_without_dispatcher(self):
        """Test that the service works with notifications disabled"""
        service = SightingService(self.store, clock=self.clock)
        result = asyncio.run(service.report_sighting("Army", CHICAGO))
        self.assertIsNone(result.notification)
        self.assertEqual(result.notified_devices, 0)

    def test_client_timestamp_skew(self):
        """Test that reports from a badly skewed clock are rejected"""
        asyncio.run(self.service.report_sighting("ICE", CHICAGO, client_timestamp=NOW - CLOCK_SKEW_TOLERANCE_MS))
        asyncio.run(self.service.report_sighting("ICE", CHICAGO, client_timestamp=NOW + CLOCK_SKEW_TOLERANCE_MS))
        for timestamp in [NOW + CLOCK_SKEW_TOLERANCE_MS + 1, NOW - 10 * CLOCK_SKEW_TOLERANCE_MS, True, "now"]:
            with self.assertRaises(InvalidArgumentError):
                asyncio.run(self.service.report_sighting("ICE", CHICAGO, client_timestamp=timestamp))

    def test_report_validates_input(self):
        """Test that bad categories and locations are rejected before storing"""
        for category, location in [
            ("Navy", CHICAGO),
            ("ICE", GeoLocation(latitude=-91.0, longitude=0.0)),
            ("ICE", GeoLocation(latitude=0.0, longitude=float("nan"))),
            ("ICE", (41.8, -87.6)),
        ]:
            with self.assertRaises(InvalidArgumentError):
                asyncio.run(self.service.report_sighting(category, location))

        async def count_events():
            return len([e async for e in self.store.range_scan(Collection.EVENTS, "created_at", 0, NOW * 2)])

        self.assertEqual(asyncio.run(count_events()), 0)

    def test_notification_failure_does_not_fail_report(self):
        """Test that a failing immediate trigger is reported in the result"""
        dispatcher = Mock()
        dispatcher.notify_event = AsyncMock(side_effect=TransportError("relay down"))
        service = SightingService(self.store, dispatcher, clock=self.clock)

        with self.assertLogs("defroster.api.sightings", level="ERROR"):
            result = asyncio.run(service.report_sighting("ICE", CHICAGO))
        self.assertEqual(result.errors, ["relay down"])
        self.assertIsNotNone(asyncio.run(self.store.get(Collection.EVENTS, result.event.id)))


class TestDeviceRegistration(unittest.TestCase):
    """Test suite for register_device and update_device_location"""

    def setUp(self):
        """Create a service without notifications"""
        self.store = MemoryRecordStore(tier=StoreTier.SERVER)
        self.clock = ManualClock(start=NOW)
        self.service = SightingService(self.store, clock=self.clock)
        self.device_id = str(uuid.uuid4())

    def test_register_device(self):
        """Test that a subscription is stored at subscription precision"""
        subscription = asyncio.run(self.service.register_device(self.device_id, TOKEN, CHICAGO))
        self.assertEqual(subscription.cell_code, encode_location(CHICAGO, 7))
        self.assertEqual(subscription.updated_at, NOW)
        self.assertEqual(asyncio.run(self.store.get(Collection.SUBSCRIPTIONS, self.device_id)), subscription)

    def test_register_overwrites(self):
        """Test that registering again replaces the token and location"""
        other_token = "B" * 150
        asyncio.run(self.service.register_device(self.device_id, TOKEN, CHICAGO))
        self.clock.advance(1000)
        asyncio.run(self.service.register_device(self.device_id, other_token, GeoLocation(latitude=40.7128, longitude=-74.0060)))
        stored = asyncio.run(self.store.get(Collection.SUBSCRIPTIONS, self.device_id))
        self.assertEqual(stored.push_token, other_token)
        self.assertEqual(stored.updated_at, NOW + 1000)

    def test_register_validates(self):
        """Test device id, token and location formats"""
        bad_calls = [
            ("not-a-uuid", TOKEN, CHICAGO),
            (str(uuid.uuid1()), TOKEN, CHICAGO),
            (self.device_id, "short", CHICAGO),
            (self.device_id, "x" * 301, CHICAGO),
            (self.device_id, "has spaces" * 20, CHICAGO),
            (self.device_id, TOKEN, GeoLocation(latitude=0.0, longitude=181.0)),
        ]
        for device_id, token, location in bad_calls:
            with self.assertRaises(InvalidArgumentError):
                asyncio.run(self.service.register_device(device_id, token, location))

    def test_device_id_case_insensitive(self):
        """Test that upper-case UUIDs are accepted"""
        asyncio.run(self.service.register_device(self.device_id.upper(), TOKEN, CHICAGO))

    def test_update_location(self):
        """Test that moving a device keeps its token and changes its cell"""
        new_location = GeoLocation(latitude=40.7128, longitude=-74.0060)
        asyncio.run(self.service.register_device(self.device_id, TOKEN, CHICAGO))
        self.clock.advance(5000)
        moved = asyncio.run(self.service.update_device_location(self.device_id, new_location))
        self.assertEqual(moved.push_token, TOKEN)
        self.assertEqual(moved.cell_code, encode_location(new_location, 7))
        self.assertEqual(moved.updated_at, NOW + 5000)

    def test_update_unknown_device(self):
        """Test that moving an unregistered device raises NotFoundError"""
        with self.assertRaises(NotFoundError):
            asyncio.run(self.service.update_device_location(self.device_id, CHICAGO))


if __name__ == "__main__":
    unittest.main()
