"""
Unit tests for record types and the push payload codec.
"""

import json
import unittest

from defroster.api.core.constants import EVENT_TTL_MS
from defroster.api.core.enums import SightingCategory
from defroster.api.core.exceptions import InvalidArgumentError, MalformedRecordError
from defroster.api.core.types import (
    Event,
    GeoLocation,
    NotificationRecord,
    Subscription,
    SyncWatermark,
    is_valid_location,
    notification_key,
)
from defroster.api.location.geohash_utils import encode_location
from defroster.api.notifications.payload import decode_payload, encode_payload


def make_event(event_id="evt-1", latitude=34.0522, longitude=-118.2437, created_at=1_000_000):
    location = GeoLocation(latitude=latitude, longitude=longitude)
    return Event(
        id=event_id,
        category=SightingCategory.ICE,
        location=location,
        created_at=created_at,
        cell_code=encode_location(location),
        expires_at=created_at + EVENT_TTL_MS,
    )


class TestLocation(unittest.TestCase):
    """Test suite for location validation"""

    def test_is_valid_location(self):
        """Test the lat/lon domain including its edges"""
        self.assertTrue(is_valid_location(90, -180))
        self.assertTrue(is_valid_location(-90.0, 180.0))
        self.assertFalse(is_valid_location(90.0001, 0))
        self.assertFalse(is_valid_location(0, 180.0001))
        self.assertFalse(is_valid_location(float("nan"), 0))
        self.assertFalse(is_valid_location("1", 0))
        self.assertFalse(is_valid_location(True, 0))
        self.assertFalse(is_valid_location(None, 0))

    def test_location_from_document(self):
        """Test decoding a location mapping"""
        location = GeoLocation.from_document({"latitude": 1, "longitude": 2.5})
        self.assertEqual(location, GeoLocation(latitude=1.0, longitude=2.5))
        with self.assertRaises(MalformedRecordError):
            GeoLocation.from_document({"latitude": 100, "longitude": 0})
        with self.assertRaises(MalformedRecordError):
            GeoLocation.from_document([1, 2])


class TestEvent(unittest.TestCase):
    """Test suite for Event record"""

    def test_expiry_must_follow_creation(self):
        """Test that an event cannot expire before it is created"""
        location = GeoLocation(latitude=0.0, longitude=0.0)
        with self.assertRaises(InvalidArgumentError):
            Event(
                category=SightingCategory.POLICE,
                location=location,
                created_at=100,
                cell_code=encode_location(location),
                expires_at=100,
            )

    def test_document_roundtrip(self):
        """Test that an event survives its document form"""
        event = make_event()
        self.assertEqual(Event.from_document(event.to_document()), event)

    def test_with_id_and_retention(self):
        """Test that copies change only the requested field"""
        event = make_event(event_id=None)
        stored = event.with_id("abc")
        self.assertEqual(stored.id, "abc")
        self.assertIsNone(event.id)
        restamped = stored.with_retention(stored.expires_at + 5)
        self.assertEqual(restamped.expires_at, stored.expires_at + 5)
        self.assertEqual(restamped.created_at, stored.created_at)

    def test_from_document_rejects_bad_fields(self):
        """Test that each malformed field is reported"""
        good = make_event().to_document()
        broken = [
            {**good, "category": "Navy"},
            {**good, "created_at": "yesterday"},
            {**good, "created_at": True},
            {**good, "expires_at": good["created_at"]},
            {**good, "cell_code": "abci"},
            {**good, "cell_code": ""},
            {**good, "location": {"latitude": 0}},
            {**good, "id": 42},
        ]
        for document in broken:
            with self.assertRaises(MalformedRecordError):
                Event.from_document(document)
        with self.assertRaises(MalformedRecordError):
            Event.from_document("not a mapping")


class TestOtherRecords(unittest.TestCase):
    """Test suite for Subscription, NotificationRecord and SyncWatermark"""

    def test_notification_key(self):
        """Test the composite ledger key"""
        record = NotificationRecord(event_id="e1", device_id="d1", sent_at=0, expires_at=10)
        self.assertEqual(record.key, "e1_d1")
        self.assertEqual(notification_key("e1", "d1"), record.key)

    def test_roundtrips(self):
        """Test that every record type survives its document form"""
        records = [
            Subscription(device_id="d1", push_token="t" * 120, cell_code="9q5ctr1", updated_at=5),
            NotificationRecord(event_id="e1", device_id="d1", sent_at=1, expires_at=2),
            SyncWatermark(cell_key="9q5ct", last_fetched_at=7),
        ]
        for record in records:
            self.assertEqual(type(record).from_document(record.to_document()), record)

    def test_subscription_rejects_missing_token(self):
        """Test that a subscription needs a push token"""
        with self.assertRaises(MalformedRecordError):
            Subscription.from_document({"device_id": "d1", "cell_code": "9q5ctr1", "updated_at": 5})

    def test_watermark_rejects_negative_timestamp(self):
        """Test that watermark timestamps are non-negative integers"""
        with self.assertRaises(MalformedRecordError):
            SyncWatermark.from_document({"cell_key": "9q5ct", "last_fetched_at": -1})


class TestPushPayload(unittest.TestCase):
    """Test suite for the push payload codec"""

    def test_encode_payload_fields(self):
        """Test that every payload value is a string"""
        event = make_event()
        payload = encode_payload(event)
        self.assertEqual(set(payload), {"id", "sightingType", "location", "timestamp", "geohash", "expiresAt"})
        self.assertTrue(all(isinstance(value, str) for value in payload.values()))
        self.assertEqual(payload["sightingType"], "ICE")
        self.assertEqual(json.loads(payload["location"]), {"latitude": 34.0522, "longitude": -118.2437})
        self.assertEqual(payload["timestamp"], str(event.created_at))

    def test_encode_requires_id(self):
        """Test that an unsaved event cannot be pushed"""
        with self.assertRaises(InvalidArgumentError):
            encode_payload(make_event(event_id=None))

    def test_decode_payload(self):
        """Test that a pushed payload decodes back to the event"""
        event = make_event()
        self.assertEqual(decode_payload(encode_payload(event)), event)

    def test_decode_recomputes_cell_code(self):
        """Test that the pushed geohash is not trusted"""
        event = make_event()
        payload = {**encode_payload(event), "geohash": "0000000"}
        self.assertEqual(decode_payload(payload).cell_code, event.cell_code)

    def test_decode_rejects_malformed(self):
        """Test that malformed payloads raise MalformedRecordError"""
        good = encode_payload(make_event())
        broken = [
            {**good, "id": ""},
            {**good, "sightingType": "ice"},
            {**good, "location": "{not json"},
            {**good, "location": json.dumps({"latitude": 91, "longitude": 0})},
            {**good, "timestamp": "-5"},
            {**good, "expiresAt": "soon"},
            {**good, "expiresAt": good["timestamp"]},
        ]
        for payload in broken:
            with self.assertRaises(MalformedRecordError):
                decode_payload(payload)
        missing = dict(good)
        del missing["location"]
        with self.assertRaises(MalformedRecordError):
            decode_payload(missing)


if __name__ == "__main__":
    unittest.main()
