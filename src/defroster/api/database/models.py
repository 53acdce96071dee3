"""
SQLAlchemy Models for the Record Store

Defines the database schema for the four persisted collections. Timestamps are
stored as integer epoch milliseconds so range scans on them are plain numeric
comparisons. Schema changes are managed with Alembic.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import BigInteger, Float, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from defroster.api.core.enums import Collection


__all__ = [
    "MODELS",
    "Base",
    "EventModel",
    "NotificationRecordModel",
    "SubscriptionModel",
    "SyncWatermarkModel",
]


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class EventModel(Base):
    """
    SQLAlchemy model for sighting events.

    `cell_code` is the geohash of the location and is the primary spatial index.
    """

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    category: Mapped[str] = mapped_column(String(32), nullable=False)

    # Location
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    cell_code: Mapped[str] = mapped_column(String(22), nullable=False)

    # Epoch milliseconds
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_events_cell_code", "cell_code"),
        Index("idx_events_created_at", "created_at"),
        Index("idx_events_expires_at", "expires_at"),
    )

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "location": {"latitude": self.latitude, "longitude": self.longitude},
            "created_at": self.created_at,
            "cell_code": self.cell_code,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> EventModel:
        location = document["location"]
        return cls(
            id=document["id"],
            category=document["category"],
            latitude=location["latitude"],
            longitude=location["longitude"],
            cell_code=document["cell_code"],
            created_at=document["created_at"],
            expires_at=document["expires_at"],
        )

    def __repr__(self) -> str:
        """String representation of event."""
        return f"<Event(id={self.id}, category={self.category}, cell={self.cell_code}, created_at={self.created_at})>"


class SubscriptionModel(Base):
    """SQLAlchemy model for notifiable devices, one row per device id."""

    __tablename__ = "subscriptions"

    device_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    push_token: Mapped[str] = mapped_column(String(300), nullable=False)
    cell_code: Mapped[str] = mapped_column(String(22), nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_subscriptions_cell_code", "cell_code"),
        Index("idx_subscriptions_updated_at", "updated_at"),
    )

    def to_document(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "push_token": self.push_token,
            "cell_code": self.cell_code,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> SubscriptionModel:
        return cls(
            device_id=document["device_id"],
            push_token=document["push_token"],
            cell_code=document["cell_code"],
            updated_at=document["updated_at"],
        )

    def __repr__(self) -> str:
        """String representation of subscription."""
        return f"<Subscription(device_id={self.device_id}, cell={self.cell_code}, updated_at={self.updated_at})>"


class NotificationRecordModel(Base):
    """
    SQLAlchemy model for the notification ledger.

    Keyed by "{event_id}_{device_id}" so a second record for the same pair
    overwrites the first.
    """

    __tablename__ = "notifications"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    event_id: Mapped[str] = mapped_column(String(64), nullable=False)
    device_id: Mapped[str] = mapped_column(String(36), nullable=False)
    sent_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (
        Index("idx_notifications_sent_at", "sent_at"),
        Index("idx_notifications_expires_at", "expires_at"),
    )

    def to_document(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "device_id": self.device_id,
            "sent_at": self.sent_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> NotificationRecordModel:
        return cls(
            key=f"{document['event_id']}_{document['device_id']}",
            event_id=document["event_id"],
            device_id=document["device_id"],
            sent_at=document["sent_at"],
            expires_at=document["expires_at"],
        )

    def __repr__(self) -> str:
        """String representation of ledger entry."""
        return f"<NotificationRecord(key={self.key}, expires_at={self.expires_at})>"


class SyncWatermarkModel(Base):
    """SQLAlchemy model for per-cell sync watermarks (client tier)."""

    __tablename__ = "watermarks"

    cell_key: Mapped[str] = mapped_column(String(22), primary_key=True)
    last_fetched_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (Index("idx_watermarks_last_fetched_at", "last_fetched_at"),)

    def to_document(self) -> dict[str, Any]:
        return {"cell_key": self.cell_key, "last_fetched_at": self.last_fetched_at}

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> SyncWatermarkModel:
        return cls(cell_key=document["cell_key"], last_fetched_at=document["last_fetched_at"])

    def __repr__(self) -> str:
        """String representation of watermark."""
        return f"<SyncWatermark(cell_key={self.cell_key}, last_fetched_at={self.last_fetched_at})>"


MODELS: dict[Collection, type[EventModel | SubscriptionModel | NotificationRecordModel | SyncWatermarkModel]] = {
    Collection.EVENTS: EventModel,
    Collection.SUBSCRIPTIONS: SubscriptionModel,
    Collection.NOTIFICATIONS: NotificationRecordModel,
    Collection.WATERMARKS: SyncWatermarkModel,
}
