"""
Retention Sweeper

Deletes records whose retention has lapsed, one policy per (tier, collection).
Deletes run in bounded batches so a large backlog never turns into one huge
transaction. Store failures are logged and reported in the SweepReport; a sweep
never raises for them and can simply be run again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import deal

from defroster.api.core.clock import Clock, SystemClock
from defroster.api.core.constants import CLIENT_RETENTION_MS, DELETE_BATCH_SIZE, SUBSCRIPTION_STALE_MS
from defroster.api.core.enums import Collection, StoreTier
from defroster.api.core.exceptions import StoreError
from defroster.api.database.store import RecordStore


logger = logging.getLogger(__name__)


__all__ = [
    "RETENTION_POLICIES",
    "RetentionPolicy",
    "RetentionSweeper",
    "SweepReport",
]


@dataclass(frozen=True)
class RetentionPolicy:
    """Delete records of `collection` whose `field` is at or before `now - age_ms`."""

    collection: Collection
    field: str
    age_ms: int = 0

    def cutoff(self, now: int) -> int:
        return now - self.age_ms


RETENTION_POLICIES: dict[StoreTier, tuple[RetentionPolicy, ...]] = {
    StoreTier.SERVER: (
        RetentionPolicy(Collection.EVENTS, "expires_at"),
        RetentionPolicy(Collection.NOTIFICATIONS, "expires_at"),
        RetentionPolicy(Collection.SUBSCRIPTIONS, "updated_at", SUBSCRIPTION_STALE_MS),
    ),
    StoreTier.CLIENT: (
        RetentionPolicy(Collection.EVENTS, "expires_at"),
        RetentionPolicy(Collection.WATERMARKS, "last_fetched_at", CLIENT_RETENTION_MS),
    ),
}


@dataclass
class SweepReport:
    """Result of one sweep over a tier."""

    tier: StoreTier
    started_at: int
    deleted: dict[Collection, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        """True when at least one policy stopped early on a store error."""
        return bool(self.errors)

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())


class RetentionSweeper:
    """Applies retention policies to one store tier."""

    @deal.pre(
        lambda self, store, clock=None, batch_size=DELETE_BATCH_SIZE, policies=None: batch_size > 0,
        message="Batch size must be positive",
    )  # type: ignore[misc,arg-type]
    def __init__(
        self,
        store: RecordStore,
        clock: Clock | None = None,
        batch_size: int = DELETE_BATCH_SIZE,
        policies: tuple[RetentionPolicy, ...] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._batch_size = batch_size
        self._policies = policies if policies is not None else RETENTION_POLICIES[store.tier]

    async def sweep(self) -> SweepReport:
        """
        Run every policy for the store's tier once.

        Each policy deletes in batches until a batch removes fewer records than
        the batch size. The cutoff is computed once at the start of the sweep.
        """
        now = self._clock.now()
        report = SweepReport(tier=self._store.tier, started_at=now)

        for policy in self._policies:
            cutoff = policy.cutoff(now)
            deleted = 0
            try:
                while True:
                    batch = await self._store.delete_where(
                        policy.collection, policy.field, cutoff, limit=self._batch_size
                    )
                    deleted += batch
                    if batch < self._batch_size:
                        break
            except (StoreError, OSError) as e:
                message = f"{policy.collection}: {e}"
                logger.error(f"Retention sweep of {report.tier}/{message} (deleted {deleted} before failing)")
                report.errors.append(message)
            report.deleted[policy.collection] = deleted
            if deleted:
                logger.info(f"Deleted {deleted} expired {policy.collection} from {report.tier} store")

        return report
