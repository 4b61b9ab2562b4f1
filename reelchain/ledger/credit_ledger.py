from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from reelchain.core.errors import BudgetError, LedgerError, LedgerStateError
from reelchain.core.models import CreditReservation, ReservationState
from reelchain.ledger.store import LedgerStore
from reelchain.utils.logging_setup import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    granted: int
    committed: int
    reserved: int

    @property
    def available(self) -> int:
        return self.granted - self.committed - self.reserved

    def to_dict(self) -> Dict[str, int]:
        return {
            "granted": self.granted,
            "committed": self.committed,
            "reserved": self.reserved,
            "available": self.available,
        }


class CreditLedger:
    """
    Prepaid credit accounting with reserve/commit/release.

    Invariant: committed + reserved <= granted. Every reservation leaves the
    reserved state exactly once.

    With a store, the persisted granted balance wins over the constructor
    value once the database exists; add credits with grant().
    """

    def __init__(
        self,
        granted: int = 0,
        store: Optional[LedgerStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        if granted < 0:
            raise LedgerError(f"granted balance must be >= 0, got {granted}")
        self._lock = asyncio.Lock()
        self._clock = clock
        self._store = store
        self._reservations: Dict[str, CreditReservation] = {}
        self._granted = int(granted)
        self._committed = 0
        self._reserved = 0
        if store is not None:
            self._restore(store, granted)

    @classmethod
    def open(cls, db_path=None, granted: int = 0) -> "CreditLedger":
        return cls(granted=granted, store=LedgerStore.open(db_path))

    def _restore(self, store: LedgerStore, granted: int) -> None:
        store.release_stale()
        persisted = store.get_granted()
        if persisted is None:
            store.set_granted(self._granted)
        else:
            if granted and granted != persisted:
                # the stored balance wins; top-ups go through grant()
                logger.warning(
                    f"Ignoring configured granted balance {granted}: ledger already holds {persisted}. "
                    f"Use grant() to add credits."
                )
            self._granted = persisted
        for reservation in store.load_reservations():
            self._reservations[reservation.id] = reservation
        self._committed = store.totals()[ReservationState.COMMITTED.value]
        logger.info(f"Ledger restored: granted={self._granted} committed={self._committed}")

    @property
    def granted(self) -> int:
        return self._granted

    @property
    def committed(self) -> int:
        return self._committed

    @property
    def reserved(self) -> int:
        return self._reserved

    @property
    def available(self) -> int:
        return self._granted - self._committed - self._reserved

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(self._granted, self._committed, self._reserved)

    def get(self, reservation_id: str) -> Optional[CreditReservation]:
        return self._reservations.get(reservation_id)

    async def grant(self, amount: int) -> int:
        if amount <= 0:
            raise LedgerError(f"grant amount must be positive, got {amount}")
        async with self._lock:
            self._granted += int(amount)
            if self._store is not None:
                self._store.set_granted(self._granted)
            logger.info(f"Granted {amount} credits (total granted {self._granted})")
            return self._granted

    async def reserve(self, amount: int) -> CreditReservation:
        if amount <= 0:
            raise LedgerError(f"reservation amount must be positive, got {amount}")
        async with self._lock:
            if amount > self.available:
                raise BudgetError(requested=amount, available=self.available)
            reservation = CreditReservation(
                id=uuid.uuid4().hex,
                amount=int(amount),
                state=ReservationState.RESERVED,
                created_at=self._clock(),
            )
            self._reservations[reservation.id] = reservation
            self._reserved += reservation.amount
            self._persist(reservation)
            logger.info(f"Reserved {amount} credits ({reservation.id[:8]}), available {self.available}")
            return reservation

    async def commit(self, reservation_id: str) -> CreditReservation:
        async with self._lock:
            reservation = self._require_reserved(reservation_id)
            reservation.state = ReservationState.COMMITTED
            self._reserved -= reservation.amount
            self._committed += reservation.amount
            self._persist(reservation)
            logger.info(f"Committed {reservation.amount} credits ({reservation_id[:8]})")
            return reservation

    async def release(self, reservation_id: str) -> CreditReservation:
        async with self._lock:
            reservation = self._require_reserved(reservation_id)
            reservation.state = ReservationState.RELEASED
            self._reserved -= reservation.amount
            self._persist(reservation)
            logger.info(f"Released {reservation.amount} credits ({reservation_id[:8]})")
            return reservation

    def _require_reserved(self, reservation_id: str) -> CreditReservation:
        reservation = self._reservations.get(reservation_id)
        if reservation is None:
            raise LedgerStateError(f"Unknown reservation {reservation_id}")
        if reservation.state != ReservationState.RESERVED:
            raise LedgerStateError(f"Reservation {reservation_id} is already {reservation.state.value}")
        return reservation

    def _persist(self, reservation: CreditReservation) -> None:
        if self._store is not None:
            self._store.save_reservation(reservation)

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
