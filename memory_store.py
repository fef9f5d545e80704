import copy
import logging
import threading
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set

from database import EngineStore
from date_ranges import ranges_overlap
from errors import DuplicateIdempotencyKey, ReservationConflict
from models import HistoryEntry, Reservation, ReservationStatus, Vehicle

logger = logging.getLogger(__name__)


class InMemoryStore(EngineStore):
    """
    Process-local store for development and tests.

    Every write runs under one re-entrant lock, so the overlap check in
    insert_reservation and the write that follows are a single atomic step.
    Records are copied on the way in and out; callers never hold live state.
    """

    def __init__(self):
        self.vehicles: Dict[str, Vehicle] = {}
        self.blocks: Dict[str, Set[date]] = {}
        self.reservations: Dict[str, Reservation] = {}
        self._rw = threading.RLock()
        # read counters let tests assert the batched-read contract
        self.block_reads = 0
        self.reservation_reads = 0

    # ---------- Vehicles ----------
    def upsert_vehicle(self, vehicle: Vehicle) -> Vehicle:
        """Seed or replace a vehicle record (fleet administration lives elsewhere)."""
        with self._rw:
            self.vehicles[vehicle.id] = copy.deepcopy(vehicle)
            return copy.deepcopy(vehicle)

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        with self._rw:
            v = self.vehicles.get(str(vehicle_id))
            return copy.deepcopy(v) if v else None

    def list_vehicles(self, include_inactive: bool = False) -> List[Vehicle]:
        with self._rw:
            res = [copy.deepcopy(v) for v in self.vehicles.values()]
        if not include_inactive:
            res = [v for v in res if v.is_active]
        res.sort(key=lambda v: (v.brand, v.model, v.id))
        return res

    # ---------- Manual blocks ----------
    def get_blocked_days(self, vehicle_ids: List[str], start: date, end: date) -> Dict[str, Set[date]]:
        with self._rw:
            self.block_reads += 1
            return {
                vid: {d for d in self.blocks.get(vid, set()) if start <= d <= end}
                for vid in vehicle_ids
            }

    def block_days(self, vehicle_id: str, days: Iterable[date]) -> None:
        with self._rw:
            self.blocks.setdefault(vehicle_id, set()).update(days)

    def unblock_days(self, vehicle_id: str, days: Iterable[date]) -> None:
        with self._rw:
            self.blocks.get(vehicle_id, set()).difference_update(days)

    def set_blocked_days(self, vehicle_id: str, days: Iterable[date]) -> None:
        with self._rw:
            self.blocks[vehicle_id] = set(days)

    # ---------- Reservations ----------
    def get_reservations(self, vehicle_ids: List[str], start: date, end: date) -> List[Reservation]:
        wanted = set(vehicle_ids)
        with self._rw:
            self.reservation_reads += 1
            return [
                copy.deepcopy(r) for r in self.reservations.values()
                if r.vehicle_id in wanted
                and not r.is_cancelled
                and ranges_overlap(r.start_date, r.end_date, start, end)
            ]

    def list_reservations(self, vehicle_id: str = None, status: str = None, start: date = None,
                          end: date = None, limit: int = 100, offset: int = 0) -> List[Reservation]:
        with self._rw:
            res = [copy.deepcopy(r) for r in self.reservations.values()]
        if vehicle_id:
            res = [r for r in res if r.vehicle_id == vehicle_id]
        if status:
            res = [r for r in res if r.status.value == status]
        if start:
            res = [r for r in res if r.end_date >= start]
        if end:
            res = [r for r in res if r.start_date <= end]
        res.sort(key=lambda r: (r.start_date, r.created_at))
        return res[offset:offset + limit]

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        with self._rw:
            r = self.reservations.get(reservation_id)
            return copy.deepcopy(r) if r else None

    def get_reservation_by_idempotency_key(self, key: str) -> Optional[Reservation]:
        with self._rw:
            for r in self.reservations.values():
                if r.idempotency_key == key:
                    return copy.deepcopy(r)
        return None

    def insert_reservation(self, reservation: Reservation) -> Reservation:
        with self._rw:
            if reservation.idempotency_key:
                for r in self.reservations.values():
                    if r.idempotency_key == reservation.idempotency_key:
                        raise DuplicateIdempotencyKey(reservation.idempotency_key)

            for r in self.reservations.values():
                if r.vehicle_id != reservation.vehicle_id or r.is_cancelled:
                    continue
                if ranges_overlap(r.start_date, r.end_date, reservation.start_date, reservation.end_date):
                    logger.info(f"Rejected overlapping reservation for vehicle {reservation.vehicle_id} "
                                f"(conflicts with {r.id})")
                    raise ReservationConflict()

            self.reservations[reservation.id] = copy.deepcopy(reservation)
            return copy.deepcopy(reservation)

    def update_reservation_status(self, reservation_id: str, from_status: ReservationStatus,
                                  to_status: ReservationStatus, entry: HistoryEntry,
                                  cancel_reason: str = None) -> Optional[Reservation]:
        with self._rw:
            r = self.reservations.get(reservation_id)
            if r is None or r.status != from_status:
                return None
            r.status = to_status
            r.updated_at = entry.at
            r.history.append(copy.deepcopy(entry))
            if cancel_reason is not None:
                r.cancel_reason = cancel_reason
            return copy.deepcopy(r)

    def find_provisional_before(self, cutoff: datetime, vehicle_id: str = None) -> List[Reservation]:
        with self._rw:
            return [
                copy.deepcopy(r) for r in self.reservations.values()
                if r.is_expired_provisional(cutoff)
                and (vehicle_id is None or r.vehicle_id == vehicle_id)
            ]
