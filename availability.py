"""
Availability resolver: merges manual blocks and reservations for a vehicle.

Every public call does at most one blocked-days read and one reservations
read for the whole range, however many days it spans. Per-day overlap is
then resolved in memory. Nothing is cached between calls.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from config import Config
from date_ranges import enumerate_days, parse_date, validate_range
from errors import InvalidRange, VehicleNotFound
from models import DayStatus, ReasonCode, Reservation, Vehicle
from pricing import day_price

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def reason_for_day(day: date, blocked: Set[date], reservations: List[Reservation]) -> Optional[ReasonCode]:
    """Reservations outrank manual blocks when both apply to the same day."""
    if any(r.covers(day) for r in reservations):
        return ReasonCode.ALREADY_RESERVED
    if day in blocked:
        return ReasonCode.MANUALLY_BLOCKED
    return None


class AvailabilityResolver:
    """Read path answering "is this vehicle free" for ranges and calendars."""

    def __init__(self, store, clock: Callable[[], datetime] = None, provisional_ttl: timedelta = None):
        self.store = store
        self.clock = clock or utc_now
        self.provisional_ttl = provisional_ttl or timedelta(minutes=Config.PROVISIONAL_TTL_MINUTES)

    def provisional_cutoff(self) -> datetime:
        """Provisional reservations created before this instant no longer hold capacity."""
        return self.clock() - self.provisional_ttl

    def _require_vehicle(self, vehicle_id: str) -> Vehicle:
        vehicle = self.store.get_vehicle(vehicle_id)
        if vehicle is None:
            raise VehicleNotFound(f"Error: vehicle with ID '{vehicle_id}' not found")
        return vehicle

    def _load(self, vehicle_ids: List[str], start: date, end: date) -> Tuple[Dict[str, Set[date]], Dict[str, List[Reservation]]]:
        """One batched read of each backing store for all vehicles and the whole range."""
        blocked = self.store.get_blocked_days(vehicle_ids, start, end)
        cutoff = self.provisional_cutoff()
        by_vehicle: Dict[str, List[Reservation]] = {vid: [] for vid in vehicle_ids}
        for r in self.store.get_reservations(vehicle_ids, start, end):
            if r.holds_capacity(cutoff):
                by_vehicle.setdefault(r.vehicle_id, []).append(r)
        return blocked, by_vehicle

    @staticmethod
    def _range_verdict(days: List[date], blocked: Set[date], reservations: List[Reservation]) -> Tuple[bool, Optional[ReasonCode]]:
        first, last = days[0], days[-1]
        if any(r.start_date <= last and first <= r.end_date for r in reservations):
            return False, ReasonCode.ALREADY_RESERVED
        if any(d in blocked for d in days):
            return False, ReasonCode.MANUALLY_BLOCKED
        return True, None

    def is_range_available(self, vehicle_id: str, start, end) -> Tuple[bool, Optional[ReasonCode]]:
        """
        Returns (available, reason). reason is None when available, otherwise
        VEHICLE_INACTIVE, ALREADY_RESERVED or MANUALLY_BLOCKED.
        """
        vehicle = self._require_vehicle(vehicle_id)
        if not vehicle.is_active:
            return False, ReasonCode.VEHICLE_INACTIVE

        days = enumerate_days(start, end)
        blocked, reservations = self._load([vehicle.id], days[0], days[-1])
        available, reason = self._range_verdict(days, blocked.get(vehicle.id, set()),
                                                reservations.get(vehicle.id, []))
        if not available:
            logger.info(f"Vehicle {vehicle.id} unavailable {days[0]}..{days[-1]}: {reason.value}")
        return available, reason

    def day_map(self, vehicle_id: str, start, end, max_days: int = None) -> Dict[date, DayStatus]:
        """Per-day availability with reason codes and the daily price, for calendar UIs."""
        max_days = Config.MAX_CALENDAR_DAYS if max_days is None else max_days
        days = enumerate_days(start, end)
        if len(days) > max_days:
            raise InvalidRange(f"Calendar range is limited to {max_days} days")

        vehicle = self._require_vehicle(vehicle_id)
        price = day_price(vehicle)
        if not vehicle.is_active:
            return {d: DayStatus(False, ReasonCode.VEHICLE_INACTIVE, price) for d in days}

        blocked, reservations = self._load([vehicle.id], days[0], days[-1])
        vehicle_blocks = blocked.get(vehicle.id, set())
        vehicle_reservations = reservations.get(vehicle.id, [])

        result = {}
        for d in days:
            reason = reason_for_day(d, vehicle_blocks, vehicle_reservations)
            result[d] = DayStatus(reason is None, reason, price)
        return result

    def available_vehicles(self, start, end, reference_today=None, homepage_only: bool = True) -> List[Vehicle]:
        """Active vehicles free for the whole range, using three reads in total."""
        start, end = parse_date(start), parse_date(end)
        if reference_today is not None:
            validate_range(start, end, reference_today)
        days = enumerate_days(start, end)

        candidates = self.store.list_vehicles(include_inactive=False)
        if homepage_only:
            candidates = [v for v in candidates if v.show_on_homepage]
        if not candidates:
            return []

        ids = [v.id for v in candidates]
        blocked, reservations = self._load(ids, start, end)
        free = []
        for v in candidates:
            ok, _ = self._range_verdict(days, blocked.get(v.id, set()), reservations.get(v.id, []))
            if ok:
                free.append(v)

        logger.info(f"Found {len(free)} available vehicles out of {len(candidates)} for {start} to {end}")
        return free
