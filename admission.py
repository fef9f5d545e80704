"""
Reservation admission and lifecycle transitions.

admit() is the only write path that creates reservations. It re-validates
the range, re-checks availability, re-prices on the server and then hands
the reservation to the store, whose conditional insert is the actual mutual
exclusion between concurrent bookings of the same vehicle.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional

from availability import AvailabilityResolver, utc_now
from config import Config
from date_ranges import parse_date, validate_range
from errors import (
    DuplicateIdempotencyKey, IdempotencyKeyReused, InvalidTransition, QuoteMismatch,
    ReservationConflict, ReservationNotFound, SlotNoLongerAvailable, VehicleNotFound,
)
from models import HistoryEntry, ReasonCode, Reservation, ReservationStatus, TRANSITIONS
from pricing import quote, quotes_match
from utils import business_today

logger = logging.getLogger(__name__)

EXPIRED_REASON = 'provisional reservation expired'


class ReservationAdmission:

    def __init__(self, store, resolver: AvailabilityResolver = None,
                 clock: Callable[[], datetime] = None, provisional_ttl: timedelta = None):
        self.store = store
        self.clock = clock or utc_now
        self.provisional_ttl = provisional_ttl or timedelta(minutes=Config.PROVISIONAL_TTL_MINUTES)
        self.resolver = resolver or AvailabilityResolver(store, clock=self.clock,
                                                         provisional_ttl=self.provisional_ttl)

    def today(self):
        return business_today(self.clock())

    # --------------- Admission ---------------
    def admit(self, vehicle_id: str, start, end, client_quote=None,
              customer: Optional[Mapping[str, str]] = None, idempotency_key: str = None,
              pricing_accepted_at: datetime = None) -> Reservation:
        """
        Create a provisional reservation or raise an AdmissionError subclass.

        A replay with the same idempotency key returns the reservation stored
        by the first call instead of creating a second one.
        """
        start, end = parse_date(start), parse_date(end)

        if idempotency_key:
            existing = self.store.get_reservation_by_idempotency_key(idempotency_key)
            if existing is not None:
                return self._replay(existing, vehicle_id, start, end)

        # 1. range
        validate_range(start, end, self.today())

        # 2. availability re-check against the current store state
        available, reason = self.resolver.is_range_available(vehicle_id, start, end)
        if not available:
            logger.warning(f"Admission refused for vehicle {vehicle_id} {start}..{end}: {reason.value}")
            raise SlotNoLongerAvailable(reason)

        # 3. authoritative server quote
        vehicle = self.store.get_vehicle(vehicle_id)
        if vehicle is None:
            raise VehicleNotFound(f"Error: vehicle with ID '{vehicle_id}' not found")
        server_quote = quote(vehicle, start, end)
        if client_quote is not None and not quotes_match(server_quote, client_quote):
            logger.warning(f"Quote mismatch for vehicle {vehicle_id} {start}..{end}")
            raise QuoteMismatch(server_quote)

        # 4. persist; stale provisional holds must not block the conditional insert
        self.expire_stale_provisional(vehicle_id)
        now = self.clock()
        reservation = Reservation(
            id=str(uuid.uuid4()),
            vehicle_id=vehicle.id,
            start_date=start,
            end_date=end,
            status=ReservationStatus.PROVISIONAL,
            pricing=server_quote,
            created_at=now,
            updated_at=now,
            customer=dict(customer or {}),
            idempotency_key=idempotency_key,
            pricing_accepted_at=pricing_accepted_at,
            history=[HistoryEntry('created', 'customer', now, 'provisional reservation admitted')],
        )
        try:
            stored = self.store.insert_reservation(reservation)
        except ReservationConflict:
            logger.warning(f"Lost booking race for vehicle {vehicle_id} {start}..{end}")
            raise SlotNoLongerAvailable(ReasonCode.ALREADY_RESERVED)
        except DuplicateIdempotencyKey:
            existing = self.store.get_reservation_by_idempotency_key(idempotency_key)
            if existing is None:
                raise
            return self._replay(existing, vehicle_id, start, end)

        logger.info(f"Reservation {stored.id} admitted for vehicle {vehicle_id} {start}..{end} "
                    f"(deposit {stored.pricing.deposit_amount})")
        return stored

    @staticmethod
    def _replay(existing: Reservation, vehicle_id: str, start, end) -> Reservation:
        if existing.vehicle_id != str(vehicle_id) or existing.start_date != start or existing.end_date != end:
            raise IdempotencyKeyReused()
        logger.info(f"Idempotent replay returned reservation {existing.id}")
        return existing

    @staticmethod
    def payment_payload(reservation: Reservation) -> Dict[str, object]:
        """What the payment collaborator needs to build a deposit intent."""
        return {
            'reservation_id': reservation.id,
            'deposit_amount': reservation.pricing.to_dict()['deposit_amount'],
            'final_amount': reservation.pricing.to_dict()['final_amount'],
        }

    # --------------- Lifecycle ---------------
    def _transition(self, reservation_id: str, action: str, performed_by: str,
                    note: str = None, cancel_reason: str = None) -> Reservation:
        sources, target = TRANSITIONS[action]
        current = self.store.get_reservation(reservation_id)
        if current is None:
            raise ReservationNotFound(f"Error: reservation '{reservation_id}' not found")
        if current.status not in sources:
            raise InvalidTransition(
                f"Cannot {action} a reservation that is {current.status.value}",
                current_status=current.status, action=action,
            )
        if action == 'confirm' and current.is_expired_provisional(self.clock() - self.provisional_ttl):
            # the resolver already treats these days as free
            self._cancel_expired(current)
            raise InvalidTransition(
                f"Reservation {reservation_id} expired before it was confirmed",
                current_status=ReservationStatus.CANCELLED, action=action,
            )

        entry = HistoryEntry(action=action, performed_by=performed_by, at=self.clock(), note=note)
        updated = self.store.update_reservation_status(reservation_id, current.status, target, entry,
                                                       cancel_reason=cancel_reason)
        if updated is None:
            # someone else changed the status between our read and the conditional write
            latest = self.store.get_reservation(reservation_id)
            status = latest.status if latest else None
            raise InvalidTransition(
                f"Reservation {reservation_id} changed concurrently; cannot {action}",
                current_status=status, action=action,
            )

        logger.info(f"Reservation {reservation_id}: {current.status.value} -> {target.value} by {performed_by}")
        return updated

    def confirm(self, reservation_id: str, performed_by: str = 'system') -> Reservation:
        return self._transition(reservation_id, 'confirm', performed_by)

    def activate(self, reservation_id: str, performed_by: str = 'system') -> Reservation:
        return self._transition(reservation_id, 'activate', performed_by)

    def complete(self, reservation_id: str, performed_by: str = 'system') -> Reservation:
        return self._transition(reservation_id, 'complete', performed_by)

    def cancel(self, reservation_id: str, reason: str = None, performed_by: str = 'system') -> Reservation:
        return self._transition(reservation_id, 'cancel', performed_by, note=reason,
                                cancel_reason=reason or 'cancelled')

    def apply_payment_outcome(self, reservation_id: str, succeeded: bool,
                              performed_by: str = 'payment') -> Reservation:
        """Payment callback: success confirms, failure cancels. Redelivered outcomes are no-ops."""
        target = ReservationStatus.CONFIRMED if succeeded else ReservationStatus.CANCELLED
        current = self.store.get_reservation(reservation_id)
        if current is not None and current.status == target:
            return current
        if succeeded:
            return self.confirm(reservation_id, performed_by=performed_by)
        return self.cancel(reservation_id, reason='payment failed', performed_by=performed_by)

    def expire_stale_provisional(self, vehicle_id: str = None) -> List[str]:
        """Cancel provisional reservations older than the TTL; returns the cancelled ids."""
        cutoff = self.clock() - self.provisional_ttl
        expired = [r.id for r in self.store.find_provisional_before(cutoff, vehicle_id=vehicle_id)
                   if self._cancel_expired(r) is not None]
        if expired:
            logger.info(f"Expired {len(expired)} stale provisional reservations")
        return expired

    def _cancel_expired(self, reservation: Reservation) -> Optional[Reservation]:
        entry = HistoryEntry('cancel', 'system', self.clock(), EXPIRED_REASON)
        return self.store.update_reservation_status(
            reservation.id, ReservationStatus.PROVISIONAL, ReservationStatus.CANCELLED, entry,
            cancel_reason=EXPIRED_REASON,
        )
