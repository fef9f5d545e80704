"""
Database service module for the rental availability API
Defines the storage contract the engine relies on and its Supabase implementation
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from postgrest.exceptions import APIError
from supabase import create_client, Client

from date_ranges import format_date, parse_date
from errors import DuplicateIdempotencyKey, ReservationConflict, StorageError
from models import HistoryEntry, Reservation, ReservationStatus, Vehicle

logger = logging.getLogger(__name__)

# Postgres SQLSTATE codes surfaced by PostgREST
EXCLUSION_VIOLATION = '23P01'
UNIQUE_VIOLATION = '23505'


class EngineStore(ABC):
    """
    Storage contract for vehicles, manual blocks and reservations.

    Implementations must make insert_reservation an atomic check-and-write:
    it either stores the reservation or raises ReservationConflict when a
    non-cancelled reservation for the same vehicle overlaps the range.
    Status updates are compare-and-set on the previous status.
    """

    # ---------- Vehicles ----------
    @abstractmethod
    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        ...

    @abstractmethod
    def list_vehicles(self, include_inactive: bool = False) -> List[Vehicle]:
        ...

    # ---------- Manual blocks ----------
    @abstractmethod
    def get_blocked_days(self, vehicle_ids: List[str], start: date, end: date) -> Dict[str, Set[date]]:
        """Blocked days in [start, end] for every requested vehicle, in one read."""

    @abstractmethod
    def block_days(self, vehicle_id: str, days: Iterable[date]) -> None:
        ...

    @abstractmethod
    def unblock_days(self, vehicle_id: str, days: Iterable[date]) -> None:
        ...

    @abstractmethod
    def set_blocked_days(self, vehicle_id: str, days: Iterable[date]) -> None:
        """Replace the whole blocked set for a vehicle."""

    # ---------- Reservations ----------
    @abstractmethod
    def get_reservations(self, vehicle_ids: List[str], start: date, end: date) -> List[Reservation]:
        """Non-cancelled reservations overlapping [start, end], in one read."""

    @abstractmethod
    def list_reservations(self, vehicle_id: str = None, status: str = None, start: date = None,
                          end: date = None, limit: int = 100, offset: int = 0) -> List[Reservation]:
        ...

    @abstractmethod
    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        ...

    @abstractmethod
    def get_reservation_by_idempotency_key(self, key: str) -> Optional[Reservation]:
        ...

    @abstractmethod
    def insert_reservation(self, reservation: Reservation) -> Reservation:
        ...

    @abstractmethod
    def update_reservation_status(self, reservation_id: str, from_status: ReservationStatus,
                                  to_status: ReservationStatus, entry: HistoryEntry,
                                  cancel_reason: str = None) -> Optional[Reservation]:
        """Apply the change only if the stored status is still from_status; None otherwise."""

    @abstractmethod
    def find_provisional_before(self, cutoff: datetime, vehicle_id: str = None) -> List[Reservation]:
        ...

    def ping(self) -> bool:
        return True


def reservation_to_row(reservation: Reservation) -> Dict[str, Any]:
    """Flatten a reservation into the column layout of the reservations table."""
    pricing = reservation.pricing
    return {
        'id': reservation.id,
        'vehicle_id': reservation.vehicle_id,
        'start_date': format_date(reservation.start_date),
        'end_date': format_date(reservation.end_date),
        'status': reservation.status.value,
        'daily_rate': str(pricing.daily_rate),
        'total_days': pricing.total_days,
        'subtotal': str(pricing.subtotal),
        'deposit_amount': str(pricing.deposit_amount),
        'final_amount': str(pricing.final_amount),
        'customer': dict(reservation.customer),
        'idempotency_key': reservation.idempotency_key,
        'pricing_accepted_at': reservation.pricing_accepted_at.isoformat()
        if reservation.pricing_accepted_at else None,
        'cancel_reason': reservation.cancel_reason,
        'history': [h.to_dict() for h in reservation.history],
        'created_at': reservation.created_at.isoformat(),
        'updated_at': reservation.updated_at.isoformat(),
    }


def reservation_from_row(row: Dict[str, Any]) -> Reservation:
    return Reservation.from_dict(row)


class DatabaseService(EngineStore):
    """Supabase-backed store. Overlap protection lives in the exclusion constraint of schema.sql."""

    def __init__(self, url: str, anon_key: str, service_role_key: str = None, client: Client = None):
        """Initialize database service with Supabase credentials"""
        self.url = url
        self.anon_key = anon_key
        self.service_role_key = service_role_key

        if client is not None:
            self.supabase = client
            self._admin_client = client
            return

        # Initialize anon client
        try:
            self.supabase: Client = create_client(url, anon_key)
            logger.info("Supabase anon client initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Supabase anon client: {e}")
            raise StorageError("Failed to initialize Supabase client") from e

        # Admin client will be created on demand
        self._admin_client = None

    def get_admin_client(self) -> Client:
        """Get admin client with service role key to bypass RLS"""
        if self._admin_client is not None:
            return self._admin_client

        if not self.service_role_key:
            raise StorageError("Service role key not configured")

        try:
            self._admin_client = create_client(self.url, self.service_role_key)
            logger.info("Supabase admin client initialized successfully")
            return self._admin_client
        except Exception as e:
            logger.error(f"Failed to create admin client: {e}")
            raise StorageError("Failed to initialize Supabase admin client") from e

    def _run(self, query, what: str):
        """Execute a PostgREST query, mapping transport failures to StorageError."""
        try:
            return query.execute()
        except APIError as e:
            logger.error(f"Error {what}: {e.code} {e.message}")
            raise
        except Exception as e:
            logger.error(f"Error {what}: {e}")
            raise StorageError(f"Storage failure while {what}") from e

    def _run_read(self, query, what: str):
        try:
            return self._run(query, what)
        except APIError as e:
            raise StorageError(f"Storage failure while {what}") from e

    # ---------- Vehicles ----------
    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        """Get specific vehicle by ID"""
        response = self._run_read(
            self.supabase.table('vehicles').select('*').eq('id', vehicle_id),
            f"getting vehicle {vehicle_id}",
        )
        return Vehicle.from_dict(response.data[0]) if response.data else None

    def list_vehicles(self, include_inactive: bool = False) -> List[Vehicle]:
        """Get vehicles with optional filtering"""
        query = self.supabase.table('vehicles').select('*')
        if not include_inactive:
            query = query.eq('is_active', True)
        response = self._run_read(query.order('brand'), "listing vehicles")
        return [Vehicle.from_dict(row) for row in response.data]

    # ---------- Manual blocks ----------
    def get_blocked_days(self, vehicle_ids: List[str], start: date, end: date) -> Dict[str, Set[date]]:
        result: Dict[str, Set[date]] = {vid: set() for vid in vehicle_ids}
        if not vehicle_ids:
            return result
        response = self._run_read(
            self.supabase.table('manual_blocks').select('vehicle_id, day')
            .in_('vehicle_id', list(vehicle_ids))
            .gte('day', format_date(start))
            .lte('day', format_date(end)),
            "getting manual blocks",
        )
        for row in response.data:
            result.setdefault(str(row['vehicle_id']), set()).add(parse_date(row['day']))
        return result

    def block_days(self, vehicle_id: str, days: Iterable[date]) -> None:
        rows = [{'vehicle_id': vehicle_id, 'day': format_date(d)} for d in sorted(set(days))]
        if not rows:
            return
        self._run_read(
            self.get_admin_client().table('manual_blocks').upsert(rows, on_conflict='vehicle_id,day'),
            f"blocking days for vehicle {vehicle_id}",
        )

    def unblock_days(self, vehicle_id: str, days: Iterable[date]) -> None:
        values = [format_date(d) for d in sorted(set(days))]
        if not values:
            return
        self._run_read(
            self.get_admin_client().table('manual_blocks').delete()
            .eq('vehicle_id', vehicle_id).in_('day', values),
            f"unblocking days for vehicle {vehicle_id}",
        )

    def set_blocked_days(self, vehicle_id: str, days: Iterable[date]) -> None:
        wanted = set(days)
        current = self._run_read(
            self.get_admin_client().table('manual_blocks').select('day').eq('vehicle_id', vehicle_id),
            f"reading manual blocks for vehicle {vehicle_id}",
        )
        existing = {parse_date(row['day']) for row in current.data}
        self.unblock_days(vehicle_id, existing - wanted)
        self.block_days(vehicle_id, wanted - existing)

    # ---------- Reservations ----------
    def get_reservations(self, vehicle_ids: List[str], start: date, end: date) -> List[Reservation]:
        if not vehicle_ids:
            return []
        # Inclusive overlap: r.start <= end and r.end >= start
        response = self._run_read(
            self.get_admin_client().table('reservations').select('*')
            .in_('vehicle_id', list(vehicle_ids))
            .neq('status', ReservationStatus.CANCELLED.value)
            .lte('start_date', format_date(end))
            .gte('end_date', format_date(start)),
            "getting overlapping reservations",
        )
        return [reservation_from_row(row) for row in response.data]

    def list_reservations(self, vehicle_id: str = None, status: str = None, start: date = None,
                          end: date = None, limit: int = 100, offset: int = 0) -> List[Reservation]:
        """Get reservations with filtering and pagination"""
        query = self.get_admin_client().table('reservations').select('*')

        if vehicle_id:
            query = query.eq('vehicle_id', vehicle_id)
        if status:
            query = query.eq('status', status)
        if start:
            query = query.gte('end_date', format_date(start))
        if end:
            query = query.lte('start_date', format_date(end))

        query = query.order('start_date').limit(limit).offset(offset)
        response = self._run_read(query, "listing reservations")
        return [reservation_from_row(row) for row in response.data]

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        response = self._run_read(
            self.get_admin_client().table('reservations').select('*').eq('id', reservation_id),
            f"getting reservation {reservation_id}",
        )
        return reservation_from_row(response.data[0]) if response.data else None

    def get_reservation_by_idempotency_key(self, key: str) -> Optional[Reservation]:
        response = self._run_read(
            self.get_admin_client().table('reservations').select('*').eq('idempotency_key', key),
            "getting reservation by idempotency key",
        )
        return reservation_from_row(response.data[0]) if response.data else None

    def insert_reservation(self, reservation: Reservation) -> Reservation:
        """Single INSERT; the exclusion constraint makes the overlap check atomic."""
        try:
            response = self._run(
                self.get_admin_client().table('reservations').insert(reservation_to_row(reservation)),
                f"creating reservation for vehicle {reservation.vehicle_id}",
            )
        except APIError as e:
            if e.code == EXCLUSION_VIOLATION:
                raise ReservationConflict() from e
            if e.code == UNIQUE_VIOLATION and 'idempotency' in (e.message or '') + (e.details or ''):
                raise DuplicateIdempotencyKey(reservation.idempotency_key) from e
            raise StorageError("Failed to create reservation") from e

        if not response.data:
            raise StorageError("Failed to create reservation")
        return reservation_from_row(response.data[0])

    def update_reservation_status(self, reservation_id: str, from_status: ReservationStatus,
                                  to_status: ReservationStatus, entry: HistoryEntry,
                                  cancel_reason: str = None) -> Optional[Reservation]:
        current = self.get_reservation(reservation_id)
        if current is None or current.status != from_status:
            return None

        update_data = {
            'status': to_status.value,
            'updated_at': entry.at.isoformat(),
            'history': [h.to_dict() for h in current.history] + [entry.to_dict()],
        }
        if cancel_reason is not None:
            update_data['cancel_reason'] = cancel_reason

        # Conditional on the status we read, so concurrent transitions cannot both win
        response = self._run_read(
            self.get_admin_client().table('reservations').update(update_data)
            .eq('id', reservation_id).eq('status', from_status.value),
            f"updating reservation {reservation_id}",
        )
        return reservation_from_row(response.data[0]) if response.data else None

    def find_provisional_before(self, cutoff: datetime, vehicle_id: str = None) -> List[Reservation]:
        query = (self.get_admin_client().table('reservations').select('*')
                 .eq('status', ReservationStatus.PROVISIONAL.value)
                 .lt('created_at', cutoff.isoformat()))
        if vehicle_id:
            query = query.eq('vehicle_id', vehicle_id)
        response = self._run_read(query, "finding stale provisional reservations")
        return [reservation_from_row(row) for row in response.data]

    def ping(self) -> bool:
        self._run_read(self.supabase.table('vehicles').select('id').limit(1), "checking connectivity")
        return True
