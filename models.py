"""
Domain types shared by the stores, the resolver and admission.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from date_ranges import format_date, parse_date


_FRACTION = re.compile(r'\.(\d+)')


def parse_timestamp(value) -> Optional[datetime]:
    """ISO timestamp from PostgREST; fractions are padded to microseconds (trailing zeros come back trimmed)."""
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).replace('Z', '+00:00')
    text = _FRACTION.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
    return datetime.fromisoformat(text)


def whole_days(value) -> int:
    """Day counts must be integral; 3.9 is rejected rather than truncated."""
    days = to_decimal(value)
    if not days.is_finite() or days != days.to_integral_value():
        raise ValueError(f"total_days must be a whole number, got {value!r}")
    return int(days)


def to_decimal(value) -> Decimal:
    """Convert a number or numeric string to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    if value is None or value == '':
        return Decimal('0')
    return Decimal(str(value))


def money_out(value: Decimal):
    """Decimal amounts go out as ints when whole, floats otherwise."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


class ReasonCode(str, Enum):
    VEHICLE_INACTIVE = 'vehicle_inactive'
    MANUALLY_BLOCKED = 'manually_blocked'
    ALREADY_RESERVED = 'already_reserved'


class ReservationStatus(str, Enum):
    PROVISIONAL = 'provisional'
    CONFIRMED = 'confirmed'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


# action -> (allowed source statuses, target status)
TRANSITIONS = {
    'confirm': ({ReservationStatus.PROVISIONAL}, ReservationStatus.CONFIRMED),
    'activate': ({ReservationStatus.CONFIRMED}, ReservationStatus.ACTIVE),
    'complete': ({ReservationStatus.ACTIVE}, ReservationStatus.COMPLETED),
    'cancel': (
        {ReservationStatus.PROVISIONAL, ReservationStatus.CONFIRMED, ReservationStatus.ACTIVE},
        ReservationStatus.CANCELLED,
    ),
}

TERMINAL_STATUSES = {ReservationStatus.COMPLETED, ReservationStatus.CANCELLED}


@dataclass
class Vehicle:
    id: str
    daily_rate: Decimal
    is_active: bool = True
    show_on_homepage: bool = True
    brand: str = ''
    model: str = ''
    year: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Vehicle':
        return cls(
            id=str(data['id']),
            daily_rate=to_decimal(data.get('daily_rate')),
            is_active=bool(data.get('is_active', True)),
            show_on_homepage=bool(data.get('show_on_homepage', True)),
            brand=data.get('brand') or '',
            model=data.get('model') or '',
            year=data.get('year'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'brand': self.brand,
            'model': self.model,
            'year': self.year,
            'daily_rate': money_out(self.daily_rate),
            'is_active': self.is_active,
            'show_on_homepage': self.show_on_homepage,
        }


@dataclass(frozen=True)
class Quote:
    """Pricing snapshot. Frozen so a stored snapshot can never be edited in place."""

    daily_rate: Decimal
    total_days: int
    subtotal: Decimal
    deposit_amount: Decimal
    final_amount: Decimal

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Quote':
        return cls(
            daily_rate=to_decimal(data['daily_rate']),
            total_days=whole_days(data['total_days']),
            subtotal=to_decimal(data['subtotal']),
            deposit_amount=to_decimal(data['deposit_amount']),
            final_amount=to_decimal(data['final_amount']),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'daily_rate': money_out(self.daily_rate),
            'total_days': self.total_days,
            'subtotal': money_out(self.subtotal),
            'deposit_amount': money_out(self.deposit_amount),
            'final_amount': money_out(self.final_amount),
        }


@dataclass(frozen=True)
class DayStatus:
    available: bool
    reason: Optional[ReasonCode]
    price: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'available': self.available,
            'reason': self.reason.value if self.reason else None,
            'price': money_out(self.price),
        }


@dataclass
class HistoryEntry:
    action: str
    performed_by: str
    at: datetime
    note: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryEntry':
        at = parse_timestamp(data.get('at'))
        return cls(
            action=data['action'],
            performed_by=data.get('performed_by') or 'system',
            at=at,
            note=data.get('note'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action,
            'performed_by': self.performed_by,
            'at': self.at.isoformat(timespec='seconds'),
            'note': self.note,
        }


@dataclass
class Reservation:
    id: str
    vehicle_id: str
    start_date: date
    end_date: date
    status: ReservationStatus
    pricing: Quote
    created_at: datetime
    updated_at: datetime
    customer: Dict[str, str] = field(default_factory=dict)
    idempotency_key: Optional[str] = None
    pricing_accepted_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    history: List[HistoryEntry] = field(default_factory=list)

    @property
    def is_cancelled(self) -> bool:
        return self.status == ReservationStatus.CANCELLED

    def is_expired_provisional(self, cutoff: datetime) -> bool:
        """True for a provisional reservation created before cutoff."""
        return self.status == ReservationStatus.PROVISIONAL and self.created_at < cutoff

    def holds_capacity(self, cutoff: datetime) -> bool:
        """Whether this reservation still occupies its days for conflict checks."""
        return not self.is_cancelled and not self.is_expired_provisional(cutoff)

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    @property
    def customer_name(self) -> str:
        first = self.customer.get('first_name', '')
        last = self.customer.get('last_name', '')
        return f"{first} {last}".strip()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Reservation':
        return cls(
            id=str(data['id']),
            vehicle_id=str(data['vehicle_id']),
            start_date=parse_date(data['start_date']),
            end_date=parse_date(data['end_date']),
            status=ReservationStatus(data['status']),
            pricing=Quote.from_dict(data['pricing'] if 'pricing' in data else data),
            created_at=parse_timestamp(data['created_at']),
            updated_at=parse_timestamp(data.get('updated_at') or data['created_at']),
            customer=dict(data.get('customer') or {}),
            idempotency_key=data.get('idempotency_key'),
            pricing_accepted_at=parse_timestamp(data.get('pricing_accepted_at')),
            cancel_reason=data.get('cancel_reason'),
            history=[HistoryEntry.from_dict(h) for h in (data.get('history') or [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'vehicle_id': self.vehicle_id,
            'start_date': format_date(self.start_date),
            'end_date': format_date(self.end_date),
            'status': self.status.value,
            'pricing': self.pricing.to_dict(),
            'customer': dict(self.customer),
            'idempotency_key': self.idempotency_key,
            'pricing_accepted_at': self.pricing_accepted_at.isoformat(timespec='seconds')
            if self.pricing_accepted_at else None,
            'cancel_reason': self.cancel_reason,
            'created_at': self.created_at.isoformat(timespec='seconds'),
            'updated_at': self.updated_at.isoformat(timespec='seconds'),
            'history': [h.to_dict() for h in self.history],
        }
