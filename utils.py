"""
Utility functions module for the rental availability API
Contains helper functions for request handling, rate limiting and retries
"""

import threading
import time
import logging
from datetime import date, datetime, timezone
from typing import Callable, TypeVar

import pytz
from flask import request
from werkzeug.exceptions import TooManyRequests

from config import Config
from errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Simple rate limiting storage (in-memory, per process)
rate_limit_storage = {}
_rate_limit_lock = threading.Lock()


def get_client_ip() -> str:
    """Get client IP address"""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    return request.remote_addr or 'unknown'


def business_today(now: datetime = None) -> date:
    """Calendar date at the rental location; bookings are judged against this day."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    tz = pytz.timezone(Config.BUSINESS_TIMEZONE)
    return now.astimezone(tz).date()


def check_rate_limit() -> None:
    """Per-IP limit on reservation submissions"""
    client_ip = get_client_ip()
    current_time = time.time()

    with _rate_limit_lock:
        entry = rate_limit_storage.get(client_ip)

        # Reset counter if window expired
        if entry is None or current_time > entry['reset_time']:
            entry = {'count': 0, 'reset_time': current_time + Config.RATE_LIMIT_WINDOW}
            rate_limit_storage[client_ip] = entry

        # Check if limit exceeded
        if entry['count'] >= Config.RATE_LIMIT_MAX_REQUESTS:
            logger.warning(f"Rate limit exceeded for IP: {client_ip}")
            raise TooManyRequests(
                f"Rate limit exceeded. Maximum {Config.RATE_LIMIT_MAX_REQUESTS} reservations per hour per IP."
            )

        entry['count'] += 1


def retry_read(fn: Callable[[], T], attempts: int = None, base_delay: float = None,
               sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Run a read-only storage call, retrying StorageError with exponential backoff.

    Never wrap writes with this: a retried admission needs an idempotency key.
    """
    attempts = attempts or Config.READ_RETRY_ATTEMPTS
    delay = Config.READ_RETRY_BASE_DELAY if base_delay is None else base_delay

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except StorageError as e:
            if attempt == attempts:
                logger.error(f"Read failed after {attempts} attempts: {e}")
                raise
            logger.warning(f"Read attempt {attempt} failed ({e}); retrying in {delay:.2f}s")
            sleep(delay)
            delay *= 2
