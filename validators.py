"""
Validation module for the rental availability API
Contains all validation functions for request payloads
"""

import math
import re
import logging
from datetime import datetime
from werkzeug.exceptions import BadRequest
from config import Config

logger = logging.getLogger(__name__)

HONEYPOT_FIELDS = ['website', 'company', 'url', 'homepage']
NAME_PATTERN = re.compile(r"^[A-Za-zÀ-ÖØ-öø-ÿ\s\-\.']{2,50}$")
MAX_IDEMPOTENCY_KEY_LENGTH = 128


def validate_email(email: str) -> bool:
    """Validate email format"""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return re.match(pattern, email) is not None


def validate_phone(phone: str) -> bool:
    """Validate phone format (10-15 digits once punctuation is stripped)"""
    clean_phone = re.sub(r'\D', '', phone)
    return 10 <= len(clean_phone) <= 15


def validate_date_format(date_str: str) -> bool:
    """Validate date format YYYY-MM-DD"""
    try:
        datetime.strptime(date_str, '%Y-%m-%d')
        return True
    except (TypeError, ValueError):
        return False


def require_date_params(args) -> tuple:
    """Pull start_date/end_date from query args or raise BadRequest"""
    start_date = args.get('start_date')
    end_date = args.get('end_date')

    if not start_date or not end_date:
        raise BadRequest("start_date and end_date are required")

    if not validate_date_format(start_date) or not validate_date_format(end_date):
        raise BadRequest("Invalid date format. Use YYYY-MM-DD")

    return start_date, end_date


def validate_customer(data: dict) -> dict:
    """Validate and clean customer details"""
    if not isinstance(data, dict):
        raise BadRequest("customer must be an object")

    required_fields = ['first_name', 'last_name', 'email', 'phone']
    for field in required_fields:
        if not isinstance(data.get(field), str) or not data[field].strip():
            raise BadRequest(f"Missing required field: customer.{field}")

    if not NAME_PATTERN.match(data['first_name'].strip()):
        raise BadRequest("Invalid customer first name format")

    if not NAME_PATTERN.match(data['last_name'].strip()):
        raise BadRequest("Invalid customer last name format")

    if not validate_email(data['email'].strip()):
        raise BadRequest("Invalid email format")

    if not validate_phone(data['phone'].strip()):
        raise BadRequest("Invalid phone number format")

    return {
        'first_name': data['first_name'].strip(),
        'last_name': data['last_name'].strip(),
        'email': data['email'].strip().lower(),
        'phone': data['phone'].strip(),
    }


def validate_client_quote(data) -> dict:
    """Client quote is advisory; only its shape is checked here"""
    if data is None:
        return None
    if not isinstance(data, dict):
        raise BadRequest("quote must be an object")

    for field in ('daily_rate', 'total_days', 'subtotal', 'deposit_amount', 'final_amount'):
        if field not in data:
            raise BadRequest(f"Missing quote field: {field}")
        value = data[field]
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise BadRequest(f"Quote field {field} must be a number")
        try:
            number = float(value)
        except ValueError:
            raise BadRequest(f"Quote field {field} must be a number")
        if not math.isfinite(number):
            raise BadRequest(f"Quote field {field} must be a finite number")

    return data


def validate_reservation_request(data: dict, idempotency_header: str = None) -> dict:
    """Validation for reservation submissions"""
    required_fields = ['vehicle_id', 'start_date', 'end_date', 'customer']

    for field in required_fields:
        if field not in data or not data[field]:
            raise BadRequest(f"Missing required field: {field}")

    # Honeypot check - reject if any honeypot field is filled
    for honeypot in HONEYPOT_FIELDS:
        if honeypot in data and data[honeypot]:
            from utils import get_client_ip
            logger.warning(f"Honeypot field '{honeypot}' was filled from IP: {get_client_ip()}")
            raise BadRequest("Invalid form submission")

    if not validate_date_format(data['start_date']) or not validate_date_format(data['end_date']):
        raise BadRequest("Invalid date format. Use YYYY-MM-DD")

    idempotency_key = idempotency_header or data.get('idempotency_key')
    if idempotency_key is not None:
        if not isinstance(idempotency_key, str) or not idempotency_key.strip():
            raise BadRequest("Invalid idempotency key")
        if len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise BadRequest("Idempotency key too long")
        idempotency_key = idempotency_key.strip()

    pricing_accepted_at = None
    if data.get('pricing_accepted_at'):
        try:
            pricing_accepted_at = datetime.fromisoformat(str(data['pricing_accepted_at']).replace('Z', '+00:00'))
        except ValueError:
            raise BadRequest("Invalid pricing_accepted_at timestamp")

    return {
        'vehicle_id': str(data['vehicle_id']).strip(),
        'start_date': data['start_date'],
        'end_date': data['end_date'],
        'customer': validate_customer(data['customer']),
        'quote': validate_client_quote(data.get('quote')),
        'idempotency_key': idempotency_key,
        'pricing_accepted_at': pricing_accepted_at,
    }


def validate_block_dates(values) -> list:
    """Validate a list of YYYY-MM-DD strings for manual blocks"""
    if not isinstance(values, list):
        raise BadRequest("Dates must be an array of YYYY-MM-DD strings")

    for value in values:
        if not isinstance(value, str) or not validate_date_format(value):
            raise BadRequest(f"Invalid date in list: {value!r}. Use YYYY-MM-DD")

    return sorted(set(values))


def validate_block_update(data: dict) -> dict:
    """Validate a PATCH body of per-day toggles"""
    if not isinstance(data, dict):
        raise BadRequest("No data provided")

    update = {
        'block': validate_block_dates(data.get('block', [])),
        'unblock': validate_block_dates(data.get('unblock', [])),
    }
    if not update['block'] and not update['unblock']:
        raise BadRequest("Nothing to block or unblock")

    if set(update['block']) & set(update['unblock']):
        raise BadRequest("A date cannot be blocked and unblocked in the same request")

    return update


def validate_payment_event(data: dict) -> dict:
    """Validate a payment collaborator callback"""
    if not isinstance(data, dict):
        raise BadRequest("No data provided")

    reservation_id = data.get('reservation_id')
    outcome = data.get('outcome')

    if not reservation_id or not isinstance(reservation_id, str):
        raise BadRequest("Missing required field: reservation_id")

    if outcome not in ('succeeded', 'failed'):
        raise BadRequest("Invalid outcome. Allowed: succeeded, failed")

    return {'reservation_id': reservation_id, 'succeeded': outcome == 'succeeded'}


def validate_reservation_filters(args) -> dict:
    """Validate admin reservation list filters"""
    filters = {
        'vehicle_id': args.get('vehicle_id'),
        'status': args.get('status'),
        'start': args.get('start_date'),
        'end': args.get('end_date'),
    }
    filters = {k: v for k, v in filters.items() if v}

    if 'status' in filters and filters['status'] not in Config.VALID_RESERVATION_STATUSES:
        raise BadRequest(f"Invalid status. Allowed: {', '.join(Config.VALID_RESERVATION_STATUSES)}")

    for key in ('start', 'end'):
        if key in filters and not validate_date_format(filters[key]):
            raise BadRequest("Invalid date format. Use YYYY-MM-DD")

    try:
        filters['limit'] = min(int(args.get('limit', 100)), 500)  # Max 500 records
        filters['offset'] = max(int(args.get('offset', 0)), 0)
    except ValueError:
        raise BadRequest("limit and offset must be integers")

    return filters
