"""
Rental Availability API - Main Application
Flask app factory wiring the availability engine to its HTTP surface
"""

import os
import logging
from datetime import datetime
from flask import Flask, current_app, request, jsonify, make_response, session
from flask_cors import CORS
from werkzeug.exceptions import BadRequest, TooManyRequests, Unauthorized

# Import our modules
from config import Config
from admission import ReservationAdmission
from availability import AvailabilityResolver, utc_now
from database import DatabaseService
from date_ranges import format_date, parse_date, validate_range
from errors import (
    EngineError, InvalidRange, InvalidTransition, QuoteMismatch, ReservationNotFound,
    SlotNoLongerAvailable, StorageError, VehicleNotFound,
)
from memory_store import InMemoryStore
from pricing import quote
from validators import (
    require_date_params, validate_block_dates, validate_block_update, validate_payment_event,
    validate_reservation_filters, validate_reservation_request,
)
from auth import (
    admin_required, admin_login, admin_logout, current_admin, get_admin_status,
    payment_callback_required,
)
from utils import get_client_ip, check_rate_limit, retry_read, rate_limit_storage

API_VERSION = '1.0.0'

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class RentalEngine:
    """Store, resolver and admission sharing one store and one clock."""

    def __init__(self, store, clock=None):
        self.store = store
        self.clock = clock or utc_now
        self.resolver = AvailabilityResolver(store, clock=self.clock)
        self.admission = ReservationAdmission(store, resolver=self.resolver, clock=self.clock)


def build_store():
    """Store selected by Config.STORAGE_BACKEND"""
    Config.validate_required_config()
    if Config.STORAGE_BACKEND == 'memory':
        logger.warning("Using in-memory store; data is lost on restart")
        return InMemoryStore()
    return DatabaseService(Config.SUPABASE_URL, Config.SUPABASE_ANON_KEY, Config.SUPABASE_SERVICE_ROLE_KEY)


def get_engine():
    return current_app.extensions.get('rental_engine')


def engine_unavailable():
    return jsonify({"error": "Database not available"}), 503


def public_reservation(reservation) -> dict:
    data = reservation.to_dict()
    data.pop('history', None)
    data.pop('idempotency_key', None)
    # contact details stay admin-only
    data['customer'] = {k: v for k, v in data['customer'].items() if k in ('first_name', 'last_name')}
    return data


def create_app(store=None, clock=None) -> Flask:
    app = Flask(__name__)

    # Configure Flask app
    app.config.update(
        SECRET_KEY=Config.SECRET_KEY,
        SESSION_COOKIE_SECURE=Config.SESSION_COOKIE_SECURE,
        SESSION_COOKIE_HTTPONLY=Config.SESSION_COOKIE_HTTPONLY,
        SESSION_COOKIE_SAMESITE=Config.SESSION_COOKIE_SAMESITE,
        SESSION_COOKIE_DOMAIN=Config.SESSION_COOKIE_DOMAIN,
        PERMANENT_SESSION_LIFETIME=Config.PERMANENT_SESSION_LIFETIME
    )

    # Configure CORS
    CORS(app,
         origins=Config.CORS_ORIGINS,
         supports_credentials=Config.CORS_SUPPORTS_CREDENTIALS,
         allow_headers=Config.CORS_ALLOW_HEADERS,
         methods=Config.CORS_METHODS,
         expose_headers=Config.CORS_EXPOSE_HEADERS,
         max_age=Config.CORS_MAX_AGE
    )

    # Initialize services
    try:
        engine = RentalEngine(store if store is not None else build_store(), clock=clock)
        logger.info(f"Rental engine initialized with {type(engine.store).__name__}")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}")
        engine = None
    app.extensions['rental_engine'] = engine

    register_handlers(app)
    register_public_routes(app)
    register_admin_routes(app)
    return app


def register_handlers(app: Flask) -> None:

    @app.before_request
    def handle_preflight():
        """Handle CORS preflight requests"""
        if request.method == "OPTIONS":
            response = make_response()
            origin = request.headers.get('Origin')
            if origin in Config.CORS_ORIGINS:
                response.headers.add("Access-Control-Allow-Origin", origin)
            response.headers.add('Access-Control-Allow-Headers', ",".join(Config.CORS_ALLOW_HEADERS))
            response.headers.add('Access-Control-Allow-Methods', ",".join(Config.CORS_METHODS))
            response.headers.add('Access-Control-Allow-Credentials', 'true')
            response.headers.add('Access-Control-Max-Age', str(Config.CORS_MAX_AGE))
            return response

    @app.errorhandler(EngineError)
    def handle_engine_error(error):
        body = {'error': error.message}
        if isinstance(error, InvalidRange):
            return jsonify(body), 400
        if isinstance(error, (VehicleNotFound, ReservationNotFound)):
            return jsonify(body), 404
        if isinstance(error, SlotNoLongerAvailable) and error.reason is not None:
            body['reason'] = error.reason.value
        if isinstance(error, QuoteMismatch) and error.server_quote is not None:
            body['quote'] = error.server_quote.to_dict()
        if isinstance(error, InvalidTransition) and error.current_status is not None:
            body['current_status'] = error.current_status.value
        return jsonify(body), 409

    @app.errorhandler(StorageError)
    def handle_storage_error(error):
        logger.error(f"Storage unavailable: {error}")
        return jsonify({'error': 'Storage temporarily unavailable, please retry'}), 503

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Endpoint not found'}), 404

    @app.errorhandler(500)
    def internal_server_error(error):
        logger.error(f"Internal server error: {error}")
        return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(TooManyRequests)
    def handle_rate_limit_exceeded(error):
        return jsonify({'error': 'Rate limit exceeded', 'retry_after': '1 hour'}), 429

    @app.errorhandler(BadRequest)
    def handle_bad_request(error):
        return jsonify({'error': 'Bad request', 'details': error.description}), 400

    @app.errorhandler(Unauthorized)
    def handle_unauthorized(error):
        return jsonify({'error': 'Unauthorized access'}), 401


def register_public_routes(app: Flask) -> None:

    @app.route('/', methods=['GET'])
    def root():
        """Root endpoint"""
        return jsonify({
            "message": "Rental Availability API",
            "version": API_VERSION,
            "status": "running",
            "timestamp": datetime.now().isoformat(),
            "admin_endpoints": "/admin/*"
        })

    @app.route('/health', methods=['GET'])
    def health_check():
        """Comprehensive health check endpoint"""
        health_data = {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "version": API_VERSION,
            "environment": os.environ.get('FLASK_ENV', 'development')
        }

        status_code = 200
        engine = get_engine()

        # Test database connection
        if engine:
            try:
                engine.store.ping()
                health_data['database'] = 'connected'
                health_data['storage_backend'] = type(engine.store).__name__
            except StorageError as e:
                health_data['database'] = f'error: {str(e)}'
                health_data['status'] = 'degraded'
                status_code = 503
        else:
            health_data['database'] = 'not_configured'
            health_data['status'] = 'degraded'
            status_code = 503

        health_data['rate_limit_entries'] = len(rate_limit_storage)
        health_data['admin_session'] = 'active' if session.get('admin_logged_in') else 'inactive'

        return jsonify(health_data), status_code

    @app.route('/vehicles', methods=['GET'])
    def get_vehicles():
        """Get visible vehicles available for the whole requested range"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        start_date, end_date = require_date_params(request.args)
        today = engine.admission.today()
        vehicles = retry_read(lambda: engine.resolver.available_vehicles(start_date, end_date, reference_today=today))

        return jsonify({
            "vehicles": [v.to_dict() for v in vehicles],
            "total": len(vehicles)
        })

    def visible_vehicle(engine, vehicle_id):
        vehicle = retry_read(lambda: engine.store.get_vehicle(vehicle_id))
        if vehicle is None or not vehicle.is_active:
            raise VehicleNotFound(f"Error: vehicle with ID '{vehicle_id}' not found")
        return vehicle

    @app.route('/vehicles/<vehicle_id>', methods=['GET'])
    def get_vehicle(vehicle_id):
        """Get specific vehicle by ID"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        return jsonify(visible_vehicle(engine, vehicle_id).to_dict())

    @app.route('/vehicles/<vehicle_id>/calendar', methods=['GET'])
    def get_vehicle_calendar(vehicle_id):
        """Per-day availability with reason codes and prices"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        start_date, end_date = require_date_params(request.args)
        visible_vehicle(engine, vehicle_id)
        days = retry_read(lambda: engine.resolver.day_map(vehicle_id, start_date, end_date))

        return jsonify({
            "vehicle_id": vehicle_id,
            "start_date": start_date,
            "end_date": end_date,
            "days": {format_date(d): status.to_dict() for d, status in days.items()}
        })

    @app.route('/vehicles/<vehicle_id>/availability', methods=['GET'])
    def get_vehicle_availability(vehicle_id):
        """Check a range and price it when it is free"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        start_date, end_date = require_date_params(request.args)
        validate_range(start_date, end_date, engine.admission.today())
        vehicle = visible_vehicle(engine, vehicle_id)
        is_available, reason = retry_read(lambda: engine.resolver.is_range_available(vehicle_id, start_date, end_date))

        result = {
            "vehicle": vehicle.to_dict(),
            "start_date": start_date,
            "end_date": end_date,
            "is_available": is_available,
            "reason": reason.value if reason else None
        }
        if is_available:
            result["quote"] = quote(vehicle, start_date, end_date).to_dict()

        return jsonify(result)

    @app.route('/vehicles/<vehicle_id>/quote', methods=['GET'])
    def get_vehicle_quote(vehicle_id):
        """Server-side price for a range"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        start_date, end_date = require_date_params(request.args)
        vehicle = visible_vehicle(engine, vehicle_id)
        result = quote(vehicle, start_date, end_date, reference_today=engine.admission.today()).to_dict()
        result.update({"vehicle_id": vehicle.id, "start_date": start_date, "end_date": end_date})

        return jsonify(result)

    @app.route('/reservations', methods=['POST'])
    def create_reservation():
        """Create a provisional reservation and hand back the deposit to collect"""
        # Rate limiting check
        check_rate_limit()

        data = request.get_json(silent=True)
        if not data:
            return jsonify({"error": "No data provided"}), 400

        validated_data = validate_reservation_request(data, request.headers.get('Idempotency-Key'))

        engine = get_engine()
        if not engine:
            return engine_unavailable()

        # Never retried here: clients retry with the same idempotency key
        reservation = engine.admission.admit(
            validated_data['vehicle_id'],
            validated_data['start_date'],
            validated_data['end_date'],
            client_quote=validated_data['quote'],
            customer=validated_data['customer'],
            idempotency_key=validated_data['idempotency_key'],
            pricing_accepted_at=validated_data['pricing_accepted_at'],
        )

        logger.info(f"Reservation {reservation.id} created for vehicle {reservation.vehicle_id} "
                    f"from IP: {get_client_ip()}")

        return jsonify({
            "success": True,
            "reservation": public_reservation(reservation),
            "payment": engine.admission.payment_payload(reservation),
            "message": "Reservation created successfully",
            "next_steps": "Please proceed with the deposit payment"
        }), 201

    @app.route('/reservations/<reservation_id>', methods=['GET'])
    def get_reservation(reservation_id):
        """Get reservation by ID"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        reservation = retry_read(lambda: engine.store.get_reservation(reservation_id))
        if not reservation:
            return jsonify({"error": "Reservation not found"}), 404

        return jsonify(public_reservation(reservation))

    @app.route('/webhooks/payment', methods=['POST'])
    @payment_callback_required
    def payment_webhook():
        """Payment collaborator reports the deposit outcome"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        event = validate_payment_event(request.get_json(silent=True))
        reservation = engine.admission.apply_payment_outcome(event['reservation_id'], event['succeeded'])

        return jsonify({
            "success": True,
            "reservation_id": reservation.id,
            "status": reservation.status.value
        })


def register_admin_routes(app: Flask) -> None:

    @app.route('/admin/login', methods=['POST'])
    def admin_login_endpoint():
        """Admin login endpoint"""
        data = request.get_json(silent=True)
        if not data or 'username' not in data or 'password' not in data:
            return jsonify({'error': 'Username and password required'}), 400

        result = admin_login(data['username'], data['password'])

        if 'error' in result:
            return jsonify(result), 401

        logger.info(f"Admin login successful for {data['username']} from IP: {get_client_ip()}")
        return jsonify(result)

    @app.route('/admin/logout', methods=['POST'])
    @admin_required
    def admin_logout_endpoint():
        """Admin logout endpoint"""
        return jsonify(admin_logout())

    @app.route('/admin/status', methods=['GET'])
    @admin_required
    def admin_status_endpoint():
        """Get admin session status"""
        return jsonify(get_admin_status())

    def require_vehicle(engine, vehicle_id):
        vehicle = retry_read(lambda: engine.store.get_vehicle(vehicle_id))
        if vehicle is None:
            raise VehicleNotFound(f"Error: vehicle with ID '{vehicle_id}' not found")
        return vehicle

    @app.route('/admin/vehicles/<vehicle_id>/blocks', methods=['GET'])
    @admin_required
    def admin_get_blocks(vehicle_id):
        """Manually blocked days of a vehicle in a range"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        start_date, end_date = require_date_params(request.args)
        start, end = parse_date(start_date), parse_date(end_date)
        if end < start:
            raise InvalidRange("End date must not be before start date")
        require_vehicle(engine, vehicle_id)
        blocked = retry_read(lambda: engine.store.get_blocked_days([vehicle_id], start, end))

        return jsonify({
            "vehicle_id": vehicle_id,
            "blocked_days": [format_date(d) for d in sorted(blocked.get(vehicle_id, set()))]
        })

    @app.route('/admin/vehicles/<vehicle_id>/blocks', methods=['PUT'])
    @admin_required
    def admin_replace_blocks(vehicle_id):
        """Save the full set of manually blocked days"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        data = request.get_json(silent=True)
        if not isinstance(data, dict) or 'dates' not in data:
            return jsonify({"error": "dates is required"}), 400

        days = [parse_date(d) for d in validate_block_dates(data['dates'])]
        require_vehicle(engine, vehicle_id)
        engine.store.set_blocked_days(vehicle_id, days)

        logger.info(f"Admin {current_admin()} saved {len(days)} blocked days for vehicle {vehicle_id}")
        return jsonify({
            "success": True,
            "vehicle_id": vehicle_id,
            "blocked_days": [format_date(d) for d in sorted(days)]
        })

    @app.route('/admin/vehicles/<vehicle_id>/blocks', methods=['PATCH'])
    @admin_required
    def admin_toggle_blocks(vehicle_id):
        """Block and unblock individual days"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        update = validate_block_update(request.get_json(silent=True))
        require_vehicle(engine, vehicle_id)
        if update['block']:
            engine.store.block_days(vehicle_id, [parse_date(d) for d in update['block']])
        if update['unblock']:
            engine.store.unblock_days(vehicle_id, [parse_date(d) for d in update['unblock']])

        logger.info(f"Admin {current_admin()} blocked {len(update['block'])} and unblocked "
                    f"{len(update['unblock'])} days for vehicle {vehicle_id}")
        return jsonify({"success": True, "vehicle_id": vehicle_id, **update})

    @app.route('/admin/vehicles/<vehicle_id>/calendar', methods=['GET'])
    @admin_required
    def admin_vehicle_calendar(vehicle_id):
        """Day map plus the reservations behind it (read-only)"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        start_date, end_date = require_date_params(request.args)
        days = retry_read(lambda: engine.resolver.day_map(vehicle_id, start_date, end_date))
        reservations = retry_read(lambda: engine.store.get_reservations(
            [vehicle_id], parse_date(start_date), parse_date(end_date)))
        cutoff = engine.resolver.provisional_cutoff()
        reservations = [r for r in reservations if r.holds_capacity(cutoff)]

        return jsonify({
            "vehicle_id": vehicle_id,
            "days": {format_date(d): status.to_dict() for d, status in days.items()},
            "reservations": [
                {
                    "id": r.id,
                    "start_date": format_date(r.start_date),
                    "end_date": format_date(r.end_date),
                    "status": r.status.value,
                    "customer_name": r.customer_name
                }
                for r in sorted(reservations, key=lambda r: r.start_date)
            ]
        })

    @app.route('/admin/reservations', methods=['GET'])
    @admin_required
    def admin_get_reservations():
        """Get all reservations for admin with filtering"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        filters = validate_reservation_filters(request.args)
        if 'start' in filters:
            filters['start'] = parse_date(filters['start'])
        if 'end' in filters:
            filters['end'] = parse_date(filters['end'])

        reservations = retry_read(lambda: engine.store.list_reservations(**filters))

        return jsonify({
            "reservations": [r.to_dict() for r in reservations],
            "total": len(reservations),
            "limit": filters['limit'],
            "offset": filters['offset']
        })

    @app.route('/admin/reservations/expire-stale', methods=['POST'])
    @admin_required
    def admin_expire_stale():
        """Cancel provisional reservations whose deposit window has passed"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        expired = engine.admission.expire_stale_provisional()
        return jsonify({"success": True, "expired": expired, "total": len(expired)})

    @app.route('/admin/reservations/<reservation_id>/<action>', methods=['POST'])
    @admin_required
    def admin_reservation_action(reservation_id, action):
        """Move a reservation through its lifecycle"""
        engine = get_engine()
        if not engine:
            return engine_unavailable()

        if action not in Config.ADMIN_RESERVATION_ACTIONS:
            return jsonify({
                "error": f"Invalid action. Allowed: {', '.join(Config.ADMIN_RESERVATION_ACTIONS)}"
            }), 400

        admin = current_admin()
        if action == 'cancel':
            data = request.get_json(silent=True) or {}
            reservation = engine.admission.cancel(reservation_id, reason=data.get('reason'), performed_by=admin)
        else:
            reservation = getattr(engine.admission, action)(reservation_id, performed_by=admin)

        return jsonify({"success": True, "reservation": reservation.to_dict()})


app = create_app()

if __name__ == '__main__':
    # Development server
    app.run(debug=True, host='0.0.0.0', port=5002)
