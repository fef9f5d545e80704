"""
Configuration module for the rental availability API
Centralized configuration management for all environment variables and settings
"""

import os
from datetime import timedelta
from decimal import Decimal
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Centralized configuration class for the rental availability API"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY')
    SESSION_COOKIE_SECURE = True  # True for HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'None'  # Booking UI and API live on different origins
    SESSION_COOKIE_DOMAIN = None
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)

    # CORS Configuration
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get('CORS_ORIGINS', 'http://localhost:3000').split(',')
        if origin.strip()
    ]
    CORS_SUPPORTS_CREDENTIALS = True
    CORS_ALLOW_HEADERS = [
        'Content-Type',
        'Authorization',
        'X-Requested-With',
        'Accept',
        'Origin',
        'Cache-Control',
        'Idempotency-Key',
        'X-Payment-Token',
    ]
    CORS_METHODS = ['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS', 'HEAD', 'PATCH']
    CORS_EXPOSE_HEADERS = ['Content-Range', 'X-Content-Range']
    CORS_MAX_AGE = 86400  # Cache preflight for 24 hours

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Storage Configuration
    STORAGE_BACKEND = os.environ.get('STORAGE_BACKEND', 'supabase')  # 'supabase' | 'memory'

    # Supabase Configuration
    SUPABASE_URL = os.environ.get('SUPABASE_URL')
    SUPABASE_ANON_KEY = os.environ.get('SUPABASE_ANON_KEY')
    SUPABASE_SERVICE_ROLE_KEY = os.environ.get('SUPABASE_SERVICE_ROLE_KEY')

    # Admin Configuration
    ADMIN_USERNAME = os.environ.get('ADMIN_USERNAME', 'admin')
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', 'change_this_password')

    # Payment collaborator callback secret
    PAYMENT_CALLBACK_TOKEN = os.environ.get('PAYMENT_CALLBACK_TOKEN')

    # Rate Limiting Configuration (reservation submissions)
    RATE_LIMIT_WINDOW = 3600  # 1 hour
    RATE_LIMIT_MAX_REQUESTS = int(os.environ.get('RATE_LIMIT_MAX_REQUESTS', 10))

    # Read-path retry policy for storage failures
    READ_RETRY_ATTEMPTS = 3
    READ_RETRY_BASE_DELAY = 0.2  # seconds, doubled on every attempt

    # Business Rules
    DEPOSIT_RATE = Decimal('0.30')
    MIN_RENTAL_DAYS = 1
    MAX_RENTAL_DAYS = 30
    MAX_CALENDAR_DAYS = 93  # three calendar months per calendar request
    QUOTE_EPSILON = Decimal('0.01')
    PROVISIONAL_TTL_MINUTES = int(os.environ.get('PROVISIONAL_TTL_MINUTES', 30))
    BUSINESS_TIMEZONE = os.environ.get('BUSINESS_TIMEZONE', 'America/Los_Angeles')

    # Reservation Status Configuration
    VALID_RESERVATION_STATUSES = ['provisional', 'confirmed', 'active', 'completed', 'cancelled']
    ADMIN_RESERVATION_ACTIONS = ['confirm', 'activate', 'complete', 'cancel']

    @classmethod
    def validate_required_config(cls):
        """Validate that all required configuration is present"""
        required_vars = ['SECRET_KEY']
        if cls.STORAGE_BACKEND == 'supabase':
            required_vars += ['SUPABASE_URL', 'SUPABASE_ANON_KEY']

        missing_vars = []
        for var in required_vars:
            if not getattr(cls, var):
                missing_vars.append(var)

        if missing_vars:
            raise ValueError(f"Missing required environment variables: {', '.join(missing_vars)}")

        if cls.STORAGE_BACKEND not in ('supabase', 'memory'):
            raise ValueError(f"Unknown STORAGE_BACKEND: {cls.STORAGE_BACKEND}")

        return True
