#!/usr/bin/env python3
"""
Dispatch Configuration
Environment-driven settings for the dispatch data layer
"""
import logging
import os


class DispatchConfig:
    """Configuration for the shared dispatch store and its derived views"""

    # Store connection (device-local Redis)
    REDIS_HOST = os.getenv('REDIS_HOST', 'localhost')
    REDIS_PORT = int(os.getenv('REDIS_PORT', 6379))
    REDIS_DB = int(os.getenv('REDIS_DB', 0))
    REDIS_PASSWORD = os.getenv('REDIS_PASSWORD', None)
    REDIS_SOCKET_TIMEOUT = int(os.getenv('REDIS_SOCKET_TIMEOUT', 5))

    # Namespacing for keys and change channels
    KEY_PREFIX = os.getenv('DISPATCH_KEY_PREFIX', 'dispatch:')

    # Collection envelope version written by save()
    SCHEMA_VERSION = 1

    # Proposal pricing defaults
    DEFAULT_TRIP_FEE = float(os.getenv('DISPATCH_TRIP_FEE', 75))
    EMERGENCY_TRIP_FEE = float(os.getenv('DISPATCH_EMERGENCY_TRIP_FEE', 112.5))
    DEFAULT_ASSESSMENT_FEE = float(os.getenv('DISPATCH_ASSESSMENT_FEE', 75))
    DEFAULT_TECH_RATE = float(os.getenv('DISPATCH_TECH_RATE', 75))
    DEFAULT_HELPER_RATE = float(os.getenv('DISPATCH_HELPER_RATE', 65))
    DEFAULT_MARKUP = float(os.getenv('DISPATCH_MARKUP', 1.75))
    DEFAULT_TAX_PCT = float(os.getenv('DISPATCH_TAX_PCT', 0))

    # Dashboard activity feed
    ACTIVITY_WINDOW_HOURS = int(os.getenv('DISPATCH_ACTIVITY_WINDOW_HOURS', 24))
    ACTIVITY_LIMIT = int(os.getenv('DISPATCH_ACTIVITY_LIMIT', 6))

    # Logging Configuration
    LOG_LEVEL = os.getenv('DISPATCH_LOG_LEVEL', 'INFO')
    ERROR_LOG_FILE = os.getenv('DISPATCH_ERROR_LOG', '')
    LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @classmethod
    def get_summary(cls):
        """Get current configuration summary"""
        return {
            'store': {
                'host': cls.REDIS_HOST,
                'port': cls.REDIS_PORT,
                'db': cls.REDIS_DB,
                'key_prefix': cls.KEY_PREFIX,
            },
            'pricing': cls.pricing_defaults(),
            'activity': {
                'window_hours': cls.ACTIVITY_WINDOW_HOURS,
                'limit': cls.ACTIVITY_LIMIT,
            },
            'log_level': cls.LOG_LEVEL,
        }

    @classmethod
    def pricing_defaults(cls):
        """Default inputs for a new proposal form"""
        return {
            'trip_fee': cls.DEFAULT_TRIP_FEE,
            'emergency_trip_fee': cls.EMERGENCY_TRIP_FEE,
            'assessment_fee': cls.DEFAULT_ASSESSMENT_FEE,
            'tech_rate': cls.DEFAULT_TECH_RATE,
            'helper_rate': cls.DEFAULT_HELPER_RATE,
            'multiplier': cls.DEFAULT_MARKUP,
            'tax_pct': cls.DEFAULT_TAX_PCT,
        }

    @classmethod
    def validate_config(cls):
        """Validate configuration settings"""
        issues = []

        if cls.REDIS_PORT < 1 or cls.REDIS_PORT > 65535:
            issues.append("REDIS_PORT must be between 1 and 65535")

        if not cls.KEY_PREFIX.endswith(':'):
            issues.append("DISPATCH_KEY_PREFIX should end with ':'")

        if cls.DEFAULT_MARKUP <= 0:
            issues.append("DISPATCH_MARKUP must be positive")

        if cls.DEFAULT_TAX_PCT < 0 or cls.DEFAULT_TAX_PCT > 100:
            issues.append("DISPATCH_TAX_PCT must be between 0 and 100")

        if cls.ACTIVITY_LIMIT < 1:
            issues.append("DISPATCH_ACTIVITY_LIMIT should be at least 1")

        if cls.LOG_LEVEL.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            issues.append(f"Unknown DISPATCH_LOG_LEVEL: {cls.LOG_LEVEL}")

        return issues


def configure_logging(level=None):
    """Apply the shared log format to the root logger."""
    logging.basicConfig(
        level=getattr(logging, (level or DispatchConfig.LOG_LEVEL).upper(), logging.INFO),
        format=DispatchConfig.LOG_FORMAT
    )
