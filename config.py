# Rollcall QR Attendance Configuration

import os
import logging
from datetime import timedelta
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()

LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Settings shared by every environment"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'rollcall-secret-key-change-this'

    # Database Configuration
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or str(BASE_DIR / 'database' / 'attendance.db')

    # Origin used when building scan URLs for QR codes and emails
    APP_ORIGIN = os.environ.get('APP_ORIGIN') or 'http://localhost:5000'
    SCAN_PATH = '/scan'

    # Scanner behaviour
    SCAN_COOLDOWN_SECONDS = 3.0
    RESULT_DISPLAY_SECONDS = 3.0

    # QR Code Configuration
    QR_CODE_BOX_SIZE = 10
    QR_CODE_BORDER = 4

    # Session Configuration
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    AUTH_SESSION_TIMEOUT_MINUTES = 480
    PASSWORD_MIN_LENGTH = 6

    # Email Configuration
    MAIL_SERVER = os.environ.get('MAIL_SERVER') or 'localhost'
    MAIL_PORT = int(os.environ.get('MAIL_PORT') or 587)
    MAIL_USE_TLS = _env_flag('MAIL_USE_TLS', 'true')
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER') or 'Attendance System <noreply@attendance.local>'
    MAIL_SEND_DELAY_SECONDS = 0.5

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'attendance.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    DEBUG = _env_flag('DEBUG')
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Create the database directory and load settings into app.config"""
        if cls.DATABASE_PATH != ':memory:':
            Path(cls.DATABASE_PATH).parent.mkdir(parents=True, exist_ok=True)

        app.config.from_object(cls)

    @classmethod
    def mail_settings(cls):
        """Settings dictionary for EmailNotifier."""
        return {
            'smtp_server': cls.MAIL_SERVER,
            'smtp_port': cls.MAIL_PORT,
            'username': cls.MAIL_USERNAME or '',
            'password': cls.MAIL_PASSWORD or '',
            'use_tls': cls.MAIL_USE_TLS,
            'sender': cls.MAIL_DEFAULT_SENDER,
            'send_delay_seconds': cls.MAIL_SEND_DELAY_SECONDS
        }


class DevelopmentConfig(Config):
    """Local development with a mail catcher"""
    DEBUG = True

    DATABASE_PATH = os.environ.get('DATABASE_PATH') or str(BASE_DIR / 'database' / 'attendance_dev.db')

    # More verbose logging
    LOG_LEVEL = 'DEBUG'

    # Local mail catcher
    MAIL_SERVER = 'localhost'
    MAIL_PORT = 1025
    MAIL_USE_TLS = False


class TestingConfig(Config):
    """Used by the test suite"""
    TESTING = True
    DEBUG = True

    DATABASE_PATH = ':memory:'
    APP_ORIGIN = 'http://testserver'

    MAIL_SEND_DELAY_SECONDS = 0.0


class ProductionConfig(Config):
    """Deployed behind HTTPS"""
    DEBUG = False

    SESSION_COOKIE_SECURE = True  # Requires HTTPS
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or str(BASE_DIR / 'database' / 'attendance_prod.db')
    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        # Setup file logging
        if not app.debug:
            cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('Rollcall attendance startup')


# Name to configuration class
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration class by name, falling back to FLASK_ENV"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


def validate_config(config_class):
    """Return a list of configuration problems, empty when valid"""
    errors = []

    if not config_class.APP_ORIGIN.startswith(('http://', 'https://')):
        errors.append(f"APP_ORIGIN must be an http(s) URL: {config_class.APP_ORIGIN}")

    if config_class.SCAN_COOLDOWN_SECONDS < 0:
        errors.append("SCAN_COOLDOWN_SECONDS must not be negative")

    if config_class.MAIL_USERNAME and not config_class.MAIL_PASSWORD:
        errors.append("MAIL_PASSWORD is required when MAIL_USERNAME is set")

    return errors


def init_config(app, config_name=None):
    """Apply the named configuration to app and validate it"""
    config_class = get_config(config_name)
    config_class.init_app(app)

    errors = validate_config(config_class)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Invalid configuration")

    return config_class
