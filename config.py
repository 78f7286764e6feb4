# Proof Attendance System Configuration

import os
from datetime import timedelta
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'proof-attendance-secret-key-2026'

    # Database Configuration
    DATABASE_PATH = os.environ.get('DATABASE_PATH') or str(BASE_DIR / 'database' / 'attendance.db')
    DATABASE_TIMEOUT = 10.0  # seconds to wait on a locked database
    DATABASE_JOURNAL_MODE = 'WAL'

    # Proof Token Configuration
    PROOF_TOKEN_SECRET = os.environ.get('PROOF_TOKEN_SECRET')
    QR_TOKEN_WINDOW_MS = 5000
    OTP_TOKEN_WINDOW_MS = 15000
    ROTATION_PERIOD_SECONDS = 8.0

    # QR Code Configuration
    QR_CODE_BOX_SIZE = 10
    QR_CODE_BORDER = 4

    # Cohort Configuration
    COHORT_YEAR_RANGE = (1, 4)
    COHORT_SEMESTER_RANGE = (1, 8)

    # Session Configuration
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = BASE_DIR / 'logs' / 'attendance.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    DEBUG = os.environ.get('DEBUG', 'False').lower() in ['true', 'on', '1']
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        if cls.DATABASE_PATH != ':memory:':
            Path(cls.DATABASE_PATH).parent.mkdir(parents=True, exist_ok=True)

        app.config.from_object(cls)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = os.environ.get('DATABASE_PATH') or str(BASE_DIR / 'database' / 'attendance_dev.db')

    # More verbose logging
    LOG_LEVEL = 'DEBUG'


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    # Use in-memory database for testing
    DATABASE_PATH = ':memory:'
    DATABASE_TIMEOUT = 5.0

    PROOF_TOKEN_SECRET = 'testing-proof-token-secret'

    # Fast rotation keeps scheduler tests short
    ROTATION_PERIOD_SECONDS = 0.05


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    SESSION_COOKIE_SECURE = True  # Requires HTTPS

    DATABASE_PATH = os.environ.get('DATABASE_PATH') or str(BASE_DIR / 'database' / 'attendance_prod.db')

    LOG_LEVEL = 'WARNING'

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        import logging
        from logging.handlers import RotatingFileHandler

        if not app.debug:
            cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('Proof Attendance System startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


# Subjects offered per (year, semester) cohort
SUBJECTS_BY_YEAR_SEM = {
    1: {
        1: ["Mathematics I", "Physics", "Chemistry", "Engineering Graphics",
            "Basic Electrical Engineering", "Programming in C"],
        2: ["Mathematics II", "Engineering Mechanics", "Basic Electronics",
            "Environmental Science", "Workshop Technology", "Communication Skills"],
    },
    2: {
        3: ["DM", "DSA", "OOPS", "FDS", "DPCO"],
        4: ["TOC", "AI&ML", "DBMS", "WE", "IOS", "ESS"],
    },
    3: {
        5: ["Computer Network", "FSWD", "Cloud Computing", "Distributed Computing", "STA"],
        6: ["Software Engineering", "Mobile App Development", "Information Security",
            "HCI", "Project Management", "Elective I"],
    },
    4: {
        7: ["Machine Learning", "Blockchain Technology", "Advanced Database Systems",
            "Cyber Security", "Elective II", "Major Project I"],
        8: ["Advanced AI", "IoT and Embedded Systems", "Advanced Software Engineering",
            "Industry Internship", "Elective III", "Major Project II"],
    },
}


def get_subjects_for_cohort(year, semester):
    """Subjects taught to a cohort; empty for unknown cohorts"""
    return list(SUBJECTS_BY_YEAR_SEM.get(year, {}).get(semester, []))


def get_config(config_name=None):
    """Get configuration class by name or FLASK_ENV"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


def validate_config(config_class):
    """Validate configuration settings"""
    errors = []

    if config_class.QR_TOKEN_WINDOW_MS <= 0 or config_class.OTP_TOKEN_WINDOW_MS <= 0:
        errors.append("Token validity windows must be positive")

    if config_class.ROTATION_PERIOD_SECONDS <= 0:
        errors.append("ROTATION_PERIOD_SECONDS must be positive")

    if config_class.DATABASE_TIMEOUT <= 0:
        errors.append("DATABASE_TIMEOUT must be positive")

    return errors


def init_config(app, config_name=None):
    """Initialize application with configuration"""
    config_class = get_config(config_name)
    config_class.init_app(app)

    errors = validate_config(config_class)
    if errors:
        for error in errors:
            app.logger.error(f"Configuration error: {error}")
        raise RuntimeError("Configuration validation failed")

    return config_class
