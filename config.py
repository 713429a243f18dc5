"""
Visitor Counter - Configuration Module
"""
import logging
import os
from dotenv import load_dotenv

load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


class Config:
    """Base configuration"""

    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-key-change-in-production'

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        f'sqlite:///{os.path.join(basedir, "visitor_counter.db")}'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Operator access (reset is only reachable after logging in)
    OPERATOR_USERNAME = os.environ.get('OPERATOR_USERNAME', 'admin')
    OPERATOR_PASSWORD = os.environ.get('OPERATOR_PASSWORD', '')
    ALLOW_RESET = os.environ.get('ALLOW_RESET', 'False') == 'True'

    # Store an HMAC of the client IP instead of the raw address when set
    VISITOR_IP_SALT = os.environ.get('VISITOR_IP_SALT', '')

    TOP_COUNTRIES_LIMIT = int(os.environ.get('TOP_COUNTRIES_LIMIT', 10))

    CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    @classmethod
    def init_app(cls, app):
        app.logger.setLevel(getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    ALLOW_RESET = os.environ.get('ALLOW_RESET', 'True') == 'True'


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SESSION_COOKIE_SECURE = True
    ALLOW_RESET = False

    @classmethod
    def init_app(cls, app):
        super().init_app(app)

        from logging.handlers import RotatingFileHandler

        os.makedirs('logs', exist_ok=True)
        file_handler = RotatingFileHandler(
            'logs/visitor_counter.log',
            maxBytes=10240000,
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
        app.logger.info('Visitor counter startup')


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    WTF_CSRF_ENABLED = False
    OPERATOR_USERNAME = 'operator'
    OPERATOR_PASSWORD = 'secret'
    ALLOW_RESET = True
    VISITOR_IP_SALT = ''


config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
