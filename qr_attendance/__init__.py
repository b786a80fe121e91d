"""QR Attendance - Application Factory."""
import logging
import os
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
limiter = Limiter(key_func=get_remote_address)


def create_app(config_name: str = None, config_overrides: dict = None) -> Flask:
    """Application factory pattern."""
    app = Flask(__name__)

    # Load configuration
    from config import get_config
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    # Configure CORS
    CORS(app, origins=app.config.get('CORS_ORIGINS', ["*"]))

    # Setup logging
    setup_logging(app)

    # Attendance policy, built once
    setup_attendance(app)

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Add CLI commands
    register_commands(app)

    # Add health check
    @app.route('/health')
    def health_check():
        return jsonify({
            'status': 'healthy',
            'service': 'QR Attendance',
            'version': '1.0.0'
        })

    return app


def setup_attendance(app: Flask) -> None:
    """Resolve the QR signing key and build the attendance policy."""
    from qr_attendance.services.factory import init_policy

    if not app.config.get('QR_SIGNING_KEY'):
        app.logger.warning('QR_SIGNING_KEY not set, signing QR tokens with SECRET_KEY')
        app.config['QR_SIGNING_KEY'] = app.config['SECRET_KEY']
    init_policy(app)

    # Register models with the metadata
    from qr_attendance import models  # noqa: F401


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""
    from qr_attendance.api.qr import qr_bp
    from qr_attendance.api.attendance import attendance_bp
    from qr_attendance.api.periods import periods_bp

    app.register_blueprint(qr_bp, url_prefix='/api/qr')
    app.register_blueprint(attendance_bp, url_prefix='/api/attendance')
    app.register_blueprint(periods_bp, url_prefix='/api/periods')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from qr_attendance.errors import AttendanceError
    from qr_attendance.utils.helpers import handle_error
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(AttendanceError)
    def attendance_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return handle_error(error, 500)

    @app.errorhandler(HTTPException)
    def handle_exception(e):
        return handle_error(e, e.code)

    # JWT error handlers
    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return jsonify({
            'error': True,
            'message': 'Token has expired',
            'status_code': 401
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Invalid token',
            'status_code': 401
        }), 401

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Authorization token required',
            'status_code': 401
        }), 401


def setup_logging(app: Flask) -> None:
    """Setup application logging."""
    # Service modules log under qr_attendance.*, which is the app logger's namespace
    if not app.debug and not app.testing:
        log_file = app.config.get('LOG_FILE', 'logs/app.log')
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)

        app.logger.setLevel(logging.INFO)
        app.logger.info('QR Attendance startup')
    elif app.config.get('LOG_LEVEL'):
        app.logger.setLevel(app.config['LOG_LEVEL'])


def register_commands(app: Flask) -> None:
    """Register CLI commands."""
    import click

    @app.cli.command()
    @click.option('--drop', is_flag=True, help='Drop existing tables')
    def init_db(drop):
        """Initialize the database."""
        if drop:
            db.drop_all()
            click.echo('Dropped all tables.')

        db.create_all()
        click.echo('Created all tables.')

    @app.cli.command()
    @click.option('--email', prompt='Email')
    @click.option('--name', prompt='Name')
    @click.option('--role', type=click.Choice(['student', 'teacher', 'hod', 'admin']),
                  default='teacher', show_default=True)
    def create_user(email, name, role):
        """Mirror a user from the identity service."""
        from qr_attendance.models.user import User, UserRole

        if User.query.filter_by(email=email).first():
            click.echo(f'User already exists: {email}')
            return
        user = User(email=email, name=name, role=UserRole(role))
        db.session.add(user)
        db.session.commit()
        click.echo(f'Created {role} {email} (id {user.id})')

    @app.cli.command()
    def sweep_sessions():
        """Deactivate expired QR sessions."""
        from qr_attendance.services.factory import session_manager

        count = session_manager().sweep_expired()
        click.echo(f'Deactivated {count} expired QR sessions.')

    @app.cli.command()
    def refresh_periods():
        """Persist clock-derived period statuses."""
        from qr_attendance.services.factory import period_service

        count = period_service().refresh_statuses()
        click.echo(f'Updated status of {count} periods.')
