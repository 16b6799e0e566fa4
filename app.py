"""
Room Reservations - reservation concurrency and state core
Flask application factory and initialization
"""

import os
import threading
import click
import logging
from flask import Flask
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Import configuration
from config import config

# Import extensions
from extensions import cache

# Import database functions
from database import close_db, init_db


def create_app(config_name=None):
    """
    Application factory for Flask app.

    Args:
        config_name: Configuration name ('development', 'production', 'test')

    Returns:
        Flask application instance
    """
    # Determine config
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    config_class = config.get(config_name, config['default'])
    if config_name == 'production':
        config_class.validate()

    # Create Flask app
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config_class)

    # Initialize extensions
    initialize_extensions(app)

    # Register CLI commands
    register_cli_commands(app)

    # Register teardown handlers
    register_teardown_handlers(app)

    # Configure logging
    configure_logging(app)

    return app


def initialize_extensions(app):
    """Initialize Flask extensions."""
    # Slot cache
    cache.init_app(app)


def register_cli_commands(app):
    """Register Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db_command():
        """Initialize database with schema and seed data."""
        click.echo('Initializing database...')
        with app.app_context():
            init_db()
        click.echo('Database initialized successfully!')

    @app.cli.command('create-room')
    @click.argument('name')
    @click.option('--capacity', default=4, show_default=True, help='Maximum people.')
    @click.option('--rate', 'hourly_rate', default=0.0, show_default=True, help='Price per hour.')
    @click.option('--open', 'open_time', default=None, help='Opening time HH:MM.')
    @click.option('--close', 'close_time', default=None, help='Closing time HH:MM.')
    def create_room_command(name, capacity, hourly_rate, open_time, close_time):
        """Create a new room."""
        from models.room import create_room
        from utils.errors import ValidationError

        with app.app_context():
            try:
                room_id = create_room(name, capacity, hourly_rate, open_time, close_time)
                click.echo(f'Room created successfully! ID: {room_id}')
            except ValidationError as e:
                click.echo(f'Error creating room: {e.message}', err=True)

    @app.cli.command('sweep-reservations')
    @click.option('--loop', is_flag=True, help='Keep sweeping until interrupted.')
    @click.option('--interval', type=float, default=None,
                  help='Seconds between sweeps (default: SWEEP_INTERVAL_SECONDS).')
    def sweep_reservations_command(loop, interval):
        """Expire stale unpaid reservations and complete finished ones."""
        from models.reconciler import (
            complete_finished_reservations,
            run_sweeper,
            sweep_stale_reservations,
        )

        if not loop:
            with app.app_context():
                expired = sweep_stale_reservations()
                completed = complete_finished_reservations()
            click.echo(f'Expired: {expired}, completed: {completed}')
            return

        stop_event = threading.Event()
        click.echo('Sweeping reservations (Ctrl+C to stop)...')
        try:
            run_sweeper(app, stop_event, interval)
        except KeyboardInterrupt:
            stop_event.set()
            click.echo('Sweeper stopped.')


def register_teardown_handlers(app):
    """Register teardown handlers."""

    @app.teardown_appcontext
    def teardown_db(error):
        """Close database connection at end of context."""
        close_db(error)


def configure_logging(app):
    """Configure application logging."""
    if not app.debug and not app.testing:
        # Production logging
        log_dir = os.path.dirname(app.config['LOG_FILE'])
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(app.config['LOG_FILE'])
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
        for package in ('models', 'database'):
            package_logger = logging.getLogger(package)
            package_logger.addHandler(file_handler)
            package_logger.setLevel(logging.INFO)

        app.logger.setLevel(logging.INFO)
        app.logger.info('%s startup', app.config.get('APP_NAME'))
    else:
        # Development logging
        app.logger.setLevel(logging.DEBUG)


# Create application instance for development use
if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        init_db()
