"""
Pytest configuration and fixtures.
Ensures tests use an isolated file database, not the development database.
"""

import os
import pytest
import tempfile
from datetime import datetime

# Set test database path BEFORE importing app
# A file (not :memory:) so threads with their own connections share it
TEST_DB_PATH = os.path.join(tempfile.gettempdir(), 'room_reservations_test.db')
os.environ['DATABASE_PATH'] = TEST_DB_PATH

# Fixed reference time: 2024-05-01 12:00 venue time
NOW = datetime(2024, 5, 1, 12, 0)


@pytest.fixture(scope='session', autouse=True)
def setup_test_environment():
    """Set up test environment before any tests run."""
    os.environ['DATABASE_PATH'] = TEST_DB_PATH
    os.environ['FLASK_ENV'] = 'test'

    yield

    # Cleanup: remove test database files after all tests
    for suffix in ('', '-wal', '-shm'):
        path = TEST_DB_PATH + suffix
        if os.path.exists(path):
            try:
                os.remove(path)
            except PermissionError:
                pass  # Windows may have file locked


@pytest.fixture
def app():
    """Create test application with isolated database."""
    from app import create_app
    from database import init_db
    from extensions import cache

    os.environ['DATABASE_PATH'] = TEST_DB_PATH

    app = create_app('test')
    app.config['TESTING'] = True
    app.config['DATABASE_PATH'] = TEST_DB_PATH

    with app.app_context():
        init_db()
        cache.clear()
        yield app


@pytest.fixture
def room_id(app):
    """A bookable room open 18:00-02:00."""
    from models.room import create_room

    with app.app_context():
        return create_room('Test Room', capacity=6, hourly_rate=400.0,
                           open_time='18:00', close_time='02:00')


@pytest.fixture
def now():
    return NOW
