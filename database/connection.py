"""
Database connection management.
Handles per-context connections, write transactions, initialization and teardown.
"""

import logging
import sqlite3
from contextlib import contextmanager

from flask import g, current_app

from utils.errors import StorageUnavailableError

logger = logging.getLogger(__name__)


def get_db():
    """
    Get the connection bound to the current application context.

    Returns:
        sqlite3.Connection: Database connection object
    """
    if 'db' not in g:
        db_path = current_app.config.get('DATABASE_PATH', 'instance/reservations.db')
        g.db = sqlite3.connect(
            db_path,
            timeout=current_app.config.get('DATABASE_TIMEOUT', 5.0),
            detect_types=sqlite3.PARSE_DECLTYPES
        )
        g.db.row_factory = sqlite3.Row
        # Enable foreign key constraints
        g.db.execute('PRAGMA foreign_keys = ON')
        # Enable WAL mode for better concurrency
        g.db.execute('PRAGMA journal_mode = WAL')
    return g.db


def close_db(e=None):
    """
    Close database connection.

    Args:
        e: Exception if any (from Flask teardown context)
    """
    db = g.pop('db', None)
    if db is not None:
        db.close()


@contextmanager
def immediate_transaction():
    """
    Run a block inside ``BEGIN IMMEDIATE``.

    The reserved lock is taken up front, so a read-check-write sequence
    inside the block cannot interleave with another writer, across
    threads or processes. Commits on success, rolls back and re-raises
    otherwise. Lock timeouts and I/O failures become
    StorageUnavailableError.

    Yields:
        sqlite3.Cursor: Cursor bound to the open transaction
    """
    db = get_db()
    if db.in_transaction:
        raise RuntimeError('A transaction is already open on this connection')

    cursor = db.cursor()
    try:
        cursor.execute('BEGIN IMMEDIATE')
    except sqlite3.OperationalError as e:
        logger.warning('Could not acquire write lock: %s', e)
        raise StorageUnavailableError(f'Database is busy: {e}') from e

    try:
        yield cursor
        db.commit()
    except sqlite3.OperationalError as e:
        db.rollback()
        logger.error('Write transaction failed: %s', e)
        raise StorageUnavailableError(f'Database error: {e}') from e
    except Exception:
        db.rollback()
        raise


def init_db():
    """
    Initialize database: drop existing tables, create new schema, insert seed data.
    WARNING: This will delete all existing data!
    """
    from database.schema import drop_tables, create_tables, create_indexes, create_triggers
    from database.seed import seed_database

    db = get_db()

    # Drop existing tables (in reverse order of dependencies)
    drop_tables(db)

    # Create all tables
    create_tables(db)

    # Create indexes and overlap triggers
    create_indexes(db)
    create_triggers(db)

    # Insert seed data
    seed_database(
        db,
        open_time=current_app.config.get('DEFAULT_OPEN_TIME', '18:00'),
        close_time=current_app.config.get('DEFAULT_CLOSE_TIME', '02:00'),
    )

    db.commit()
    logger.info('Database initialized at %s', current_app.config.get('DATABASE_PATH'))
