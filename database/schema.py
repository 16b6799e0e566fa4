"""
Database schema definitions.
Table creation, indexes, and the overlap exclusion triggers.
"""

# Statuses that release a room interval. Kept in sync with
# models.reservation_state.RELEASING_STATUSES; triggers cannot bind params.
_RELEASING_SQL = "('cancelled', 'expired')"


def drop_tables(db):
    """Drop all existing tables."""
    # Disable foreign key constraints before dropping
    db.execute('PRAGMA foreign_keys = OFF')

    tables = [
        'room_status_history',
        'reservation_status_history',
        'orders',
        'reservations',
        'rooms',
    ]

    for table in tables:
        db.execute(f'DROP TABLE IF EXISTS {table}')

    # Re-enable foreign key constraints
    db.execute('PRAGMA foreign_keys = ON')


def create_tables(db):
    """Create all database tables."""

    # 1. Rooms (catalog attributes are owned elsewhere, status is ours)
    db.execute('''
        CREATE TABLE rooms (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT UNIQUE NOT NULL,
            capacity INTEGER NOT NULL DEFAULT 1,
            hourly_rate REAL NOT NULL DEFAULT 0,
            open_time TEXT NOT NULL DEFAULT '18:00',
            close_time TEXT NOT NULL DEFAULT '02:00',
            status TEXT NOT NULL DEFAULT 'available'
                CHECK (status IN ('available', 'maintenance', 'out_of_order')),
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # 2. Reservations (half-open [start_time, end_time) in venue-local time)
    db.execute('''
        CREATE TABLE reservations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            room_id INTEGER NOT NULL REFERENCES rooms(id),
            user_id INTEGER NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            duration_minutes INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'confirmed', 'completed', 'cancelled', 'expired')),
            payment_status TEXT NOT NULL DEFAULT 'pending'
                CHECK (payment_status IN ('pending', 'paid', 'failed', 'cancelled', 'refunded', 'expired')),
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            CHECK (end_time > start_time)
        )
    ''')

    # 3. Reservation status audit trail
    db.execute('''
        CREATE TABLE reservation_status_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            reservation_id INTEGER NOT NULL REFERENCES reservations(id),
            from_status TEXT,
            to_status TEXT NOT NULL,
            changed_by TEXT NOT NULL,
            notes TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # 4. Orders (one live order per reservation, see partial index)
    db.execute('''
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            reservation_id INTEGER NOT NULL REFERENCES reservations(id),
            user_id INTEGER NOT NULL,
            amount REAL NOT NULL CHECK (amount > 0),
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'processing', 'completed', 'failed', 'cancelled', 'refunded')),
            external_reference TEXT UNIQUE,
            -- Last applied gateway delivery version; NULL until the first callback
            version INTEGER,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # 5. Room status audit trail
    db.execute('''
        CREATE TABLE room_status_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            room_id INTEGER NOT NULL REFERENCES rooms(id),
            from_status TEXT NOT NULL,
            to_status TEXT NOT NULL,
            changed_by TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    ''')


def create_indexes(db):
    """Create indexes for performance."""
    db.execute('CREATE INDEX idx_reservations_room_window ON reservations(room_id, start_time, end_time)')
    db.execute('CREATE INDEX idx_reservations_user ON reservations(user_id)')
    db.execute('CREATE INDEX idx_reservations_status_end ON reservations(status, end_time)')
    db.execute('CREATE INDEX idx_status_history_reservation ON reservation_status_history(reservation_id)')
    db.execute('CREATE INDEX idx_room_history_room ON room_status_history(room_id)')

    # At most one live order per reservation
    db.execute('''
        CREATE UNIQUE INDEX idx_orders_live_reservation
        ON orders(reservation_id)
        WHERE status IN ('pending', 'processing', 'completed')
    ''')


def create_triggers(db):
    """
    Create the storage-level overlap exclusion.

    Application code checks for overlaps inside the same write
    transaction; these triggers reject any write that slips past it.
    They surface as sqlite3.IntegrityError('reservation_overlap').
    """
    db.execute(f'''
        CREATE TRIGGER trg_reservations_no_overlap_insert
        BEFORE INSERT ON reservations
        WHEN NEW.status NOT IN {_RELEASING_SQL}
        BEGIN
            SELECT RAISE(ABORT, 'reservation_overlap')
            WHERE EXISTS (
                SELECT 1 FROM reservations r
                WHERE r.room_id = NEW.room_id
                  AND r.status NOT IN {_RELEASING_SQL}
                  AND r.start_time < NEW.end_time
                  AND NEW.start_time < r.end_time
            );
        END
    ''')

    db.execute(f'''
        CREATE TRIGGER trg_reservations_no_overlap_update
        BEFORE UPDATE OF room_id, start_time, end_time, status ON reservations
        WHEN NEW.status NOT IN {_RELEASING_SQL}
        BEGIN
            SELECT RAISE(ABORT, 'reservation_overlap')
            WHERE EXISTS (
                SELECT 1 FROM reservations r
                WHERE r.room_id = NEW.room_id
                  AND r.id != NEW.id
                  AND r.status NOT IN {_RELEASING_SQL}
                  AND r.start_time < NEW.end_time
                  AND NEW.start_time < r.end_time
            );
        END
    ''')
