"""
Database seed data.
Initial room catalog for fresh development installations.
"""


def seed_database(db, open_time: str = '18:00', close_time: str = '02:00'):
    """Insert initial seed data."""

    rooms_data = [
        ('Room S1', 4, 300.0),
        ('Room S2', 4, 300.0),
        ('Room M1', 8, 500.0),
        ('Room L1', 15, 900.0),
        ('VIP Suite', 20, 1500.0),
    ]

    for name, capacity, hourly_rate in rooms_data:
        db.execute('''
            INSERT INTO rooms (name, capacity, hourly_rate, open_time, close_time)
            VALUES (?, ?, ?, ?, ?)
        ''', (name, capacity, hourly_rate, open_time, close_time))
