"""
Tests for room status tracking.
"""

from datetime import datetime, timedelta

import pytest


def dt(hour):
    return datetime(2024, 6, 1) + timedelta(hours=hour)


class TestCreateRoom:
    """Tests for create_room."""

    def test_defaults_from_config(self, app):
        from models.room import create_room, get_room

        with app.app_context():
            room = get_room(create_room('Karaoke 9'))

            assert room['status'] == 'available'
            assert room['open_time'] == '18:00'
            assert room['close_time'] == '02:00'

    def test_rejects_bad_hours(self, app):
        from models.room import create_room
        from utils.errors import ValidationError

        with app.app_context():
            with pytest.raises(ValidationError):
                create_room('Broken', open_time='25:00')


class TestEffectiveStatus:
    """'booked' is derived from reservations overlapping now."""

    def test_booked_while_occupied(self, app, room_id, now):
        from models.reservation import create_reservation
        from models.room import get_effective_room_status, get_room

        with app.app_context():
            create_reservation(1, room_id, dt(20), dt(22), now=now)

            assert get_effective_room_status(room_id, dt(19)) == 'available'
            assert get_effective_room_status(room_id, dt(20)) == 'booked'
            assert get_effective_room_status(room_id, dt(21)) == 'booked'
            assert get_effective_room_status(room_id, dt(22)) == 'available'
            assert get_room(room_id)['status'] == 'available'

    def test_cancelled_reservation_does_not_book(self, app, room_id, now):
        from models.reservation import cancel_reservation, create_reservation
        from models.room import get_effective_room_status

        with app.app_context():
            reservation = create_reservation(1, room_id, dt(20), dt(22), now=now)
            cancel_reservation(reservation['id'], 1)

            assert get_effective_room_status(room_id, dt(21)) == 'available'

    def test_unknown_room(self, app):
        from models.room import get_effective_room_status
        from utils.errors import NotFoundError

        with app.app_context():
            with pytest.raises(NotFoundError):
                get_effective_room_status(4242, dt(20))


class TestSetRoomStatus:
    """Tests for set_room_status."""

    def test_maintenance_cycle(self, app, room_id):
        from models.room import get_room_status_history, set_room_status

        with app.app_context():
            assert set_room_status(room_id, 'maintenance', now=dt(12))['status'] == 'maintenance'
            assert set_room_status(room_id, 'out_of_order', now=dt(12))['status'] == 'out_of_order'
            assert set_room_status(room_id, 'maintenance', now=dt(12))['status'] == 'maintenance'
            assert set_room_status(room_id, 'available', now=dt(12))['status'] == 'available'

            history = get_room_status_history(room_id)
            assert [h['to_status'] for h in history] == [
                'available', 'maintenance', 'out_of_order', 'maintenance'
            ]

    def test_illegal_move_keeps_status(self, app, room_id):
        from models.room import get_room, set_room_status
        from utils.errors import InvalidStateTransitionError

        with app.app_context():
            set_room_status(room_id, 'out_of_order', now=dt(12))

            with pytest.raises(InvalidStateTransitionError):
                set_room_status(room_id, 'available', now=dt(12))

            assert get_room(room_id)['status'] == 'out_of_order'

    def test_booked_cannot_be_set(self, app, room_id):
        from models.room import set_room_status
        from utils.errors import ValidationError

        with app.app_context():
            with pytest.raises(ValidationError):
                set_room_status(room_id, 'booked', now=dt(12))

    def test_occupied_room_cannot_go_to_maintenance(self, app, room_id, now):
        from models.reservation import create_reservation
        from models.room import set_room_status
        from utils.errors import InvalidStateTransitionError, ValidationError

        with app.app_context():
            create_reservation(1, room_id, dt(20), dt(22), now=now)

            with pytest.raises(InvalidStateTransitionError):
                set_room_status(room_id, 'maintenance', now=dt(21))
            with pytest.raises(ValidationError):
                set_room_status(room_id, 'available', now=dt(21))

            # Before the session starts it is still possible
            assert set_room_status(room_id, 'maintenance', now=dt(19))['status'] == 'maintenance'
