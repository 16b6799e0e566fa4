"""
Tests for the availability engine: overlap, slots and suggestions.
"""

from datetime import date, datetime, time, timedelta

import pytest

from models.availability import (
    build_operating_window,
    first_free_start,
    generate_slot_windows,
    intervals_overlap,
)


def dt(hour, minute=0, day=1):
    """2024-06-<day> at hour:minute; hours >= 24 roll into the next day."""
    return datetime(2024, 6, day) + timedelta(hours=hour, minutes=minute)


class TestIntervalOverlap:
    """Half-open interval semantics."""

    def test_touching_intervals_do_not_overlap(self):
        assert not intervals_overlap(dt(20), dt(22), dt(22), dt(23))
        assert not intervals_overlap(dt(22), dt(23), dt(20), dt(22))

    def test_partial_and_containing_overlap(self):
        assert intervals_overlap(dt(20), dt(22), dt(21), dt(23))
        assert intervals_overlap(dt(20), dt(23), dt(21), dt(22))
        assert intervals_overlap(dt(21), dt(22), dt(20), dt(23))


class TestOperatingWindow:
    """Operating hours, including overnight windows."""

    def test_overnight_window(self):
        start, end = build_operating_window(date(2024, 6, 1), time(18), time(2))
        assert start == dt(18)
        assert end == dt(26)

    def test_same_day_window(self):
        start, end = build_operating_window(date(2024, 6, 1), time(10), time(14))
        assert end - start == timedelta(hours=4)

    def test_equal_times_mean_all_day(self):
        start, end = build_operating_window(date(2024, 6, 1), time(0), time(0))
        assert end - start == timedelta(hours=24)

    def test_partial_slot_is_dropped(self):
        slots = generate_slot_windows(dt(18), dt(20, 30), 60)
        assert slots == [(dt(18), dt(19)), (dt(19), dt(20))]

    def test_invalid_granularity(self):
        with pytest.raises(ValueError):
            generate_slot_windows(dt(18), dt(20), 0)


class TestFirstFreeStart:
    """Pure next-free search."""

    def test_skips_busy_interval(self):
        busy = [(dt(20), dt(22))]
        result = first_free_start(busy, dt(21), timedelta(hours=2),
                                  timedelta(hours=1), timedelta(hours=24))
        assert result == dt(22)

    def test_none_within_horizon(self):
        busy = [(dt(0), dt(48))]
        result = first_free_start(busy, dt(21), timedelta(hours=2),
                                  timedelta(hours=1), timedelta(hours=3))
        assert result is None


class TestSlotScenario:
    """Room open 18:00-02:00, reservation 20:00-22:00 on 2024-06-01."""

    def test_slots_marked_around_reservation(self, app, room_id, now):
        from models.reservation import create_reservation, enumerate_slots

        with app.app_context():
            create_reservation(1, room_id, dt(20), dt(22), now=now)

            slots = enumerate_slots(room_id, date(2024, 6, 1), 60)

            assert len(slots) == 8
            assert slots[0]['start'] == dt(18)
            assert slots[-1]['end'] == dt(26)

            unavailable = [(s['start'], s['end']) for s in slots if not s['available']]
            assert unavailable == [(dt(20), dt(21)), (dt(21), dt(22))]

    def test_conflict_suggests_next_slot(self, app, room_id, now):
        from models.reservation import create_reservation
        from utils.errors import ConflictError

        with app.app_context():
            first = create_reservation(1, room_id, dt(20), dt(22), now=now)

            with pytest.raises(ConflictError) as exc:
                create_reservation(2, room_id, dt(21), dt(23), now=now)

            error = exc.value
            assert error.cause == 'overlap'
            assert error.suggestion == '22:00'
            assert error.next_available == dt(22)
            assert error.conflicts == [first['id']]

            payload = error.to_dict()
            assert payload['code'] == 'conflict'
            assert payload['suggestion'] == '22:00'
            assert payload['next_available'] == '2024-06-01 22:00:00'

    def test_released_reservations_free_the_window(self, app, room_id, now):
        from models.reservation import cancel_reservation, create_reservation, is_window_free

        with app.app_context():
            reservation = create_reservation(1, room_id, dt(20), dt(22), now=now)
            assert not is_window_free(room_id, dt(21), dt(22))

            cancel_reservation(reservation['id'], actor_id=1)
            assert is_window_free(room_id, dt(21), dt(22))

    def test_exclude_own_reservation(self, app, room_id, now):
        from models.reservation import create_reservation, is_window_free

        with app.app_context():
            reservation = create_reservation(1, room_id, dt(20), dt(22), now=now)
            assert is_window_free(room_id, dt(21), dt(23),
                                  exclude_reservation_id=reservation['id'])

    def test_out_of_service_room_has_no_slots(self, app, room_id):
        from models.reservation import enumerate_slots
        from models.room import set_room_status

        with app.app_context():
            set_room_status(room_id, 'maintenance', now=dt(12))
            slots = enumerate_slots(room_id, date(2024, 6, 1))
            assert slots
            assert not any(s['available'] for s in slots)

    def test_unknown_room(self, app):
        from models.reservation import enumerate_slots
        from utils.errors import NotFoundError

        with app.app_context():
            with pytest.raises(NotFoundError):
                enumerate_slots(9999, date(2024, 6, 1))
