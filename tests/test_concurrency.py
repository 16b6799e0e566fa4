"""
Concurrency and invariant tests for reservation creation.

Each worker thread runs in its own application context, so it gets its
own sqlite connection to the shared test database file.
"""

import itertools
import threading
from datetime import datetime, timedelta

from hypothesis import HealthCheck, given, settings, strategies as st

from models.availability import intervals_overlap


BASE = datetime(2024, 6, 1, 18, 0)
NOW = datetime(2024, 5, 1, 12, 0)


def _race(app, jobs):
    """Start all jobs at once; return (results, errors)."""
    from models.reservation import create_reservation
    from utils.errors import ConflictError

    barrier = threading.Barrier(len(jobs))
    results, errors = [], []
    lock = threading.Lock()

    def worker(user_id, room_id, start, end):
        with app.app_context():
            barrier.wait()
            try:
                reservation = create_reservation(user_id, room_id, start, end, now=NOW)
                with lock:
                    results.append(reservation)
            except ConflictError as e:
                with lock:
                    errors.append(e)

    threads = [threading.Thread(target=worker, args=job) for job in jobs]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def _assert_no_overlap(reservations):
    live = [r for r in reservations if r['status'] not in ('cancelled', 'expired')]
    for a, b in itertools.combinations(live, 2):
        if a['room_id'] == b['room_id']:
            assert not intervals_overlap(a['start_time'], a['end_time'],
                                         b['start_time'], b['end_time'])


class TestExactlyOneWins:
    """Two racing overlapping requests: one succeeds, one conflicts."""

    def test_identical_windows(self, app, room_id):
        start, end = BASE + timedelta(hours=2), BASE + timedelta(hours=4)

        results, errors = _race(app, [(1, room_id, start, end), (2, room_id, start, end)])

        assert len(results) == 1
        assert len(errors) == 1
        assert errors[0].cause == 'overlap'

    def test_partially_overlapping_windows(self, app, room_id):
        results, errors = _race(app, [
            (1, room_id, BASE + timedelta(hours=2), BASE + timedelta(hours=4)),
            (2, room_id, BASE + timedelta(hours=3), BASE + timedelta(hours=5)),
        ])

        assert len(results) == 1
        assert len(errors) == 1

    def test_many_contenders(self, app, room_id):
        start, end = BASE, BASE + timedelta(hours=2)

        results, errors = _race(app, [(user, room_id, start, end) for user in range(1, 9)])

        assert len(results) == 1
        assert len(errors) == 7

    def test_disjoint_windows_both_succeed(self, app, room_id):
        results, errors = _race(app, [
            (1, room_id, BASE, BASE + timedelta(hours=2)),
            (2, room_id, BASE + timedelta(hours=2), BASE + timedelta(hours=4)),
        ])

        assert len(results) == 2
        assert errors == []


# Windows as (start offset, duration) in hours from BASE
window_strategy = st.tuples(st.integers(min_value=0, max_value=20),
                            st.integers(min_value=1, max_value=6))


class TestNoOverlapInvariant:
    """Random request sets never leave two live reservations overlapping."""

    @settings(max_examples=25, deadline=None,
              suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(windows=st.lists(window_strategy, min_size=1, max_size=12),
           cancel_mask=st.lists(st.booleans(), min_size=12, max_size=12))
    def test_sequential_requests(self, app, windows, cancel_mask):
        from database import init_db
        from models.reservation import cancel_reservation, create_reservation, get_room_reservations
        from models.room import create_room
        from utils.errors import ConflictError

        with app.app_context():
            init_db()
            room_id = create_room('Property Room')

            for index, (offset, hours) in enumerate(windows):
                start = BASE + timedelta(hours=offset)
                try:
                    reservation = create_reservation(index + 1, room_id, start,
                                                     start + timedelta(hours=hours), now=NOW)
                except ConflictError:
                    continue
                if cancel_mask[index]:
                    cancel_reservation(reservation['id'], index + 1)

            everything = get_room_reservations(room_id, BASE, BASE + timedelta(days=2),
                                               include_released=True)
            _assert_no_overlap(everything)

            # A refused window must have collided with a stored reservation
            for offset, hours in windows:
                start = BASE + timedelta(hours=offset)
                end = start + timedelta(hours=hours)
                accepted = any(r['start_time'] == start and r['end_time'] == end
                               for r in everything)
                if not accepted:
                    assert any(intervals_overlap(start, end, r['start_time'], r['end_time'])
                               for r in everything)

    @settings(max_examples=10, deadline=None,
              suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(windows=st.lists(window_strategy, min_size=2, max_size=6))
    def test_concurrent_requests(self, app, windows):
        from database import init_db
        from models.reservation import get_room_reservations
        from models.room import create_room

        with app.app_context():
            init_db()
            room_id = create_room('Property Room')

        jobs = [
            (index + 1, room_id, BASE + timedelta(hours=offset),
             BASE + timedelta(hours=offset + hours))
            for index, (offset, hours) in enumerate(windows)
        ]
        results, errors = _race(app, jobs)

        assert len(results) + len(errors) == len(jobs)
        with app.app_context():
            stored = get_room_reservations(room_id, BASE, BASE + timedelta(days=2))
            assert len(stored) == len(results)
            _assert_no_overlap(stored)
