"""
Read-through cache for slot enumeration.

Best effort and short-lived. Every write that can change a room's
availability invalidates that room after commit. Conflict checks never
read from here.

Keys carry a per-room generation token. Invalidation is a single set of
a fresh token, so entries written under an older token are never read
again and simply time out.
"""

from datetime import date
from uuid import uuid4

from flask import current_app

from extensions import cache
from .availability import enumerate_slots

GENERATION_PREFIX = 'slots:generation'


def _generation_key(room_id: int) -> str:
    return f'{GENERATION_PREFIX}:{room_id}'


def _room_generation(room_id: int) -> str:
    key = _generation_key(room_id)
    generation = cache.get(key)
    if generation is None:
        # add() only writes when missing; re-read whichever token won
        cache.add(key, uuid4().hex, timeout=0)
        generation = cache.get(key)
    return generation


def _build_cache_key(room_id: int, day: date, granularity_minutes: int,
                     generation: str = None) -> str:
    if generation is None:
        generation = _room_generation(room_id)
    return f'slots:{room_id}:{generation}:{day.isoformat()}:{granularity_minutes}'


def get_available_slots(room_id: int, day: date, granularity_minutes: int = None) -> list:
    """
    Slots for a room and day, served from cache when fresh.

    The generation is read before the database, so a list computed
    before a concurrent write lands under the superseded token.

    Returns:
        list: [{'start', 'end', 'available'}, ...] as enumerate_slots
    """
    if granularity_minutes is None:
        granularity_minutes = current_app.config.get('SLOT_MINUTES', 60)

    key = _build_cache_key(room_id, day, granularity_minutes)
    cached = cache.get(key)
    if cached is not None:
        return cached

    slots = enumerate_slots(room_id, day, granularity_minutes)
    cache.set(key, slots)
    return slots


def invalidate_room_slots(room_id: int) -> None:
    """Drop every cached slot list for a room."""
    cache.set(_generation_key(room_id), uuid4().hex, timeout=0)
