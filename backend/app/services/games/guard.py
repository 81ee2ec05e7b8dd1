"""Per-game evaluation guard.

The in-progress marker lives on the game row and is claimed with a single
conditional UPDATE, so at most one evaluation per game runs at a time across
threads and processes. A marker older than ``PROCESSING_STALE_SEC`` is
treated as abandoned by a crashed worker and may be reclaimed.
"""
from contextlib import contextmanager

from flask import current_app

from app import db
from . import repository


@contextmanager
def evaluation_guard(game_id: int, now: float):
    """Yields True if this caller holds the marker, False if another evaluation does."""
    stale_after = float(current_app.config.get('PROCESSING_STALE_SEC', 30))
    if not repository.claim_processing(game_id, now, stale_after):
        yield False
        return
    try:
        yield True
    except Exception:
        db.session.rollback()
        raise
    finally:
        repository.release_processing(game_id)
