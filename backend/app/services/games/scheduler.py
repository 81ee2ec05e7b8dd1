import itertools
import time
from dataclasses import dataclass
from typing import List, Optional, Tuple

from app import socketio


@dataclass(frozen=True)
class Continuation:
    """A deferred step, tagged with the game state it expects to find when it fires."""
    kind: str
    game_id: int
    status: str
    stage: Optional[str]
    round: int
    question: int

    def matches(self, game) -> bool:
        return (
            game.status == self.status
            and game.stage == self.stage
            and int(game.current_round or 0) == self.round
            and int(game.current_question or 0) == self.question
        )

    def describe(self) -> str:
        return (f"kind={self.kind} game={self.game_id} status={self.status} stage={self.stage} "
                f"round={self.round} question={self.question}")


def _deferred(app) -> List[Tuple[float, int, Continuation]]:
    return app.extensions.setdefault('duel_deferred', [])


def schedule_continuation(app, continuation: Continuation, delay: float, now: Optional[float] = None) -> None:
    """Run ``continuation`` after ``delay`` seconds.

    There is no cancellation: a continuation that fires after the game has
    moved on re-checks its tag and does nothing. In TESTING mode the
    continuation is queued for ``run_deferred`` instead of starting a worker.
    """
    now = time.time() if now is None else now
    due_at = now + delay
    app.logger.info(f"[timer-set] {continuation.describe()} delay={delay}s due={due_at:.3f}")

    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        counter = app.extensions.setdefault('duel_deferred_seq', itertools.count())
        _deferred(app).append((due_at, next(counter), continuation))
        return

    socketio.start_background_task(_worker, app, continuation, delay, due_at)


def _worker(app, continuation: Continuation, delay: float, due_at: float) -> None:
    socketio.sleep(delay)
    with app.app_context():
        from .progression import run_continuation
        try:
            # Never act before the due time even if the sleep returned early
            run_continuation(continuation, now=max(time.time(), due_at))
        except Exception:
            app.logger.exception(f"[timer-error] {continuation.describe()}")


def pending_continuations(app) -> List[Tuple[float, Continuation]]:
    return [(due_at, c) for due_at, _, c in sorted(_deferred(app), key=lambda item: (item[0], item[1]))]


def run_deferred(app, until: float) -> List[Tuple[float, Continuation, str]]:
    """Fire queued continuations due at or before ``until``, in due order, on a simulated clock.

    Continuations scheduled while running are fired too if they fall due in time.
    Returns (due_at, continuation, outcome) for each one fired.
    """
    from .progression import run_continuation
    fired = []
    queue = _deferred(app)
    while True:
        due = [item for item in queue if item[0] <= until]
        if not due:
            return fired
        item = min(due, key=lambda entry: (entry[0], entry[1]))
        queue.remove(item)
        due_at, _, continuation = item
        outcome = run_continuation(continuation, now=due_at)
        fired.append((due_at, continuation, outcome))
