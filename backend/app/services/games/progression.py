"""Game progression for the duel.

The lifecycle is ``waiting -> playing <-> showing_results -> finished``.
Every write here is a compare-and-set against the state the caller last saw
(status, stage, round, question), so a late timer or a racing request can
never move a game that has already moved on, and ``finished`` is final.
Evaluation of the active question additionally runs under the per-game
guard. Timers are fire-and-forget continuations that re-check their tag.
"""
import json
import time
from typing import Optional

from flask import current_app

from app.models import NO_ANSWER
from . import presence, questions, repository, scoring
from .errors import (
    AlreadyAnswered,
    AlreadyStarted,
    DeadlinePassed,
    GameNotFound,
    NotAcceptingAnswers,
    NotCreator,
    NotEnoughPlayers,
    StorageUnavailable,
)
from .guard import evaluation_guard
from .scheduler import Continuation, schedule_continuation

WAITING = 'waiting'
PLAYING = 'playing'
SHOWING_RESULTS = 'showing_results'
FINISHED = 'finished'

# Outcomes reported by evaluation and continuations
SKIPPED = 'skipped'
BUSY = 'busy'
WAITING_FOR_ANSWERS = 'waiting_for_answers'
QUESTION_TIED = 'question_tied'
ROUND_SETTLED = 'round_settled'
QUESTION_OPENED = 'question_opened'
FINAL_SCOREBOARD = 'final_scoreboard'
GAME_FINISHED = 'game_finished'


def _config(key, default):
    return current_app.config.get(key, default)


def _app():
    return current_app._get_current_object()


def _now(now: Optional[float]) -> float:
    return time.time() if now is None else now


def _tag(game) -> dict:
    return {
        'status': game.status,
        'stage': game.stage,
        'current_round': game.current_round,
        'current_question': game.current_question,
    }


def _expected(continuation: Continuation) -> dict:
    return {
        'status': continuation.status,
        'stage': continuation.stage,
        'current_round': continuation.round,
        'current_question': continuation.question,
    }


def require_game(game_id: int):
    game = repository.get_game(game_id)
    if game is None:
        raise GameNotFound(game_id=game_id)
    return game


# ---- Opening questions ----

def start_game(game_id: int, session_token: str, now: Optional[float] = None):
    """Creator-only: move a full lobby into round 1, question 1."""
    now = _now(now)
    game = require_game(game_id)
    player = presence.resolve_player(game, session_token)
    if game.status != WAITING:
        raise AlreadyStarted(game_id=game_id)
    if player.id != game.creator_id:
        raise NotCreator()
    players = repository.list_players(game_id)
    required = int(_config('MAX_PLAYERS', 2))
    if len(players) != required:
        raise NotEnoughPlayers(players=len(players), required=required)

    plan = questions.build_plan(int(_config('QUESTION_BATCH_SIZE', 9)))
    if not _open_question(game_id, 1, 1, now, expected={'status': WAITING}, plan=plan, used=[]):
        raise AlreadyStarted(game_id=game_id)
    current_app.logger.info(f"[game-start] game={game_id} players={[p.id for p in players]}")
    if len(repository.list_players(game_id)) != required:
        # The guest left between the count and the transition
        process_game(game_id, now=now, trigger='start')
    return repository.get_game(game_id)


def _open_question(game_id: int, round_number: int, question_number: int, now: float, expected: dict,
                   plan=None, used=None) -> bool:
    if plan is None or used is None:
        game = repository.get_game(game_id)
        plan, used = game.plan, game.used
    snapshot, plan, used = questions.take_next(plan, used, questions.TYPE_FOR_SLOT[question_number])
    duration = int(_config('QUESTION_DURATION_SEC', 15))
    deadline = now + duration

    opened = repository.transition_game(
        game_id,
        expected,
        status=PLAYING,
        stage='question',
        current_round=round_number,
        current_question=question_number,
        question_data=json.dumps(snapshot),
        question_deadline=deadline,
        stage_deadline=None,
        last_round_winner_id=None,
        question_plan=json.dumps(plan),
        used_questions=json.dumps(used),
    )
    if not opened:
        current_app.logger.info(f"[question-abort] game={game_id} round={round_number} question={question_number} state changed")
        return False

    current_app.logger.info(
        f"[question-open] game={game_id} round={round_number} question={question_number} "
        f"question_id={snapshot['id']} deadline={deadline:.3f}"
    )
    schedule_continuation(
        _app(),
        Continuation('evaluate', game_id, PLAYING, 'question', round_number, question_number),
        duration,
        now=now,
    )
    return True


# ---- Answers ----

def submit_answer(game_id: int, session_token: str, raw_answer, now: Optional[float] = None):
    """Record one player's answer to the active question, then try to evaluate it."""
    now = _now(now)
    game = require_game(game_id)
    player = presence.resolve_player(game, session_token)
    if game.status != PLAYING or not game.question_data:
        raise NotAcceptingAnswers(status=game.status)
    if game.question_deadline is not None and now >= game.question_deadline:
        raise DeadlinePassed()

    question = game.question
    value, option_index = scoring.normalize_submission(question, raw_answer)
    round_number, question_number = game.current_round, game.current_question
    existing = repository.list_answers(game_id, round_number, question_number)
    if any(a.player_id == player.id for a in existing):
        raise AlreadyAnswered(round=round_number, question=question_number)

    answer = repository.create_answer(
        game_id=game_id,
        player_id=player.id,
        round=round_number,
        question=question_number,
        value=value,
        option_index=option_index,
        submitted_at=now,
        is_correct=scoring.is_submission_correct(question, value, option_index),
        question_text=question.get('text'),
        correct_answer=str(question.get('correct_answer')),
    )
    repository.touch_player(player.id, now)
    current_app.logger.info(
        f"[answer] game={game_id} player={player.id} round={round_number} question={question_number} value={value!r}"
    )
    _trigger_evaluation(game_id, Continuation('evaluate', game_id, PLAYING, 'question', round_number, question_number), now)
    return answer


def _trigger_evaluation(game_id: int, continuation: Continuation, now: float) -> None:
    retry = float(_config('GUARD_RETRY_SEC', 1))
    try:
        outcome = process_game(game_id, now=now, trigger='answer')
    except StorageUnavailable:
        # The answer is stored; evaluation is retried rather than failing the submission
        current_app.logger.warning(f"[eval-deferred] game={game_id} storage unavailable")
        schedule_continuation(_app(), continuation, retry, now=now)
        return
    if outcome == BUSY:
        schedule_continuation(_app(), continuation, retry, now=now)


# ---- Evaluation ----

def process_game(game_id: int, now: Optional[float] = None, trigger: str = 'manual') -> str:
    """Evaluate the active question if it is complete (both answered, or deadline passed).

    Safe to call at any time: it does nothing unless the game is playing and
    no other evaluation holds the guard.
    """
    now = _now(now)
    game = repository.get_game(game_id)
    if game is None or game.status != PLAYING or not game.question_data:
        current_app.logger.info(f"[eval-skip] game={game_id} trigger={trigger} not playing")
        return SKIPPED

    with evaluation_guard(game_id, now) as acquired:
        if not acquired:
            current_app.logger.info(f"[eval-busy] game={game_id} trigger={trigger}")
            return BUSY

        game = repository.get_game(game_id)
        if game.status != PLAYING or not game.question_data:
            return SKIPPED
        round_number, question_number = game.current_round, game.current_question
        players = repository.list_players(game_id)
        if len(players) < 2:
            # A seat was freed while the game was starting: the game cannot go on
            current_app.logger.warning(f"[eval-short] game={game_id} expected 2 players, found {len(players)}")
            finished = _finish(game_id, _tag(game), winner_id=players[0].id if players else None, stage='abandoned')
            return GAME_FINISHED if finished else SKIPPED
        if len(players) != 2:
            current_app.logger.error(f"[eval-skip] game={game_id} expected 2 players, found {len(players)}")
            return SKIPPED

        answers = repository.list_answers(game_id, round_number, question_number)
        answered = {a.player_id for a in answers}
        time_up = game.question_deadline is not None and now >= game.question_deadline
        if len(answered) < 2 and not time_up:
            current_app.logger.info(
                f"[eval-wait] game={game_id} round={round_number} question={question_number} answers={len(answered)}/2"
            )
            return WAITING_FOR_ANSWERS

        question = game.question
        if time_up:
            for player in players:
                if player.id not in answered:
                    _record_no_answer(game, question, player.id)
            answers = repository.list_answers(game_id, round_number, question_number)

        player_ids = [p.id for p in players]
        if question_number == 1:
            outcome = scoring.evaluate_choice(question, answers, player_ids)
            current_app.logger.info(
                f"[eval] game={game_id} round={round_number} question=1 trigger={trigger} "
                f"correct={outcome.correct_count} reason={outcome.reason}"
            )
            if not outcome.decided:
                return _settle_tied_question(game, now)
            return _settle_round(game, outcome.winner_id, outcome.reason, now)

        outcome = scoring.evaluate_integer(question, answers, player_ids)
        current_app.logger.info(
            f"[eval] game={game_id} round={round_number} question=2 trigger={trigger} "
            f"winner={outcome.winner_id} reason={outcome.reason}"
        )
        return _settle_round(game, outcome.winner_id, outcome.reason, now)


def _record_no_answer(game, question: dict, player_id: int) -> None:
    try:
        repository.create_answer(
            game_id=game.id,
            player_id=player_id,
            round=game.current_round,
            question=game.current_question,
            value=NO_ANSWER,
            option_index=None,
            submitted_at=game.question_deadline,
            is_correct=False,
            question_text=question.get('text'),
            correct_answer=str(question.get('correct_answer')),
        )
    except AlreadyAnswered:
        # A submission accepted just before the deadline won the race
        return
    current_app.logger.info(f"[no-answer] game={game.id} player={player_id} round={game.current_round} question={game.current_question}")


def _settle_tied_question(game, now: float) -> str:
    results = int(_config('RESULTS_DURATION_SEC', 4))
    changed = repository.transition_game(
        game.id,
        _tag(game),
        status=SHOWING_RESULTS,
        stage='question_result',
        last_round_winner_id=None,
        stage_deadline=now + results,
        processing=False,
        processing_since=None,
    )
    if not changed:
        current_app.logger.info(f"[eval-abort] game={game.id} state changed during evaluation")
        return SKIPPED
    current_app.logger.info(f"[question-tied] game={game.id} round={game.current_round} -> question 2")
    schedule_continuation(
        _app(),
        Continuation('open_question_two', game.id, SHOWING_RESULTS, 'question_result', game.current_round, 1),
        results,
        now=now,
    )
    return QUESTION_TIED


def _settle_round(game, winner_id: Optional[int], reason: str, now: float) -> str:
    results = int(_config('RESULTS_DURATION_SEC', 4))
    record = repository.settle_round(
        game.id,
        _tag(game),
        game_values={
            'status': SHOWING_RESULTS,
            'stage': 'round_result',
            'last_round_winner_id': winner_id,
            'stage_deadline': now + results,
            'processing': False,
            'processing_since': None,
        },
        round_fields={
            'round_number': game.current_round,
            'winner_id': winner_id,
            'decided_on_question': game.current_question,
            'decided_by': reason,
            'question_data': game.question_data,
            'completed_at': now,
        },
    )
    if record is None:
        current_app.logger.info(f"[eval-abort] game={game.id} state changed during evaluation")
        return SKIPPED
    current_app.logger.info(
        f"[round-settled] game={game.id} round={game.current_round} winner={winner_id or 'none'} reason={reason}"
    )
    schedule_continuation(
        _app(),
        Continuation('after_round', game.id, SHOWING_RESULTS, 'round_result', game.current_round, game.current_question),
        results,
        now=now,
    )
    return ROUND_SETTLED


# ---- Continuations ----

def run_continuation(continuation: Continuation, now: Optional[float] = None) -> str:
    now = _now(now)
    game = repository.get_game(continuation.game_id)
    if game is None:
        current_app.logger.info(f"[timer-abort] {continuation.describe()} game missing")
        return SKIPPED
    current_app.logger.info(
        f"[timer-fire] {continuation.describe()} actual_status={game.status} actual_stage={game.stage} "
        f"actual_round={game.current_round} actual_question={game.current_question}"
    )
    if not continuation.matches(game):
        current_app.logger.info(f"[timer-abort] game={game.id} kind={continuation.kind} state moved on")
        return SKIPPED
    return _CONTINUATIONS[continuation.kind](game, continuation, now)


def _on_evaluate(game, continuation: Continuation, now: float) -> str:
    outcome = process_game(game.id, now=now, trigger='timer')
    if outcome == BUSY:
        schedule_continuation(_app(), continuation, float(_config('GUARD_RETRY_SEC', 1)), now=now)
    return outcome


def _on_open_question_two(game, continuation: Continuation, now: float) -> str:
    opened = _open_question(game.id, continuation.round, 2, now, expected=_expected(continuation))
    return QUESTION_OPENED if opened else SKIPPED


def _on_after_round(game, continuation: Continuation, now: float) -> str:
    win_score = int(_config('WIN_SCORE', 5))
    players = repository.list_players(game.id)
    champion = next((p for p in players if p.id == game.last_round_winner_id and p.score >= win_score), None)
    if champion is None:
        idle_limit = int(_config('MAX_IDLE_ROUNDS', 3))
        if game.last_round_winner_id is None and _idle_rounds(game.id) >= idle_limit:
            current_app.logger.warning(f"[game-idle] game={game.id} no submissions for {idle_limit} rounds")
            finished = _finish(game.id, _expected(continuation), winner_id=None, stage='abandoned')
            return GAME_FINISHED if finished else SKIPPED
        opened = _open_question(game.id, continuation.round + 1, 1, now, expected=_expected(continuation))
        return QUESTION_OPENED if opened else SKIPPED

    hold = int(_config('FINAL_SCREEN_DURATION_SEC', 3))
    changed = repository.transition_game(
        game.id,
        _expected(continuation),
        stage='final_scoreboard',
        stage_deadline=now + hold,
    )
    if not changed:
        return SKIPPED
    current_app.logger.info(f"[final-scoreboard] game={game.id} champion={champion.id} score={champion.score}")
    schedule_continuation(
        _app(),
        Continuation('finish', game.id, SHOWING_RESULTS, 'final_scoreboard', continuation.round, continuation.question),
        hold,
        now=now,
    )
    return FINAL_SCOREBOARD


def _idle_rounds(game_id: int) -> int:
    """Most recent consecutive rounds in which neither player submitted anything."""
    submitted = {a.round for a in repository.list_answers(game_id) if a.value != NO_ANSWER}
    streak = 0
    for record in reversed(repository.list_rounds(game_id)):
        if record.winner_id is not None or record.round_number in submitted:
            break
        streak += 1
    return streak


def _on_finish(game, continuation: Continuation, now: float) -> str:
    finished = _finish(game.id, _expected(continuation), winner_id=game.last_round_winner_id, stage='finished')
    return GAME_FINISHED if finished else SKIPPED


_CONTINUATIONS = {
    'evaluate': _on_evaluate,
    'open_question_two': _on_open_question_two,
    'after_round': _on_after_round,
    'finish': _on_finish,
}

# Which continuation a results-display stage is waiting on
_PENDING_FOR_STAGE = {
    'question_result': 'open_question_two',
    'round_result': 'after_round',
    'final_scoreboard': 'finish',
}


# ---- Terminal transitions ----

def _finish(game_id: int, expected: dict, winner_id: Optional[int], stage: str) -> bool:
    finished = repository.transition_game(
        game_id,
        expected,
        status=FINISHED,
        stage=stage,
        winner_id=winner_id,
        question_deadline=None,
        stage_deadline=None,
        question_plan=None,
    )
    if finished:
        current_app.logger.info(f"[game-finished] game={game_id} stage={stage} winner={winner_id or 'none'}")
    return finished


def abandon_game(game_id: int, leaving_player_id: int) -> bool:
    """A player left mid-game: the other player (if any) wins immediately.

    Once a score has reached the win threshold the game is already decided,
    so leaving during the winning round's results or the final scoreboard
    only ends it early with the champion as winner.
    """
    players = repository.list_players(game_id)
    win_score = int(_config('WIN_SCORE', 5))
    champion = next((p for p in players if p.score >= win_score), None)
    if champion is not None:
        current_app.logger.info(f"[leave-after-win] game={game_id} player={leaving_player_id} champion={champion.id}")
        return _finish(game_id, {'status': (PLAYING, SHOWING_RESULTS)}, winner_id=champion.id, stage='finished')

    remaining = next((p for p in players if p.id != leaving_player_id), None)
    return _finish(
        game_id,
        {'status': (PLAYING, SHOWING_RESULTS)},
        winner_id=remaining.id if remaining else None,
        stage='abandoned',
    )


def close_lobby(game_id: int) -> bool:
    return _finish(game_id, {'status': WAITING}, winner_id=None, stage='closed')


# ---- Recovery ----

def recover_game(game_id: int, now: Optional[float] = None) -> str:
    """Manual re-trigger for a game whose timer was lost.

    Evaluates a playing game (a no-op unless its question is complete) and
    runs an overdue results-display continuation; anything else is left alone.
    """
    now = _now(now)
    game = require_game(game_id)
    if game.status == PLAYING:
        return process_game(game_id, now=now, trigger='manual')
    if game.status == SHOWING_RESULTS and game.stage_deadline is not None:
        grace = float(_config('RECOVERY_GRACE_SEC', 2))
        kind = _PENDING_FOR_STAGE.get(game.stage)
        if kind and now >= game.stage_deadline + grace:
            current_app.logger.warning(f"[recover] game={game_id} stage={game.stage} overdue since {game.stage_deadline:.3f}")
            continuation = Continuation(kind, game.id, game.status, game.stage, game.current_round, game.current_question)
            return run_continuation(continuation, now=now)
    return SKIPPED


# ---- Read side ----

def get_game_state(game_id: int, now: Optional[float] = None) -> dict:
    game = require_game(game_id)
    return {
        'game': game.to_dict(),
        'players': [p.to_dict() for p in repository.list_players(game_id)],
        'rounds': [r.to_dict() for r in repository.list_rounds(game_id)],
        'server_time': _now(now),
        'durations': {
            'question': int(_config('QUESTION_DURATION_SEC', 15)),
            'results': int(_config('RESULTS_DURATION_SEC', 4)),
            'final': int(_config('FINAL_SCREEN_DURATION_SEC', 3)),
        },
        'win_score': int(_config('WIN_SCORE', 5)),
    }


def get_answers(game_id: int, round_number: Optional[int] = None, question_number: Optional[int] = None):
    """Answer history; the open question's answers stay hidden until it is evaluated."""
    game = require_game(game_id)
    answers = repository.list_answers(game_id, round_number, question_number)
    if game.status == PLAYING:
        active = (game.current_round, game.current_question)
        answers = [a for a in answers if (a.round, a.question) != active]
    return answers
