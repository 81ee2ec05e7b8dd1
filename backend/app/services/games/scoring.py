"""Round evaluation for the duel.

Pure functions: they only look at the question snapshot, the answers given
for it and the two player ids. Answers are any objects exposing
``player_id``, ``value``, ``submitted_at`` and optionally ``option_index``.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from app.models import NO_ANSWER
from .errors import ValidationError


@dataclass(frozen=True)
class ChoiceOutcome:
    correct_count: int
    winner_id: Optional[int]
    reason: str

    @property
    def decided(self) -> bool:
        return self.correct_count == 1


@dataclass(frozen=True)
class IntegerOutcome:
    winner_id: Optional[int]
    reason: str
    decided: bool = True


def parse_integer(value) -> Optional[int]:
    """The integer in a stored answer, or None for sentinels and junk."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text or text == NO_ANSWER:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _match_option(options: Sequence[str], text: str) -> Optional[int]:
    folded = text.strip().casefold()
    for index, option in enumerate(options):
        if str(option).strip().casefold() == folded:
            return index
    return None


def choice_index(question: dict, answer) -> Optional[int]:
    """Which option an answer selected, whether it was stored by index or by text."""
    index = getattr(answer, 'option_index', None)
    if index is not None:
        return index
    value = getattr(answer, 'value', None)
    if value is None or value == NO_ANSWER:
        return None
    options = question.get('options') or []
    matched = _match_option(options, str(value))
    if matched is not None:
        return matched
    parsed = parse_integer(value)
    if parsed is not None and 0 <= parsed < len(options):
        return parsed
    return None


def is_choice_correct(question: dict, answer) -> bool:
    return choice_index(question, answer) == question.get('correct_index')


def _one_per_player(answers: Iterable, player_ids: Sequence[int]) -> List:
    seen = {}
    for answer in answers:
        if answer.player_id in player_ids and answer.player_id not in seen:
            seen[answer.player_id] = answer
    return [seen[pid] for pid in player_ids if pid in seen]


def evaluate_choice(question: dict, answers: Iterable, player_ids: Sequence[int]) -> ChoiceOutcome:
    """Question 1: a lone correct answer wins the round; otherwise the round goes on to question 2."""
    correct = [a.player_id for a in _one_per_player(answers, player_ids) if is_choice_correct(question, a)]
    if len(correct) == 1:
        return ChoiceOutcome(correct_count=1, winner_id=correct[0], reason='single_correct')
    reason = 'both_correct' if len(correct) == 2 else 'none_correct'
    return ChoiceOutcome(correct_count=len(correct), winner_id=None, reason=reason)


def _earliest(candidates: List[Tuple[object, int]]):
    # Equal timestamps fall back to the lower player id so the result is always defined
    return min(candidates, key=lambda item: (item[0].submitted_at, item[0].player_id))


def evaluate_integer(question: dict, answers: Iterable, player_ids: Sequence[int]) -> IntegerOutcome:
    """Question 2: the estimate closest to the correct integer wins; ties go to the faster answer.

    A lone usable answer wins by default; with no usable answers the round has no winner.
    """
    correct = int(question['correct_answer'])
    valid = []
    for answer in _one_per_player(answers, player_ids):
        parsed = parse_integer(answer.value)
        if parsed is not None:
            valid.append((answer, parsed))

    if not valid:
        return IntegerOutcome(winner_id=None, reason='no_answers')
    if len(valid) == 1:
        return IntegerOutcome(winner_id=valid[0][0].player_id, reason='only_answer')

    exact = [item for item in valid if item[1] == correct]
    if len(exact) == 1:
        return IntegerOutcome(winner_id=exact[0][0].player_id, reason='exact_match')
    if len(exact) == 2:
        return IntegerOutcome(winner_id=_earliest(exact)[0].player_id, reason='exact_tie_faster')

    distances = sorted(abs(parsed - correct) for _, parsed in valid)
    closest = [item for item in valid if abs(item[1] - correct) == distances[0]]
    if len(closest) == 1:
        return IntegerOutcome(winner_id=closest[0][0].player_id, reason='closest')
    return IntegerOutcome(winner_id=_earliest(closest)[0].player_id, reason='distance_tie_faster')


def normalize_submission(question: dict, raw) -> Tuple[str, Optional[int]]:
    """Validate a raw submission against the active question.

    Returns the canonical stored value and, for choice questions, the option index.
    """
    if raw is None or isinstance(raw, bool) or (isinstance(raw, str) and not raw.strip()):
        raise ValidationError('Answer is required')

    if question.get('type') == 'choice':
        options = question.get('options') or []
        index = None
        if isinstance(raw, int):
            index = raw
        elif isinstance(raw, str):
            index = _match_option(options, raw)
            if index is None:
                index = parse_integer(raw)
        if index is None or not 0 <= index < len(options):
            raise ValidationError('Answer must be one of the options', options=len(options))
        return options[index], index

    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    value = parse_integer(raw) if isinstance(raw, (int, str)) else None
    if value is None:
        raise ValidationError('Answer must be a whole number')
    return str(value), None


def is_submission_correct(question: dict, value: str, option_index: Optional[int]) -> bool:
    if question.get('type') == 'choice':
        return option_index is not None and option_index == question.get('correct_index')
    return parse_integer(value) == int(question['correct_answer'])
