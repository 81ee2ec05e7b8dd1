"""Question supply: the question bank, per-game batches and the built-in pool."""
import json
import random
from typing import Dict, Iterable, List, Optional, Tuple

from flask import current_app

from app import db
from app.models import Question
from .repository import with_retry

CHOICE = 'choice'
INTEGER = 'integer'
QUESTION_TYPES = (CHOICE, INTEGER)

# Question 1 of a round is multiple choice, question 2 is an integer estimate
TYPE_FOR_SLOT = {1: CHOICE, 2: INTEGER}

BUILTIN_POOL = {
    CHOICE: [
        ("Which planet is known as the 'Red Planet'?", ["Earth", "Mars", "Jupiter", "Venus"], 1, "Science"),
        ("What is the capital of France?", ["London", "Berlin", "Paris", "Madrid"], 2, "Geography"),
        ("Who painted the Mona Lisa?", ["Vincent van Gogh", "Leonardo da Vinci", "Pablo Picasso", "Michelangelo"], 1, "Art"),
        ("What is the largest ocean on Earth?", ["Atlantic", "Indian", "Arctic", "Pacific"], 3, "Geography"),
        ("Which element has the chemical symbol 'O'?", ["Gold", "Oxygen", "Silver", "Iron"], 1, "Science"),
        ("What is the smallest country in the world?", ["Monaco", "Vatican City", "Nauru", "San Marino"], 1, "Geography"),
        ("Who wrote 'Romeo and Juliet'?", ["Charles Dickens", "William Shakespeare", "Jane Austen", "Mark Twain"], 1, "Literature"),
        ("What is the hardest natural substance on Earth?", ["Gold", "Iron", "Diamond", "Quartz"], 2, "Science"),
        ("Which country invented pizza?", ["France", "Italy", "Greece", "Spain"], 1, "Food"),
        ("What is the largest mammal in the world?", ["Elephant", "Blue Whale", "Giraffe", "Hippopotamus"], 1, "Animals"),
    ],
    INTEGER: [
        ("How many countries are there in Europe?", 44, "Geography"),
        ("In what year did World War II end?", 1945, "History"),
        ("How many bones are in the adult human body?", 206, "Science"),
        ("What is the speed of light in km/s (rounded to nearest thousand)?", 300000, "Science"),
        ("How many players are on a basketball team on the court at one time?", 5, "Sports"),
        ("How many strings does a standard guitar have?", 6, "Music"),
        ("How many sides does a hexagon have?", 6, "Math"),
        ("In what year was the iPhone first released?", 2007, "Technology"),
        ("How many minutes are in a full day?", 1440, "Math"),
        ("How many continents are there?", 7, "Geography"),
    ],
}


@with_retry
def seed_questions() -> int:
    """Load the built-in pool into an empty question bank. Returns the number of rows added."""
    if Question.query.first() is not None:
        return 0
    added = 0
    for text, options, correct, category in BUILTIN_POOL[CHOICE]:
        db.session.add(Question(text=text, type=CHOICE, options=json.dumps(options),
                                correct_answer=str(correct), category=category))
        added += 1
    for text, correct, category in BUILTIN_POOL[INTEGER]:
        db.session.add(Question(text=text, type=INTEGER, correct_answer=str(correct), category=category))
        added += 1
    db.session.commit()
    current_app.logger.info(f"[questions-seeded] count={added}")
    return added


@with_retry
def _ids_of_type(qtype: str) -> List[int]:
    return [row.id for row in Question.query.filter_by(type=qtype).with_entities(Question.id).all()]


def _available_ids(qtype: str) -> List[int]:
    ids = _ids_of_type(qtype)
    if not ids:
        seed_questions()
        ids = _ids_of_type(qtype)
    return ids


def request_batch(qtype: str, count: int, exclude: Iterable[int] = ()) -> List[Question]:
    """A shuffled batch of distinct questions of one type, skipping ``exclude``.

    Returns fewer than ``count`` when the bank runs short.
    """
    excluded = set(exclude)
    ids = [qid for qid in _available_ids(qtype) if qid not in excluded]
    chosen = random.sample(ids, min(count, len(ids)))
    return [_load(qid) for qid in chosen]


def request_one(qtype: str, exclude: Iterable[int] = ()) -> Optional[Question]:
    """One random question, repeating only when every question of the type was used."""
    ids = _available_ids(qtype)
    if not ids:
        return None
    excluded = set(exclude)
    fresh = [qid for qid in ids if qid not in excluded]
    return _load(random.choice(fresh or ids))


@with_retry
def _load(question_id: int) -> Optional[Question]:
    return db.session.get(Question, question_id)


def build_plan(batch_size: int) -> Dict[str, List[int]]:
    return {qtype: [q.id for q in request_batch(qtype, batch_size)] for qtype in QUESTION_TYPES}


def take_next(plan: Dict[str, List[int]], used: List[int], qtype: str) -> Tuple[dict, Dict[str, List[int]], List[int]]:
    """Pop the next question of ``qtype`` from a game's plan.

    Falls back to a fresh draw (excluding used questions) once the plan is
    exhausted. Returns the question snapshot with the updated plan and used list.
    """
    plan = {key: list(value) for key, value in (plan or {}).items()}
    used = list(used or [])
    queue = plan.setdefault(qtype, [])
    question = None
    while queue and question is None:
        question = _load(queue.pop(0))
    if question is None:
        question = request_one(qtype, exclude=used)
    if question is None:
        raise LookupError(f"No questions of type {qtype!r} available")
    used.append(question.id)
    return question.snapshot(), plan, used
