import pytest

from app.models import Question
from app.services.games import questions


def test_seeding_only_fills_an_empty_bank(flask_app):
    expected = len(questions.BUILTIN_POOL['choice']) + len(questions.BUILTIN_POOL['integer'])
    assert questions.seed_questions() == expected
    assert questions.seed_questions() == 0
    assert Question.query.count() == expected


def test_empty_bank_is_seeded_on_demand(flask_app):
    batch = questions.request_batch('integer', 3)
    assert len(batch) == 3
    assert all(q.type == 'integer' for q in batch)


def test_snapshots_carry_the_answer(flask_app, question_bank):
    question_bank(choice=[('Pick one', ['a', 'b', 'c'], 2)], integer=[('How many?', 42)])
    choice = Question.query.filter_by(type='choice').one().snapshot()
    assert choice['options'] == ['a', 'b', 'c']
    assert (choice['correct_index'], choice['correct_answer']) == (2, 'c')
    integer = Question.query.filter_by(type='integer').one().snapshot()
    assert integer['correct_answer'] == 42
    assert 'options' not in integer


def test_plan_holds_distinct_questions_per_type(flask_app):
    plan = questions.build_plan(9)
    assert set(plan) == {'choice', 'integer'}
    for qtype, ids in plan.items():
        assert len(ids) == len(set(ids)) == 9
        assert {q.type for q in Question.query.filter(Question.id.in_(ids))} == {qtype}


def test_take_next_pops_from_the_plan(flask_app):
    plan = questions.build_plan(2)
    first_id = plan['choice'][0]
    snapshot, new_plan, used = questions.take_next(plan, [], 'choice')
    assert snapshot['id'] == first_id
    assert new_plan['choice'] == plan['choice'][1:]
    assert used == [first_id]
    # The caller's plan is left untouched
    assert plan['choice'][0] == first_id


def test_exhausted_plan_draws_an_unused_question(flask_app):
    questions.seed_questions()
    ids = [row.id for row in Question.query.filter_by(type='integer').all()]
    used = ids[:-1]
    snapshot, _, used_after = questions.take_next({'integer': []}, used, 'integer')
    assert snapshot['id'] == ids[-1]
    assert used_after == used + [ids[-1]]


def test_repeats_only_when_the_bank_is_exhausted(flask_app, question_bank):
    question_bank(choice=[('Only one', ['x', 'y'], 0)], integer=[('Only number', 1)])
    only = Question.query.filter_by(type='choice').one().id
    snapshot, _, used = questions.take_next({}, [only], 'choice')
    assert snapshot['id'] == only
    assert used == [only, only]


def test_missing_question_type_raises(flask_app, question_bank):
    question_bank(choice=[('Only one', ['x', 'y'], 0)])
    with pytest.raises(LookupError):
        questions.take_next({}, [], 'integer')
