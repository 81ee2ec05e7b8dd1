from app import db
from flask_login import UserMixin
import json
import random
import time

# Recorded for a player who did not answer before the deadline
NO_ANSWER = 'no_answer'


def _now():
    return time.time()


def _load_json(raw, default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


class Player(UserMixin, db.Model):
    __tablename__ = 'player'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    avatar = db.Column(db.String(64), nullable=False)
    score = db.Column(db.Integer, default=0, nullable=False)
    # Opaque per-client credential; unique across all games
    session_token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    joined_at = db.Column(db.Float, default=_now, nullable=False)
    last_seen = db.Column(db.Float, default=_now, nullable=True)
    game = db.relationship('Game', back_populates='players')

    def get_id(self):
        return self.session_token

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'name': self.name,
            'avatar': self.avatar,
            'score': self.score,
            'joined_at': self.joined_at,
            'last_seen': self.last_seen,
        }


def generate_game_code():
    """Generate a unique 4-digit join code."""
    while True:
        code = str(random.randint(1000, 9999))
        if not Game.query.filter_by(game_code=code).first():
            return code


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    game_code = db.Column(db.String(4), unique=True, index=True, nullable=False)
    status = db.Column(db.String(32), default='waiting', nullable=False)  # waiting, playing, showing_results, finished
    stage = db.Column(db.String(32), nullable=True)  # question, question_result, round_result, final_scoreboard, finished, abandoned, closed
    created_at = db.Column(db.Float, default=_now, nullable=False)
    creator_id = db.Column(db.Integer, nullable=True)
    winner_id = db.Column(db.Integer, nullable=True)
    current_round = db.Column(db.Integer, default=1, nullable=False)
    current_question = db.Column(db.Integer, default=1, nullable=False)  # 1 (choice) or 2 (integer)
    question_data = db.Column(db.Text, nullable=True)  # JSON snapshot of the active question
    question_deadline = db.Column(db.Float, nullable=True)
    # When the pending results-display continuation is due
    stage_deadline = db.Column(db.Float, nullable=True)
    last_round_winner_id = db.Column(db.Integer, nullable=True)
    # In-progress marker held by the evaluation guard
    processing = db.Column(db.Boolean, default=False, nullable=False)
    processing_since = db.Column(db.Float, nullable=True)
    question_plan = db.Column(db.Text, nullable=True)  # JSON: {"choice": [ids], "integer": [ids]}
    used_questions = db.Column(db.Text, nullable=True)  # JSON list of question ids
    players = db.relationship('Player', back_populates='game', cascade='all, delete-orphan', passive_deletes=True,
                              order_by='Player.id')

    def __init__(self, **kwargs):
        super(Game, self).__init__(**kwargs)
        if not self.game_code:
            self.game_code = generate_game_code()

    @property
    def question(self):
        return _load_json(self.question_data, None)

    @property
    def plan(self):
        return _load_json(self.question_plan, {})

    @property
    def used(self):
        return _load_json(self.used_questions, [])

    def public_question(self):
        """The active question as clients may see it; the answer stays hidden while it is open."""
        question = self.question
        if question is None:
            return None
        if self.status == 'playing':
            question = {k: v for k, v in question.items() if k not in ('correct_answer', 'correct_index')}
        return question

    def to_dict(self):
        return {
            'id': self.id,
            'game_code': self.game_code,
            'status': self.status,
            'stage': self.stage,
            'creator_id': self.creator_id,
            'winner_id': self.winner_id,
            'current_round': self.current_round,
            'current_question': self.current_question,
            'question': self.public_question(),
            'question_deadline': self.question_deadline,
            'stage_deadline': self.stage_deadline,
            'last_round_winner_id': self.last_round_winner_id,
            'processing': bool(self.processing),
            'created_at': self.created_at,
        }


class Answer(db.Model):
    __tablename__ = 'answer'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id', ondelete='CASCADE'), nullable=False)
    player_id = db.Column(db.Integer, db.ForeignKey('player.id', ondelete='CASCADE'), nullable=False)
    round = db.Column(db.Integer, nullable=False)
    question = db.Column(db.Integer, nullable=False)
    # Canonical text: the option text for choice questions, the integer for estimates, or NO_ANSWER
    value = db.Column(db.Text, nullable=False)
    option_index = db.Column(db.Integer, nullable=True)
    submitted_at = db.Column(db.Float, default=_now, nullable=False)
    is_correct = db.Column(db.Boolean, nullable=True)
    question_text = db.Column(db.Text, nullable=True)
    correct_answer = db.Column(db.Text, nullable=True)

    __table_args__ = (
        db.UniqueConstraint('game_id', 'player_id', 'round', 'question', name='uq_answer_player_question'),
        db.Index('ix_answer_game_round_question', 'game_id', 'round', 'question'),
    )

    @property
    def is_no_answer(self):
        return self.value == NO_ANSWER

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'player_id': self.player_id,
            'round': self.round,
            'question': self.question,
            'value': self.value,
            'option_index': self.option_index,
            'submitted_at': self.submitted_at,
            'is_correct': self.is_correct,
            'question_text': self.question_text,
            'correct_answer': self.correct_answer,
        }


class Round(db.Model):
    __tablename__ = 'round'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id', ondelete='CASCADE'), nullable=False, index=True)
    round_number = db.Column(db.Integer, nullable=False)
    winner_id = db.Column(db.Integer, db.ForeignKey('player.id'), nullable=True)
    decided_on_question = db.Column(db.Integer, nullable=False)
    decided_by = db.Column(db.String(32), nullable=True)
    question_data = db.Column(db.Text, nullable=True)
    completed_at = db.Column(db.Float, default=_now, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('game_id', 'round_number', name='uq_round_game_number'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'round_number': self.round_number,
            'winner_id': self.winner_id,
            'decided_on_question': self.decided_on_question,
            'decided_by': self.decided_by,
            'question': _load_json(self.question_data, None),
            'completed_at': self.completed_at,
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    text = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)  # choice, integer
    options = db.Column(db.Text, nullable=True)  # JSON list for choice questions
    correct_answer = db.Column(db.Text, nullable=False)  # option index for choice, integer for estimates
    category = db.Column(db.String(64), nullable=False)

    def snapshot(self):
        """Copy held by a game while the question is active."""
        data = {
            'id': self.id,
            'type': self.type,
            'text': self.text,
            'category': self.category,
        }
        if self.type == 'choice':
            options = _load_json(self.options, [])
            correct_index = int(self.correct_answer)
            data['options'] = options
            data['correct_index'] = correct_index
            data['correct_answer'] = options[correct_index]
        else:
            data['correct_answer'] = int(self.correct_answer)
        return data
