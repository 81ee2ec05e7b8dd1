"""create game, player, answer, round and question tables

Revision ID: a1c7d2e9f3b0
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c7d2e9f3b0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'game',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_code', sa.String(length=4), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('stage', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=True),
        sa.Column('winner_id', sa.Integer(), nullable=True),
        sa.Column('current_round', sa.Integer(), nullable=False),
        sa.Column('current_question', sa.Integer(), nullable=False),
        sa.Column('question_data', sa.Text(), nullable=True),
        sa.Column('question_deadline', sa.Float(), nullable=True),
        sa.Column('stage_deadline', sa.Float(), nullable=True),
        sa.Column('last_round_winner_id', sa.Integer(), nullable=True),
        sa.Column('processing', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('processing_since', sa.Float(), nullable=True),
        sa.Column('question_plan', sa.Text(), nullable=True),
        sa.Column('used_questions', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('game') as batch_op:
        batch_op.create_index(batch_op.f('ix_game_game_code'), ['game_code'], unique=True)

    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('avatar', sa.String(length=64), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('session_token', sa.String(length=64), nullable=False),
        sa.Column('joined_at', sa.Float(), nullable=False),
        sa.Column('last_seen', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['game_id'], ['game.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('player') as batch_op:
        batch_op.create_index(batch_op.f('ix_player_game_id'), ['game_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_player_session_token'), ['session_token'], unique=True)

    op.create_table(
        'answer',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.Integer(), nullable=False),
        sa.Column('round', sa.Integer(), nullable=False),
        sa.Column('question', sa.Integer(), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('option_index', sa.Integer(), nullable=True),
        sa.Column('submitted_at', sa.Float(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.Column('question_text', sa.Text(), nullable=True),
        sa.Column('correct_answer', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['game_id'], ['game.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['player_id'], ['player.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('game_id', 'player_id', 'round', 'question', name='uq_answer_player_question'),
    )
    with op.batch_alter_table('answer') as batch_op:
        batch_op.create_index('ix_answer_game_round_question', ['game_id', 'round', 'question'], unique=False)

    op.create_table(
        'round',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('game_id', sa.Integer(), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('winner_id', sa.Integer(), nullable=True),
        sa.Column('decided_on_question', sa.Integer(), nullable=False),
        sa.Column('decided_by', sa.String(length=32), nullable=True),
        sa.Column('question_data', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['game_id'], ['game.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['winner_id'], ['player.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('game_id', 'round_number', name='uq_round_game_number'),
    )
    with op.batch_alter_table('round') as batch_op:
        batch_op.create_index(batch_op.f('ix_round_game_id'), ['game_id'], unique=False)

    op.create_table(
        'question',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('options', sa.Text(), nullable=True),
        sa.Column('correct_answer', sa.Text(), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('question') as batch_op:
        batch_op.create_index(batch_op.f('ix_question_type'), ['type'], unique=False)


def downgrade():
    with op.batch_alter_table('question') as batch_op:
        batch_op.drop_index(batch_op.f('ix_question_type'))
    op.drop_table('question')

    with op.batch_alter_table('round') as batch_op:
        batch_op.drop_index(batch_op.f('ix_round_game_id'))
    op.drop_table('round')

    with op.batch_alter_table('answer') as batch_op:
        batch_op.drop_index('ix_answer_game_round_question')
    op.drop_table('answer')

    with op.batch_alter_table('player') as batch_op:
        batch_op.drop_index(batch_op.f('ix_player_session_token'))
        batch_op.drop_index(batch_op.f('ix_player_game_id'))
    op.drop_table('player')

    with op.batch_alter_table('game') as batch_op:
        batch_op.drop_index(batch_op.f('ix_game_game_code'))
    op.drop_table('game')
