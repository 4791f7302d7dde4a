"""create mock test sessions, answers and question bank

Revision ID: a7c1e0d2f3b4
Revises:
Create Date: 2026-10-12 10:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a7c1e0d2f3b4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'mock_test_questions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('question_id', sa.String(length=64), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('question_type', sa.String(length=30), server_default='multiple_choice', nullable=False),
        sa.Column('option_a', sa.Text(), nullable=True),
        sa.Column('option_b', sa.Text(), nullable=True),
        sa.Column('option_c', sa.Text(), nullable=True),
        sa.Column('option_d', sa.Text(), nullable=True),
        sa.Column('correct_answer', sa.String(length=255), nullable=False),
        sa.Column('topic', sa.String(length=100), nullable=False),
        sa.Column('subtopic', sa.String(length=100), nullable=True),
        sa.Column('difficulty', sa.String(length=20), server_default='Medium', nullable=False),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('marks', sa.Integer(), server_default='1', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_mock_test_questions_question_id', 'mock_test_questions', ['question_id'], unique=True)
    op.create_index('ix_mock_test_questions_topic', 'mock_test_questions', ['topic'])

    op.create_table(
        'mock_test_sessions',
        sa.Column('session_id', sa.String(length=36), nullable=False),
        sa.Column('student_id', sa.BigInteger(), nullable=False),
        sa.Column('session_type', sa.String(length=20), server_default='mock_test', nullable=False),
        sa.Column('status', sa.String(length=20), server_default='in_progress', nullable=False),
        sa.Column('total_questions', sa.Integer(), nullable=False),
        sa.Column('time_limit_seconds', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=True),
        sa.Column('questions_attempted', sa.Integer(), nullable=True),
        sa.Column('questions_correct', sa.Integer(), nullable=True),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('session_data', sa.JSON(), nullable=True),
        sa.Column('save_seq', sa.Integer(), server_default='0', nullable=False),
        sa.Column('fence_token', sa.Integer(), server_default='1', nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('session_id'),
    )
    op.create_index('ix_mock_test_sessions_student_id', 'mock_test_sessions', ['student_id'])
    op.create_index('ix_mock_test_sessions_status', 'mock_test_sessions', ['status'])
    op.create_index('idx_mock_sessions_student_status', 'mock_test_sessions', ['student_id', 'status'])

    op.create_table(
        'mock_test_answers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('session_id', sa.String(length=36), nullable=False),
        sa.Column('question_id', sa.String(length=64), nullable=False),
        sa.Column('question_order', sa.Integer(), nullable=False),
        sa.Column('question_data', sa.JSON(), nullable=False),
        sa.Column('student_answer', sa.String(length=255), nullable=True),
        sa.Column('answered_at', sa.DateTime(), nullable=True),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['mock_test_sessions.session_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'question_order', name='uq_mock_test_answers_session_order'),
    )
    op.create_index('ix_mock_test_answers_session_id', 'mock_test_answers', ['session_id'])


def downgrade() -> None:
    op.drop_index('ix_mock_test_answers_session_id', table_name='mock_test_answers')
    op.drop_table('mock_test_answers')
    op.drop_index('idx_mock_sessions_student_status', table_name='mock_test_sessions')
    op.drop_index('ix_mock_test_sessions_status', table_name='mock_test_sessions')
    op.drop_index('ix_mock_test_sessions_student_id', table_name='mock_test_sessions')
    op.drop_table('mock_test_sessions')
    op.drop_index('ix_mock_test_questions_topic', table_name='mock_test_questions')
    op.drop_index('ix_mock_test_questions_question_id', table_name='mock_test_questions')
    op.drop_table('mock_test_questions')
