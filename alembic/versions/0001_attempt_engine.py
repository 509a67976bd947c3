"""Attempt engine tables

Revision ID: 0001_attempt_engine
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_attempt_engine'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

QUESTION_TYPES = ('mcq', 'msq', 'fillblank', 'comprehension', 'broad')
TEST_STATUSES = ('draft', 'deployed', 'closed')
ATTEMPT_STATUSES = ('not_started', 'in_progress', 'completed')
TERMINATION_REASONS = ('submitted', 'timeout', 'integrity_violation', 'max_resumes_exceeded')


def _create_enum(name: str, values: tuple[str, ...]) -> None:
    labels = ", ".join(f"'{v}'" for v in values)
    op.execute(f"""
        DO $$ BEGIN
            CREATE TYPE {name} AS ENUM ({labels});
        EXCEPTION WHEN duplicate_object THEN null;
        END $$;
    """)


def upgrade() -> None:
    # ── Create enums ──────────────────────────────────────────────────
    _create_enum('question_type_enum', QUESTION_TYPES)
    _create_enum('test_status_enum', TEST_STATUSES)
    _create_enum('attempt_status_enum', ATTEMPT_STATUSES)
    _create_enum('termination_reason_enum', TERMINATION_REASONS)

    # ── questions table ───────────────────────────────────────────────
    op.create_table(
        'questions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('question_type', postgresql.ENUM(*QUESTION_TYPES, name='question_type_enum', create_type=False), nullable=False, server_default='mcq'),
        sa.Column('options', sa.JSON(), nullable=True),
        sa.Column('correct_answer', sa.JSON(), nullable=True),
        sa.Column('marks', sa.Float(), nullable=False, server_default='1'),
        sa.Column('negative_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('case_sensitive', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_number_range', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('number_range_min', sa.Float(), nullable=True),
        sa.Column('number_range_max', sa.Float(), nullable=True),
        sa.Column('sub_questions', sa.JSON(), nullable=True),
        sa.Column('topic', sa.String(200), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # ── online_tests table ────────────────────────────────────────────
    op.create_table(
        'online_tests',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', postgresql.ENUM(*TEST_STATUSES, name='test_status_enum', create_type=False), nullable=False, server_default='draft'),
        sa.Column('question_ids', sa.JSON(), nullable=False),
        sa.Column('total_marks', sa.Float(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('config', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.Index('ix_online_tests_status', 'status'),
    )

    # ── attempts table ────────────────────────────────────────────────
    op.create_table(
        'attempts',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('test_id', sa.UUID(), nullable=False),
        sa.Column('student_id', sa.String(255), nullable=False),
        sa.Column('student_name', sa.String(255), nullable=True),
        sa.Column('status', postgresql.ENUM(*ATTEMPT_STATUSES, name='attempt_status_enum', create_type=False), nullable=False, server_default='not_started'),
        sa.Column('question_snapshot', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('time_spent_ms', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('warning_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('resume_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('termination_reason', postgresql.ENUM(*TERMINATION_REASONS, name='termination_reason_enum', create_type=False), nullable=True),
        sa.Column('total_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('percentage', sa.Float(), nullable=False, server_default='0'),
        sa.Column('grace_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('grace_reason', sa.Text(), nullable=False, server_default=''),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['test_id'], ['online_tests.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('test_id', 'student_id', name='uq_attempt_test_student'),
        sa.Index('ix_attempts_test_status', 'test_id', 'status'),
    )

    # ── attempt_answers table ─────────────────────────────────────────
    op.create_table(
        'attempt_answers',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('attempt_id', sa.UUID(), nullable=False),
        sa.Column('question_id', sa.String(64), nullable=False),
        sa.Column('submitted_value', sa.JSON(), nullable=True),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.Column('marks_awarded', sa.Float(), nullable=True),
        sa.Column('adjustment_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('answered_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['attempt_id'], ['attempts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('attempt_id', 'question_id', name='uq_answer_attempt_question'),
    )

    # ── question_sets table ───────────────────────────────────────────
    op.create_table(
        'question_sets',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('source_id', sa.String(64), nullable=False),
        sa.Column('student_id', sa.String(255), nullable=False),
        sa.Column('question_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source_id', 'student_id', name='uq_question_set_source_student'),
    )


def downgrade() -> None:
    op.drop_table('question_sets')
    op.drop_table('attempt_answers')
    op.drop_table('attempts')
    op.drop_table('online_tests')
    op.drop_table('questions')

    op.execute("DROP TYPE IF EXISTS termination_reason_enum")
    op.execute("DROP TYPE IF EXISTS attempt_status_enum")
    op.execute("DROP TYPE IF EXISTS test_status_enum")
    op.execute("DROP TYPE IF EXISTS question_type_enum")
