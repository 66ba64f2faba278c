"""create_lesson_agenda_tables

Revision ID: 3f8c2e7a91b4
Revises:
Create Date: 2025-02-01 10:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f8c2e7a91b4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'lesson_types',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('frequency', sa.String(), nullable=False, server_default='weekly'),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('is_group_lesson', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('color', sa.String(), nullable=True),
        sa.Column('icon', sa.String(), nullable=True),
    )
    op.create_index('ix_lesson_types_id', 'lesson_types', ['id'])

    op.create_table(
        'lesson_agreements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('teacher_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.Integer(), nullable=True),
        sa.Column('lesson_type_id', sa.Integer(), sa.ForeignKey('lesson_types.id'), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notes', sa.String(), nullable=True),
    )
    op.create_index('ix_lesson_agreements_id', 'lesson_agreements', ['id'])
    op.create_index('ix_lesson_agreements_teacher_id', 'lesson_agreements', ['teacher_id'])
    op.create_index('ix_lesson_agreements_student_id', 'lesson_agreements', ['student_id'])
    op.create_index('ix_lesson_agreements_lesson_type_id', 'lesson_agreements', ['lesson_type_id'])

    op.create_table(
        'lesson_appointment_deviations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('agreement_id', sa.Integer(), sa.ForeignKey('lesson_agreements.id', ondelete='CASCADE'), nullable=False),
        sa.Column('original_date', sa.Date(), nullable=False),
        sa.Column('original_start_time', sa.Time(), nullable=False),
        sa.Column('actual_date', sa.Date(), nullable=False),
        sa.Column('actual_start_time', sa.Time(), nullable=False),
        sa.Column('is_cancelled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recurring', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recurring_end_date', sa.Date(), nullable=True),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('last_updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        # Concurrent writers on one occurrence are serialized by this key
        sa.UniqueConstraint('agreement_id', 'original_date', name='uq_deviation_agreement_original_date'),
    )
    op.create_index('ix_lesson_appointment_deviations_id', 'lesson_appointment_deviations', ['id'])
    op.create_index('ix_lesson_appointment_deviations_agreement_id', 'lesson_appointment_deviations', ['agreement_id'])


def downgrade() -> None:
    op.drop_index('ix_lesson_appointment_deviations_agreement_id', 'lesson_appointment_deviations')
    op.drop_index('ix_lesson_appointment_deviations_id', 'lesson_appointment_deviations')
    op.drop_table('lesson_appointment_deviations')
    op.drop_index('ix_lesson_agreements_lesson_type_id', 'lesson_agreements')
    op.drop_index('ix_lesson_agreements_student_id', 'lesson_agreements')
    op.drop_index('ix_lesson_agreements_teacher_id', 'lesson_agreements')
    op.drop_index('ix_lesson_agreements_id', 'lesson_agreements')
    op.drop_table('lesson_agreements')
    op.drop_index('ix_lesson_types_id', 'lesson_types')
    op.drop_table('lesson_types')
