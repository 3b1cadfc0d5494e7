"""key class statistics by school as well as class

Revision ID: 20261018_0002
Revises: 20261018_0001
Create Date: 2026-10-18 00:02:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261018_0002'
down_revision = '20261018_0001'
branch_labels = None
depends_on = None


_INDEXES = ('id', 'exam_id', 'subject_id', 'class_id')


def upgrade() -> None:
    # Existing rows pooled every school's grade level together; rebuild from marks.
    op.drop_table('class_statistics')
    op.create_table(
        'class_statistics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('exam_id', sa.Integer(), sa.ForeignKey('exams.id'), nullable=False),
        sa.Column('subject_id', sa.Integer(), sa.ForeignKey('subjects.id'), nullable=False),
        sa.Column('school_id', sa.Integer(), sa.ForeignKey('schools.id'), nullable=False),
        sa.Column('class_id', sa.Integer(), sa.ForeignKey('classes.id'), nullable=False),
        sa.Column('average_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('highest_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('lowest_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            'exam_id', 'subject_id', 'school_id', 'class_id',
            name='uq_class_statistics_exam_subject_school_class',
        ),
    )
    for column in ('school_id',) + _INDEXES:
        op.create_index(f'ix_class_statistics_{column}', 'class_statistics', [column])

    op.execute(
        """
        INSERT INTO class_statistics
            (exam_id, subject_id, school_id, class_id, average_marks, highest_marks, lowest_marks, updated_at)
        SELECT m.exam_id, m.subject_id, s.school_id, s.class_id,
               ROUND(CAST(AVG(m.marks_obtained) AS NUMERIC), 2),
               MAX(m.marks_obtained), MIN(m.marks_obtained), CURRENT_TIMESTAMP
        FROM marks m
        JOIN students s ON s.id = m.student_id
        GROUP BY m.exam_id, m.subject_id, s.school_id, s.class_id
        """
    )


def downgrade() -> None:
    op.drop_table('class_statistics')
    op.create_table(
        'class_statistics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('exam_id', sa.Integer(), sa.ForeignKey('exams.id'), nullable=False),
        sa.Column('subject_id', sa.Integer(), sa.ForeignKey('subjects.id'), nullable=False),
        sa.Column('class_id', sa.Integer(), sa.ForeignKey('classes.id'), nullable=False),
        sa.Column('average_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('highest_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('lowest_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('exam_id', 'subject_id', 'class_id', name='uq_class_statistics_exam_subject_class'),
    )
    for column in _INDEXES:
        op.create_index(f'ix_class_statistics_{column}', 'class_statistics', [column])

    op.execute(
        """
        INSERT INTO class_statistics
            (exam_id, subject_id, class_id, average_marks, highest_marks, lowest_marks, updated_at)
        SELECT m.exam_id, m.subject_id, s.class_id,
               ROUND(CAST(AVG(m.marks_obtained) AS NUMERIC), 2),
               MAX(m.marks_obtained), MIN(m.marks_obtained), CURRENT_TIMESTAMP
        FROM marks m
        JOIN students s ON s.id = m.student_id
        GROUP BY m.exam_id, m.subject_id, s.class_id
        """
    )
