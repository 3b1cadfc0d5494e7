"""results portal core tables

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:01:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261018_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'districts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('name_telugu', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_districts_id', 'districts', ['id'])
    op.create_index('ix_districts_name', 'districts', ['name'], unique=True)

    op.create_table(
        'mandals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('district_id', sa.Integer(), sa.ForeignKey('districts.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('district_id', 'name', name='uq_mandals_district_name'),
    )
    op.create_index('ix_mandals_id', 'mandals', ['id'])
    op.create_index('ix_mandals_name', 'mandals', ['name'])
    op.create_index('ix_mandals_district_id', 'mandals', ['district_id'])

    op.create_table(
        'schools',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('name_telugu', sa.String(length=200), nullable=False, server_default=''),
        sa.Column('udise_code', sa.String(length=20), nullable=False),
        sa.Column('address', sa.Text(), nullable=False, server_default=''),
        sa.Column('address_telugu', sa.Text(), nullable=False, server_default=''),
        sa.Column('district_id', sa.Integer(), sa.ForeignKey('districts.id'), nullable=False),
        sa.Column('mandal_id', sa.Integer(), sa.ForeignKey('mandals.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_schools_id', 'schools', ['id'])
    op.create_index('ix_schools_name', 'schools', ['name'])
    op.create_index('ix_schools_udise_code', 'schools', ['udise_code'], unique=True)
    op.create_index('ix_schools_district_id', 'schools', ['district_id'])
    op.create_index('ix_schools_mandal_id', 'schools', ['mandal_id'])

    op.create_table(
        'classes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('grade_level', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_classes_id', 'classes', ['id'])
    op.create_index('ix_classes_grade_level', 'classes', ['grade_level'], unique=True)

    op.create_table(
        'subjects',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=80), nullable=False),
        sa.Column('name_telugu', sa.String(length=80), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_subjects_id', 'subjects', ['id'])
    op.create_index('ix_subjects_name', 'subjects', ['name'], unique=True)

    op.create_table(
        'exams',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('name_telugu', sa.String(length=160), nullable=False, server_default=''),
        sa.Column('exam_code', sa.String(length=40), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_exams_id', 'exams', ['id'])
    op.create_index('ix_exams_name', 'exams', ['name'])
    op.create_index('ix_exams_exam_code', 'exams', ['exam_code'], unique=True)
    op.create_index('ix_exams_start_date', 'exams', ['start_date'])

    op.create_table(
        'students',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=160), nullable=False),
        sa.Column('name_telugu', sa.String(length=160), nullable=False, server_default=''),
        sa.Column('gender', sa.String(length=20), nullable=False, server_default=''),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('pen_number', sa.String(length=40), nullable=False),
        sa.Column('parent_phone', sa.String(length=20), nullable=False, server_default=''),
        sa.Column('school_id', sa.Integer(), sa.ForeignKey('schools.id'), nullable=False),
        sa.Column('class_id', sa.Integer(), sa.ForeignKey('classes.id'), nullable=False),
        sa.Column('parent_access_token', sa.String(length=36), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_students_id', 'students', ['id'])
    op.create_index('ix_students_name', 'students', ['name'])
    op.create_index('ix_students_pen_number', 'students', ['pen_number'], unique=True)
    op.create_index('ix_students_school_id', 'students', ['school_id'])
    op.create_index('ix_students_class_id', 'students', ['class_id'])
    op.create_index('ix_students_parent_access_token', 'students', ['parent_access_token'], unique=True)
    op.create_index('ix_students_school_class', 'students', ['school_id', 'class_id'])

    op.create_table(
        'marks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('student_id', sa.Integer(), sa.ForeignKey('students.id'), nullable=False),
        sa.Column('exam_id', sa.Integer(), sa.ForeignKey('exams.id'), nullable=False),
        sa.Column('subject_id', sa.Integer(), sa.ForeignKey('subjects.id'), nullable=False),
        sa.Column('marks_obtained', sa.Float(), nullable=False),
        sa.Column('max_marks', sa.Float(), nullable=False, server_default='100'),
        sa.Column('grade', sa.String(length=4), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('student_id', 'exam_id', 'subject_id', name='uq_marks_student_exam_subject'),
        sa.CheckConstraint('marks_obtained >= 0', name='ck_marks_obtained_non_negative'),
        sa.CheckConstraint('max_marks > 0', name='ck_marks_max_positive'),
    )
    op.create_index('ix_marks_id', 'marks', ['id'])
    op.create_index('ix_marks_student_id', 'marks', ['student_id'])
    op.create_index('ix_marks_exam_id', 'marks', ['exam_id'])
    op.create_index('ix_marks_subject_id', 'marks', ['subject_id'])
    op.create_index('ix_marks_exam_subject', 'marks', ['exam_id', 'subject_id'])

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
    op.create_index('ix_class_statistics_id', 'class_statistics', ['id'])
    op.create_index('ix_class_statistics_exam_id', 'class_statistics', ['exam_id'])
    op.create_index('ix_class_statistics_subject_id', 'class_statistics', ['subject_id'])
    op.create_index('ix_class_statistics_class_id', 'class_statistics', ['class_id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=160), nullable=False, server_default=''),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('district_id', sa.Integer(), sa.ForeignKey('districts.id'), nullable=True),
        sa.Column('mandal_id', sa.Integer(), sa.ForeignKey('mandals.id'), nullable=True),
        sa.Column('school_id', sa.Integer(), sa.ForeignKey('schools.id'), nullable=True),
        sa.Column('created_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_district_id', 'users', ['district_id'])
    op.create_index('ix_users_mandal_id', 'users', ['mandal_id'])
    op.create_index('ix_users_school_id', 'users', ['school_id'])


def downgrade() -> None:
    op.drop_index('ix_users_school_id', table_name='users')
    op.drop_index('ix_users_mandal_id', table_name='users')
    op.drop_index('ix_users_district_id', table_name='users')
    op.drop_index('ix_users_role', table_name='users')
    op.drop_index('ix_users_username', table_name='users')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')

    op.drop_index('ix_class_statistics_class_id', table_name='class_statistics')
    op.drop_index('ix_class_statistics_subject_id', table_name='class_statistics')
    op.drop_index('ix_class_statistics_exam_id', table_name='class_statistics')
    op.drop_index('ix_class_statistics_id', table_name='class_statistics')
    op.drop_table('class_statistics')

    op.drop_index('ix_marks_exam_subject', table_name='marks')
    op.drop_index('ix_marks_subject_id', table_name='marks')
    op.drop_index('ix_marks_exam_id', table_name='marks')
    op.drop_index('ix_marks_student_id', table_name='marks')
    op.drop_index('ix_marks_id', table_name='marks')
    op.drop_table('marks')

    op.drop_index('ix_students_school_class', table_name='students')
    op.drop_index('ix_students_parent_access_token', table_name='students')
    op.drop_index('ix_students_class_id', table_name='students')
    op.drop_index('ix_students_school_id', table_name='students')
    op.drop_index('ix_students_pen_number', table_name='students')
    op.drop_index('ix_students_name', table_name='students')
    op.drop_index('ix_students_id', table_name='students')
    op.drop_table('students')

    op.drop_index('ix_exams_start_date', table_name='exams')
    op.drop_index('ix_exams_exam_code', table_name='exams')
    op.drop_index('ix_exams_name', table_name='exams')
    op.drop_index('ix_exams_id', table_name='exams')
    op.drop_table('exams')

    op.drop_index('ix_subjects_name', table_name='subjects')
    op.drop_index('ix_subjects_id', table_name='subjects')
    op.drop_table('subjects')

    op.drop_index('ix_classes_grade_level', table_name='classes')
    op.drop_index('ix_classes_id', table_name='classes')
    op.drop_table('classes')

    op.drop_index('ix_schools_mandal_id', table_name='schools')
    op.drop_index('ix_schools_district_id', table_name='schools')
    op.drop_index('ix_schools_udise_code', table_name='schools')
    op.drop_index('ix_schools_name', table_name='schools')
    op.drop_index('ix_schools_id', table_name='schools')
    op.drop_table('schools')

    op.drop_index('ix_mandals_district_id', table_name='mandals')
    op.drop_index('ix_mandals_name', table_name='mandals')
    op.drop_index('ix_mandals_id', table_name='mandals')
    op.drop_table('mandals')

    op.drop_index('ix_districts_name', table_name='districts')
    op.drop_index('ix_districts_id', table_name='districts')
    op.drop_table('districts')
