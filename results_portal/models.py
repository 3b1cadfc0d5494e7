import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import CheckConstraint, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from results_portal.db import Base


class Role(str, Enum):
    ADMIN = 'admin'
    DEO = 'deo'
    MEO = 'meo'
    SCHOOL_ADMIN = 'school_admin'


def new_access_token() -> str:
    return str(uuid.uuid4())


class District(Base):
    __tablename__ = 'districts'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    name_telugu: Mapped[str] = mapped_column(String(120), default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    mandals: Mapped[list['Mandal']] = relationship('Mandal', back_populates='district')
    schools: Mapped[list['School']] = relationship('School', back_populates='district')


class Mandal(Base):
    __tablename__ = 'mandals'
    __table_args__ = (
        UniqueConstraint('district_id', 'name', name='uq_mandals_district_name'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120), index=True)
    district_id: Mapped[int] = mapped_column(ForeignKey('districts.id'), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    district: Mapped['District'] = relationship('District', back_populates='mandals')
    schools: Mapped[list['School']] = relationship('School', back_populates='mandal')


class School(Base):
    __tablename__ = 'schools'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), index=True)
    name_telugu: Mapped[str] = mapped_column(String(200), default='')
    udise_code: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    address: Mapped[str] = mapped_column(Text, default='')
    address_telugu: Mapped[str] = mapped_column(Text, default='')
    district_id: Mapped[int] = mapped_column(ForeignKey('districts.id'), index=True)
    mandal_id: Mapped[int] = mapped_column(ForeignKey('mandals.id'), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    district: Mapped['District'] = relationship('District', back_populates='schools')
    mandal: Mapped['Mandal'] = relationship('Mandal', back_populates='schools')
    students: Mapped[list['Student']] = relationship('Student', back_populates='school')


class SchoolClass(Base):
    """A system-wide grade level; a student's school plus class is their cohort."""

    __tablename__ = 'classes'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    grade_level: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    students: Mapped[list['Student']] = relationship('Student', back_populates='school_class')


class Subject(Base):
    __tablename__ = 'subjects'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    name_telugu: Mapped[str] = mapped_column(String(80), default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Exam(Base):
    __tablename__ = 'exams'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(160), index=True)
    name_telugu: Mapped[str] = mapped_column(String(160), default='')
    exam_code: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Student(Base):
    __tablename__ = 'students'
    __table_args__ = (
        Index('ix_students_school_class', 'school_id', 'class_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(160), index=True)
    name_telugu: Mapped[str] = mapped_column(String(160), default='')
    gender: Mapped[str] = mapped_column(String(20), default='')
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    pen_number: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    parent_phone: Mapped[str] = mapped_column(String(20), default='')
    school_id: Mapped[int] = mapped_column(ForeignKey('schools.id'), index=True)
    class_id: Mapped[int] = mapped_column(ForeignKey('classes.id'), index=True)
    parent_access_token: Mapped[str] = mapped_column(String(36), unique=True, index=True, default=new_access_token)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    school: Mapped['School'] = relationship('School', back_populates='students')
    school_class: Mapped['SchoolClass'] = relationship('SchoolClass', back_populates='students')
    marks: Mapped[list['Mark']] = relationship('Mark', back_populates='student')


class Mark(Base):
    __tablename__ = 'marks'
    __table_args__ = (
        UniqueConstraint('student_id', 'exam_id', 'subject_id', name='uq_marks_student_exam_subject'),
        Index('ix_marks_exam_subject', 'exam_id', 'subject_id'),
        CheckConstraint('marks_obtained >= 0', name='ck_marks_obtained_non_negative'),
        CheckConstraint('max_marks > 0', name='ck_marks_max_positive'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id'), index=True)
    exam_id: Mapped[int] = mapped_column(ForeignKey('exams.id'), index=True)
    subject_id: Mapped[int] = mapped_column(ForeignKey('subjects.id'), index=True)
    marks_obtained: Mapped[float] = mapped_column(Float)
    max_marks: Mapped[float] = mapped_column(Float, default=100)
    grade: Mapped[str | None] = mapped_column(String(4), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student: Mapped['Student'] = relationship('Student', back_populates='marks')
    exam: Mapped['Exam'] = relationship('Exam')
    subject: Mapped['Subject'] = relationship('Subject')


class ClassStatistic(Base):
    """Rollup of Mark rows per (exam, subject, school, class); rebuilt, never edited."""

    __tablename__ = 'class_statistics'
    __table_args__ = (
        UniqueConstraint(
            'exam_id', 'subject_id', 'school_id', 'class_id',
            name='uq_class_statistics_exam_subject_school_class',
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    exam_id: Mapped[int] = mapped_column(ForeignKey('exams.id'), index=True)
    subject_id: Mapped[int] = mapped_column(ForeignKey('subjects.id'), index=True)
    school_id: Mapped[int] = mapped_column(ForeignKey('schools.id'), index=True)
    class_id: Mapped[int] = mapped_column(ForeignKey('classes.id'), index=True)
    average_marks: Mapped[float] = mapped_column(Float, default=0)
    highest_marks: Mapped[float] = mapped_column(Float, default=0)
    lowest_marks: Mapped[float] = mapped_column(Float, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    full_name: Mapped[str] = mapped_column(String(160), default='')
    role: Mapped[str] = mapped_column(String(20), index=True)
    district_id: Mapped[int | None] = mapped_column(ForeignKey('districts.id'), nullable=True, index=True)
    mandal_id: Mapped[int | None] = mapped_column(ForeignKey('mandals.id'), nullable=True, index=True)
    school_id: Mapped[int | None] = mapped_column(ForeignKey('schools.id'), nullable=True, index=True)
    created_by: Mapped[int | None] = mapped_column(ForeignKey('users.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    district: Mapped['District | None'] = relationship('District')
    mandal: Mapped['Mandal | None'] = relationship('Mandal')
    school: Mapped['School | None'] = relationship('School')
