from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class UserCreateRequest(BaseModel):
    username: str = Field(min_length=3, max_length=80)
    password: str
    full_name: str = ''
    role: Literal['admin', 'deo', 'meo', 'school_admin']
    district_id: int | None = None
    mandal_id: int | None = None
    school_id: int | None = None


class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(extra='forbid')

    username: str | None = Field(default=None, min_length=3, max_length=80)
    password: str | None = None
    full_name: str | None = None


class _EntityPayload(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)


class DistrictCreate(_EntityPayload):
    name: str = Field(min_length=1, max_length=120)
    name_telugu: str = ''


class DistrictUpdate(_EntityPayload):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    name_telugu: str | None = None


class MandalCreate(_EntityPayload):
    name: str = Field(min_length=1, max_length=120)
    district_id: int


class MandalUpdate(_EntityPayload):
    name: str | None = Field(default=None, min_length=1, max_length=120)


class SchoolCreate(_EntityPayload):
    name: str = Field(min_length=1, max_length=200)
    name_telugu: str = ''
    udise_code: str = Field(min_length=1, max_length=20)
    address: str = ''
    address_telugu: str = ''
    district_id: int
    mandal_id: int


class SchoolUpdate(_EntityPayload):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    name_telugu: str | None = None
    udise_code: str | None = Field(default=None, min_length=1, max_length=20)
    address: str | None = None
    address_telugu: str | None = None


class SchoolWithClassesCreate(SchoolCreate):
    grade_levels: list[int] = Field(default_factory=list)


class ClassCreate(_EntityPayload):
    grade_level: int = Field(ge=1, le=12)


class SubjectCreate(_EntityPayload):
    name: str = Field(min_length=1, max_length=80)
    name_telugu: str = ''


class SubjectUpdate(_EntityPayload):
    name: str | None = Field(default=None, min_length=1, max_length=80)
    name_telugu: str | None = None


class ExamCreate(_EntityPayload):
    name: str = Field(min_length=1, max_length=160)
    name_telugu: str = ''
    exam_code: str = Field(min_length=1, max_length=40)
    start_date: date | None = None
    end_date: date | None = None

    @model_validator(mode='after')
    def _check_dates(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError('end_date cannot be before start_date')
        return self


class ExamUpdate(_EntityPayload):
    name: str | None = Field(default=None, min_length=1, max_length=160)
    name_telugu: str | None = None
    exam_code: str | None = Field(default=None, min_length=1, max_length=40)
    start_date: date | None = None
    end_date: date | None = None


class StudentCreate(_EntityPayload):
    name: str = Field(min_length=1, max_length=160)
    name_telugu: str = ''
    gender: Literal['Male', 'Female', 'Other', ''] = ''
    date_of_birth: date | None = None
    pen_number: str = Field(min_length=1, max_length=40)
    parent_phone: str = ''
    school_id: int
    class_id: int
    # The entry form posts its cascading selectors too; they are checked, not stored.
    district_id: int | None = None
    mandal_id: int | None = None


class StudentUpdate(_EntityPayload):
    name: str | None = Field(default=None, min_length=1, max_length=160)
    name_telugu: str | None = None
    gender: Literal['Male', 'Female', 'Other', ''] | None = None
    date_of_birth: date | None = None
    pen_number: str | None = Field(default=None, min_length=1, max_length=40)
    parent_phone: str | None = None
    class_id: int | None = None


class MarkEntry(BaseModel):
    student_id: int
    marks: float = Field(ge=0)
    max_marks: float = Field(default=100, gt=0)
    grade: str | None = Field(default=None, max_length=4)

    @model_validator(mode='after')
    def _check_range(self):
        if self.marks > self.max_marks:
            raise ValueError('marks cannot exceed max_marks')
        return self


class MarksBulkUpdateRequest(BaseModel):
    exam_id: int
    subject_id: int
    marks_data: list[MarkEntry]
