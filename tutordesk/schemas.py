from datetime import date
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# 24-hour HH:MM, single-digit hours allowed.
START_TIME_PATTERN = r'^([01]?\d|2[0-3]):[0-5]\d$'


class CamelModel(BaseModel):
    """Request bodies arrive with camelCase keys; snake_case names are accepted too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(CamelModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)
    role: Literal['tutor', 'student'] = 'tutor'
    first_name: str = ''
    last_name: str = ''
    phone_number: str | None = None


class LoginRequest(CamelModel):
    email: str = ''
    password: str = ''


class StudentCreateRequest(CamelModel):
    tutor_id: int | None = None
    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    age: int | None = Field(default=None, ge=0, le=150)
    email: str | None = None
    grade: str | None = None
    contact: str | None = None
    phone_number: str | None = None
    profile_photo: str | None = None
    hourly_rate: float | None = Field(default=None, ge=0)


class StudentUpdateRequest(CamelModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=120)
    last_name: str | None = Field(default=None, min_length=1, max_length=120)
    age: int | None = Field(default=None, ge=0, le=150)
    email: str | None = None
    grade: str | None = None
    contact: str | None = None
    phone_number: str | None = None
    profile_photo: str | None = None
    hourly_rate: float | None = Field(default=None, ge=0)
    onboarding_completed: bool | None = None


class StudentForUserRequest(CamelModel):
    user_id: int
    tutor_id: int | None = None


class CourseCreateRequest(CamelModel):
    tutor_id: int | None = None
    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    zoom_link: str | None = None
    student_ids: list[int] = Field(default_factory=list)
    # Optional first lesson, created once per listed student.
    lesson_date: date | None = Field(default=None, alias='date')
    start_time: str | None = Field(default=None, pattern=START_TIME_PATTERN)
    duration: str | None = None
    subject: str | None = None


class CourseUpdateRequest(CamelModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    zoom_link: str | None = None


class LessonCreateRequest(CamelModel):
    tutor_id: int | None = None
    course_id: int | None = None
    title: str = ''
    description: str | None = None
    lesson_date: date = Field(alias='date')
    start_time: str = Field(default='00:00', pattern=START_TIME_PATTERN)
    duration: str = Field(min_length=1, max_length=20)
    zoom_link: str | None = None
    subject: str | None = None
    student_id: int | None = None
    student_ids: list[int] = Field(default_factory=list)


class LessonUpdateRequest(CamelModel):
    course_id: int | None = None
    title: str | None = None
    description: str | None = None
    lesson_date: date | None = Field(default=None, alias='date')
    start_time: str | None = Field(default=None, pattern=START_TIME_PATTERN)
    duration: str | None = Field(default=None, min_length=1, max_length=20)
    zoom_link: str | None = None
    subject: str | None = None
    student_id: int | None = None
    student_ids: list[int] | None = None


class LessonCommentRequest(CamelModel):
    tutor_comment: str = Field(min_length=1)


class LessonCommentByIdRequest(CamelModel):
    lesson_id: int
    tutor_comment: str = Field(min_length=1)


class LessonCommentDeleteRequest(CamelModel):
    lesson_id: int


class UserUpdateRequest(CamelModel):
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    profile_photo: str | None = None
    bio: str | None = None
    onboarding_completed: bool | None = None
