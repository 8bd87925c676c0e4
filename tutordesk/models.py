from datetime import date, datetime
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tutordesk.db import Base


class Role(str, Enum):
    TUTOR = 'tutor'
    STUDENT = 'student'


class User(Base):
    __tablename__ = 'users'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), default='')
    role: Mapped[str] = mapped_column(String(20), default=Role.TUTOR.value, index=True)
    first_name: Mapped[str] = mapped_column(String(120), default='')
    last_name: Mapped[str] = mapped_column(String(120), default='')
    phone_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    profile_photo: Mapped[str | None] = mapped_column(String(500), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    students: Mapped[list['Student']] = relationship(
        'Student', back_populates='tutor', foreign_keys='Student.tutor_id'
    )
    courses: Mapped[list['Course']] = relationship('Course', back_populates='tutor')


class Student(Base):
    __tablename__ = 'students'
    __table_args__ = (
        Index('ix_students_tutor_created', 'tutor_id', 'created_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    tutor_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'), nullable=True, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey('users.id'), nullable=True, unique=True)
    first_name: Mapped[str] = mapped_column(String(120))
    last_name: Mapped[str] = mapped_column(String(120))
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    grade: Mapped[str | None] = mapped_column(String(60), nullable=True)
    contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    profile_photo: Mapped[str | None] = mapped_column(String(500), nullable=True)
    hourly_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    last_activity: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    tutor: Mapped['User | None'] = relationship('User', back_populates='students', foreign_keys=[tutor_id])
    user: Mapped['User | None'] = relationship('User', foreign_keys=[user_id])
    lesson_links: Mapped[list['LessonStudent']] = relationship(
        'LessonStudent', back_populates='student', cascade='all, delete-orphan'
    )
    course_links: Mapped[list['CourseStudent']] = relationship(
        'CourseStudent', back_populates='student', cascade='all, delete-orphan'
    )


class Course(Base):
    __tablename__ = 'courses'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    tutor_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    zoom_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    tutor: Mapped['User'] = relationship('User', back_populates='courses')
    lessons: Mapped[list['Lesson']] = relationship('Lesson', back_populates='course')
    student_links: Mapped[list['CourseStudent']] = relationship(
        'CourseStudent', back_populates='course', cascade='all, delete-orphan'
    )
    students: Mapped[list['Student']] = relationship(
        'Student', secondary='course_students', viewonly=True, order_by='Student.id'
    )


class Lesson(Base):
    __tablename__ = 'lessons'
    __table_args__ = (
        Index('ix_lessons_tutor_date', 'tutor_id', 'date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    tutor_id: Mapped[int] = mapped_column(ForeignKey('users.id'), index=True)
    course_id: Mapped[int | None] = mapped_column(ForeignKey('courses.id', ondelete='SET NULL'), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(200), default='')
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    lesson_date: Mapped[date] = mapped_column('date', Date, index=True)
    start_time: Mapped[str] = mapped_column(String(5), default='00:00')
    duration: Mapped[str] = mapped_column(String(20), default='')
    zoom_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    subject: Mapped[str | None] = mapped_column(String(120), nullable=True)
    tutor_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    course: Mapped['Course | None'] = relationship('Course', back_populates='lessons')
    student_links: Mapped[list['LessonStudent']] = relationship(
        'LessonStudent', back_populates='lesson', cascade='all, delete-orphan', order_by='LessonStudent.id'
    )

    @property
    def students(self) -> list['Student']:
        return [link.student for link in self.student_links]


class LessonStudent(Base):
    __tablename__ = 'lesson_students'
    __table_args__ = (
        UniqueConstraint('lesson_id', 'student_id', name='uq_lesson_students_lesson_student'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lesson_id: Mapped[int] = mapped_column(ForeignKey('lessons.id', ondelete='CASCADE'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id', ondelete='CASCADE'), index=True)

    lesson: Mapped['Lesson'] = relationship('Lesson', back_populates='student_links')
    student: Mapped['Student'] = relationship('Student', back_populates='lesson_links')


class CourseStudent(Base):
    __tablename__ = 'course_students'
    __table_args__ = (
        UniqueConstraint('course_id', 'student_id', name='uq_course_students_course_student'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey('courses.id', ondelete='CASCADE'), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id', ondelete='CASCADE'), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    course: Mapped['Course'] = relationship('Course', back_populates='student_links')
    student: Mapped['Student'] = relationship('Student', back_populates='course_links')
