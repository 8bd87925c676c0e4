from datetime import timedelta
from pathlib import Path
import sys


# Ensure imports work when running this file directly: `python scripts/init_db.py`.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from tutordesk.core.time_provider import default_time_provider
from tutordesk.db import Base, SessionLocal, engine
from tutordesk.models import Course, CourseStudent, Lesson, LessonStudent, Role, Student, User
from tutordesk.services.auth_service import hash_password


DEMO_TUTOR_EMAIL = 'tutor@example.com'
DEMO_PASSWORD = 'demo1234'

Base.metadata.create_all(bind=engine)

db = SessionLocal()
try:
    if not db.query(User).filter(User.email == DEMO_TUTOR_EMAIL).first():
        tutor = User(
            email=DEMO_TUTOR_EMAIL,
            password_hash=hash_password(DEMO_PASSWORD),
            role=Role.TUTOR.value,
            first_name='Claire',
            last_name='Martin',
            onboarding_completed=True,
        )
        db.add(tutor)
        db.commit()
        db.refresh(tutor)

        students = [
            Student(tutor_id=tutor.id, first_name='Lucas', last_name='Bernard', grade='3e', hourly_rate=35),
            Student(tutor_id=tutor.id, first_name='Emma', last_name='Petit', grade='2nde', hourly_rate=40),
            Student(tutor_id=tutor.id, first_name='Hugo', last_name='Durand', grade='1re'),
        ]
        db.add_all(students)
        db.commit()

        course = Course(tutor_id=tutor.id, title='Mathematics', description='Weekly algebra sessions')
        db.add(course)
        db.commit()
        db.refresh(course)
        db.add_all([CourseStudent(course_id=course.id, student_id=s.id) for s in students])

        today = default_time_provider.today()
        for offset, duration in ((-14, '1h'), (-7, '1h30'), (-1, '90'), (3, '1:30'), (10, '1.5')):
            lesson = Lesson(
                tutor_id=tutor.id,
                course_id=course.id,
                title='Algebra',
                lesson_date=today + timedelta(days=offset),
                start_time='17:00',
                duration=duration,
            )
            for s in students[: 1 + (offset % 3)]:
                lesson.student_links.append(LessonStudent(student=s))
            db.add(lesson)
        db.commit()
finally:
    db.close()

print('DB initialized with sample data.')
