import unittest
from datetime import datetime, timedelta, timezone

from freezegun import freeze_time
from support import PASSWORD, ApiTestCase

from tutordesk.config import settings
from tutordesk.models import Student, User
from tutordesk.services.auth_service import (
    hash_password,
    issue_token,
    validate_session_token,
    verify_password,
)


class FixedTimeProvider:
    def __init__(self, moment):
        self.moment = moment

    def now(self):
        return self.moment


class PasswordAndTokenTests(unittest.TestCase):
    def test_hash_and_verify(self):
        hashed = hash_password('correct-horse')
        self.assertTrue(hashed.startswith('pbkdf2_sha256$'))
        self.assertTrue(verify_password('correct-horse', hashed))
        self.assertFalse(verify_password('wrong', hashed))
        self.assertFalse(verify_password('correct-horse', 'garbage'))

    def test_short_password_rejected(self):
        with self.assertRaises(ValueError):
            hash_password('abc')

    def test_token_expires(self):
        issued = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
        user = User(id=5, email='tutor@example.com', role='tutor')
        token = issue_token(user, time_provider=FixedTimeProvider(issued))

        session = validate_session_token(token, time_provider=FixedTimeProvider(issued + timedelta(hours=1)))
        self.assertEqual(session['user_id'], 5)
        self.assertEqual(session['role'], 'tutor')

        expired_at = issued + timedelta(hours=settings.auth_token_expiry_hours)
        self.assertIsNone(validate_session_token(token, time_provider=FixedTimeProvider(expired_at)))

    def test_token_expiry_follows_the_clock(self):
        user = User(id=6, email='kid@example.com', role='student')
        with freeze_time('2026-03-01 08:00:00'):
            token = issue_token(user)
        with freeze_time('2026-03-08 07:59:00'):
            self.assertEqual(validate_session_token(token)['role'], 'student')
        with freeze_time('2026-03-08 08:00:00'):
            self.assertIsNone(validate_session_token(token))

    def test_tampered_token_rejected(self):
        token = issue_token(User(id=5, email='tutor@example.com', role='tutor'))
        header, payload, signature = token.split('.')
        self.assertIsNone(validate_session_token(f'{header}.{payload}x.{signature}'))
        self.assertIsNone(validate_session_token('not-a-token'))
        self.assertIsNone(validate_session_token(None))


class AuthApiTests(ApiTestCase):
    def register(self, **overrides):
        payload = {'email': 'tutor@example.com', 'password': PASSWORD, 'firstName': 'Tina', 'lastName': 'Tutor'}
        payload.update(overrides)
        return self.client.post('/auth/register', json=payload)

    def test_register_returns_token_and_sets_cookie(self):
        response = self.register()
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body['token'])
        self.assertEqual(body['user']['email'], 'tutor@example.com')
        self.assertEqual(body['user']['role'], 'tutor')
        self.assertEqual(body['user']['firstName'], 'Tina')
        self.assertIn('auth_session', response.cookies)

    def test_register_duplicate_email_conflicts(self):
        self.assertEqual(self.register().status_code, 201)
        response = self.register(email='TUTOR@example.com')
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error'], 'User already exists')

    def test_register_validation(self):
        self.assertEqual(self.register(email='not-an-email').status_code, 400)
        self.assertEqual(self.register(password='abc').status_code, 400)
        response = self.register(role='admin')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid request')
        self.assertTrue(response.json()['details'])

    def test_student_registration_creates_student_row(self):
        response = self.register(email='kid@example.com', role='student', firstName='Kim', lastName='Lee')
        self.assertEqual(response.status_code, 201)
        user_id = response.json()['user']['id']
        db = self.db()
        try:
            student = db.query(Student).filter(Student.user_id == user_id).one()
            self.assertIsNone(student.tutor_id)
            self.assertEqual(student.first_name, 'Kim')
        finally:
            db.close()

    def test_registration_links_existing_student_by_email(self):
        tutor_id, token = self.make_user('tutor@example.com')
        created = self.client.post(
            '/students',
            json={'firstName': 'Kim', 'lastName': 'Lee', 'email': 'Kim@Example.com'},
            headers=self.auth(token),
        )
        self.assertEqual(created.status_code, 201)

        response = self.register(email='kim@example.com', role='student')
        self.assertEqual(response.status_code, 201)
        db = self.db()
        try:
            rows = db.query(Student).filter(Student.email == 'kim@example.com').all()
            self.assertEqual(len(rows), 1)
            self.assertEqual(rows[0].user_id, response.json()['user']['id'])
            self.assertEqual(rows[0].tutor_id, tutor_id)
        finally:
            db.close()

    def test_login(self):
        self.make_user('tutor@example.com')
        response = self.client.post('/auth/login', json={'email': ' Tutor@Example.com ', 'password': PASSWORD})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['user']['email'], 'tutor@example.com')
        self.assertIn('auth_session', response.cookies)

    def test_login_failures(self):
        self.make_user('tutor@example.com')
        wrong = self.client.post('/auth/login', json={'email': 'tutor@example.com', 'password': 'nope-nope'})
        self.assertEqual(wrong.status_code, 401)
        unknown = self.client.post('/auth/login', json={'email': 'ghost@example.com', 'password': PASSWORD})
        self.assertEqual(unknown.status_code, 404)
        missing = self.client.post('/auth/login', json={'email': '', 'password': ''})
        self.assertEqual(missing.status_code, 400)

    def test_keep_alive_requires_token(self):
        _, token = self.make_user('tutor@example.com')
        self.assertEqual(self.client.post('/auth/keep-alive').status_code, 401)
        response = self.client.post('/auth/keep-alive', headers=self.auth(token))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'alive')
        self.assertIn('timestamp', response.json())

    def test_cookie_session_is_accepted(self):
        self.register()
        self.assertEqual(self.client.post('/auth/keep-alive').status_code, 200)

    def test_logout_revokes_token(self):
        _, token = self.make_user('tutor@example.com')
        self.assertEqual(self.client.post('/auth/logout', headers=self.auth(token)).status_code, 200)
        self.assertEqual(self.client.post('/auth/keep-alive', headers=self.auth(token)).status_code, 401)
        self.assertEqual(self.client.post('/auth/logout').status_code, 401)

    def test_health(self):
        response = self.client.get('/health')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'ok')


if __name__ == '__main__':
    unittest.main()
