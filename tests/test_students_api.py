import unittest
from datetime import datetime, timedelta

from freezegun import freeze_time
from support import ApiTestCase

from tutordesk.models import Student
from tutordesk.services.student_service import student_status


class StudentStatusTests(unittest.TestCase):
    def test_windows(self):
        now = datetime(2026, 3, 11, 12, 0)
        self.assertEqual(student_status(None, now), 'absent')
        self.assertEqual(student_status(now - timedelta(hours=23), now), 'active')
        self.assertEqual(student_status(now - timedelta(hours=24), now), 'active')
        self.assertEqual(student_status(now - timedelta(hours=30), now), 'recent')
        self.assertEqual(student_status(now - timedelta(hours=49), now), 'absent')

    @freeze_time('2026-03-11 12:00:00')
    def test_defaults_to_current_utc_time(self):
        self.assertEqual(student_status(datetime(2026, 3, 10, 6, 0)), 'recent')
        self.assertEqual(student_status(datetime(2026, 3, 11, 11, 0)), 'active')


class StudentApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.tutor_id, self.token = self.make_user('tutor@example.com', first_name='Tina', last_name='Tutor')
        self.headers = self.auth(self.token)

    def create_student(self, headers=None, **fields):
        payload = {'firstName': 'Alice', 'lastName': 'Moreau', 'hourlyRate': 40}
        payload.update(fields)
        return self.client.post('/students', json=payload, headers=headers or self.headers)

    def test_create_and_list(self):
        first = self.create_student()
        self.assertEqual(first.status_code, 201)
        body = first.json()
        self.assertEqual(body['tutorId'], self.tutor_id)
        self.assertEqual(body['hourlyRate'], 40)
        self.assertEqual(body['status'], 'absent')
        self.create_student(firstName='Bruno', lastName='Roux')

        response = self.client.get('/students', params={'tutorId': self.tutor_id}, headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row['firstName'] for row in response.json()], ['Bruno', 'Alice'])

    def test_list_requires_tutor_id_and_own_scope(self):
        response = self.client.get('/students', headers=self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Missing tutorId')

        other_id, _ = self.make_user('other@example.com')
        forbidden = self.client.get('/students', params={'tutorId': other_id}, headers=self.headers)
        self.assertEqual(forbidden.status_code, 403)

    def test_requests_without_token_are_unauthorized(self):
        response = self.client.get('/students', params={'tutorId': self.tutor_id})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {'error': 'Unauthorized'})

    def test_create_validation(self):
        response = self.create_student(firstName='')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid request')
        self.assertEqual(self.create_student(hourlyRate=-5).status_code, 400)

    def test_get_update_delete(self):
        student_id = self.create_student().json()['id']

        fetched = self.client.get(f'/students/{student_id}', headers=self.headers)
        self.assertEqual(fetched.status_code, 200)
        self.assertEqual(fetched.json()['lastName'], 'Moreau')

        updated = self.client.patch(
            f'/students/{student_id}',
            json={'grade': '4e', 'hourlyRate': 45, 'email': ' Alice@Example.com '},
            headers=self.headers,
        )
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.json()['grade'], '4e')
        self.assertEqual(updated.json()['hourlyRate'], 45)
        self.assertEqual(updated.json()['email'], 'alice@example.com')

        deleted = self.client.delete(f'/students/{student_id}', headers=self.headers)
        self.assertEqual(deleted.json(), {'success': True})
        self.assertEqual(self.client.get(f'/students/{student_id}', headers=self.headers).status_code, 404)

    def test_other_tutor_cannot_touch_student(self):
        student_id = self.create_student().json()['id']
        _, other_token = self.make_user('other@example.com')
        other = self.auth(other_token)
        self.assertEqual(self.client.get(f'/students/{student_id}', headers=other).status_code, 403)
        self.assertEqual(self.client.patch(f'/students/{student_id}', json={'grade': 'x'}, headers=other).status_code, 403)
        self.assertEqual(self.client.delete(f'/students/{student_id}', headers=other).status_code, 403)

    def test_unknown_student_is_not_found(self):
        response = self.client.get('/students/999', headers=self.headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'Student not found')

    def test_activity_marks_student_active(self):
        student_id = self.create_student().json()['id']
        response = self.client.put(f'/students/{student_id}/activity', headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertIsNotNone(response.json()['lastActivity'])
        fetched = self.client.get(f'/students/{student_id}', headers=self.headers).json()
        self.assertEqual(fetched['status'], 'active')

    def test_student_tutor_lookup(self):
        student_id = self.create_student().json()['id']
        response = self.client.get(f'/students/{student_id}/tutor', headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['studentId'], student_id)
        self.assertEqual(response.json()['tutor']['firstName'], 'Tina')

    def test_student_without_tutor(self):
        student_user_id, student_token = self.make_user('kid@example.com', role='student')
        own = self.client.get('/students/email', params={'email': 'kid@example.com'}, headers=self.auth(student_token))
        self.assertEqual(own.status_code, 200)
        student_id = own.json()[0]['id']
        self.assertEqual(own.json()[0]['userId'], student_user_id)

        response = self.client.get(f'/students/{student_id}/tutor', headers=self.auth(student_token))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'No tutor assigned to this student')

    def test_lookup_by_email(self):
        self.create_student(email='shared@example.com')
        response = self.client.get('/students/email', params={'email': 'SHARED@example.com'}, headers=self.headers)
        self.assertEqual(len(response.json()), 1)
        missing = self.client.get('/students/email', headers=self.headers)
        self.assertEqual(missing.status_code, 400)

        _, other_token = self.make_user('other@example.com')
        hidden = self.client.get('/students/email', params={'email': 'shared@example.com'}, headers=self.auth(other_token))
        self.assertEqual(hidden.json(), [])

    def test_student_may_edit_self_but_not_rate(self):
        self.create_student(email='kid@example.com', hourlyRate=40)
        _, student_token = self.make_user('kid@example.com', role='student')
        student_headers = self.auth(student_token)
        student_id = self.client.get('/students/email', params={'email': 'kid@example.com'}, headers=student_headers).json()[0]['id']

        response = self.client.patch(
            f'/students/{student_id}',
            json={'grade': '3e', 'hourlyRate': 1},
            headers=student_headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['grade'], '3e')
        self.assertEqual(response.json()['hourlyRate'], 40)
        self.assertEqual(self.client.delete(f'/students/{student_id}', headers=student_headers).status_code, 403)

    def test_create_for_user(self):
        student_user_id, _ = self.make_user('kid@example.com', role='student')
        db = self.db()
        try:
            # Registration already made a student row; drop it to create one explicitly.
            db.query(Student).filter(Student.user_id == student_user_id).delete()
            db.commit()
        finally:
            db.close()

        created = self.client.post(
            '/students/create-for-user',
            json={'userId': student_user_id, 'tutorId': self.tutor_id},
            headers=self.headers,
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()['userId'], student_user_id)
        self.assertEqual(created.json()['tutorId'], self.tutor_id)

        again = self.client.post('/students/create-for-user', json={'userId': student_user_id}, headers=self.headers)
        self.assertEqual(again.status_code, 409)

        unknown = self.client.post('/students/create-for-user', json={'userId': 9999}, headers=self.headers)
        self.assertEqual(unknown.status_code, 404)

        not_student = self.client.post('/students/create-for-user', json={'userId': self.tutor_id}, headers=self.headers)
        self.assertEqual(not_student.status_code, 400)


if __name__ == '__main__':
    unittest.main()
