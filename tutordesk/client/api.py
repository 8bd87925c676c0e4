"""Async HTTP client for the tutordesk REST API.

Every call goes through :meth:`ApiClient.request`, which attaches the bearer token,
applies the request deadline and turns any failure into :class:`ApiError`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from tutordesk.config import settings


logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = 'API request failed'


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.details = details

    def __repr__(self) -> str:
        return f'{type(self).__name__}(status_code={self.status_code!r}, message={self.message!r})'


class ApiTimeoutError(ApiError):
    def __init__(self, message: str = 'Request timed out') -> None:
        super().__init__(0, message)


def _error_from_response(response: httpx.Response) -> ApiError:
    message = DEFAULT_ERROR_MESSAGE
    details = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = str(body.get('error') or body.get('detail') or DEFAULT_ERROR_MESSAGE)
        details = body.get('details')
    return ApiError(response.status_code, message, details)


def _clean_params(params: dict[str, Any] | None) -> dict[str, Any] | None:
    if not params:
        return None
    return {key: value for key, value in params.items() if value is not None}


class ApiClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.client_base_url).rstrip('/')
        self.token = token
        self.timeout = timeout if timeout is not None else settings.client_request_timeout_seconds
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=transport)

    async def __aenter__(self) -> 'ApiClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            response = await asyncio.wait_for(
                self._client.request(
                    method,
                    path,
                    params=_clean_params(params),
                    json=json,
                    headers=self._headers(),
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.warning('api_request_timeout method=%s path=%s', method, path)
            raise ApiTimeoutError() from exc
        except httpx.HTTPError as exc:
            logger.warning('api_request_network_error method=%s path=%s error=%s', method, path, exc)
            raise ApiError(0, 'Network error', str(exc)) from exc

        if response.is_error:
            error = _error_from_response(response)
            logger.info('api_request_failed method=%s path=%s status=%s', method, path, error.status_code)
            raise error
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(response.status_code, 'Invalid JSON response') from exc

    # Auth

    async def register(
        self,
        *,
        email: str,
        password: str,
        role: str = 'tutor',
        first_name: str = '',
        last_name: str = '',
        phone_number: str | None = None,
    ) -> dict:
        data = await self.request(
            'POST',
            '/auth/register',
            json={
                'email': email,
                'password': password,
                'role': role,
                'firstName': first_name,
                'lastName': last_name,
                'phoneNumber': phone_number,
            },
        )
        self.token = data['token']
        return data

    async def login(self, email: str, password: str) -> dict:
        data = await self.request('POST', '/auth/login', json={'email': email, 'password': password})
        self.token = data['token']
        return data

    async def keep_alive(self) -> dict:
        return await self.request('POST', '/auth/keep-alive')

    async def logout(self) -> dict:
        data = await self.request('POST', '/auth/logout')
        self.token = None
        return data

    # Students

    async def get_students(self, tutor_id: int) -> list[dict]:
        return await self.request('GET', '/students', params={'tutorId': tutor_id})

    async def get_students_by_email(self, email: str) -> list[dict]:
        return await self.request('GET', '/students/email', params={'email': email})

    async def create_student(self, data: dict) -> dict:
        return await self.request('POST', '/students', json=data)

    async def create_student_for_user(self, user_id: int, tutor_id: int | None = None) -> dict:
        return await self.request('POST', '/students/create-for-user', json={'userId': user_id, 'tutorId': tutor_id})

    async def get_student(self, student_id: int) -> dict:
        return await self.request('GET', f'/students/{student_id}')

    async def update_student(self, student_id: int, data: dict) -> dict:
        return await self.request('PATCH', f'/students/{student_id}', json=data)

    async def delete_student(self, student_id: int) -> dict:
        return await self.request('DELETE', f'/students/{student_id}')

    async def update_student_activity(self, student_id: int) -> dict:
        return await self.request('PUT', f'/students/{student_id}/activity')

    async def get_student_tutor(self, student_id: int) -> dict:
        return await self.request('GET', f'/students/{student_id}/tutor')

    # Courses

    async def get_courses(self, tutor_id: int | None = None) -> list[dict]:
        return await self.request('GET', '/courses', params={'tutorId': tutor_id})

    async def create_course(self, data: dict) -> dict:
        return await self.request('POST', '/courses', json=data)

    async def get_course(self, course_id: int) -> dict:
        return await self.request('GET', f'/courses/{course_id}')

    async def update_course(self, course_id: int, data: dict) -> dict:
        return await self.request('PATCH', f'/courses/{course_id}', json=data)

    async def delete_course(self, course_id: int) -> dict:
        return await self.request('DELETE', f'/courses/{course_id}')

    async def add_student_to_course(self, course_id: int, student_id: int) -> dict:
        return await self.request('POST', f'/courses/{course_id}/students/{student_id}')

    async def remove_student_from_course(self, course_id: int, student_id: int) -> dict:
        return await self.request('DELETE', f'/courses/{course_id}/students/{student_id}')

    # Lessons

    async def get_lessons(
        self,
        *,
        tutor_id: int | None = None,
        course_id: int | None = None,
        student_id: int | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[dict]:
        return await self.request(
            'GET',
            '/lessons',
            params={
                'tutorId': tutor_id,
                'courseId': course_id,
                'studentId': student_id,
                'startDate': start_date,
                'endDate': end_date,
            },
        )

    async def create_lesson(self, data: dict) -> dict:
        return await self.request('POST', '/lessons', json=data)

    async def get_lesson(self, lesson_id: int) -> dict:
        return await self.request('GET', f'/lessons/{lesson_id}')

    async def update_lesson(self, lesson_id: int, data: dict) -> dict:
        return await self.request('PATCH', f'/lessons/{lesson_id}', json=data)

    async def delete_lesson(self, lesson_id: int) -> dict:
        return await self.request('DELETE', f'/lessons/{lesson_id}')

    async def update_lesson_comment(self, lesson_id: int, comment: str) -> dict:
        return await self.request('PUT', f'/lessons/{lesson_id}/comment', json={'tutorComment': comment})

    async def delete_lesson_comment(self, lesson_id: int) -> dict:
        return await self.request('DELETE', f'/lessons/{lesson_id}/comment')

    # Revenue

    async def get_revenue(
        self,
        tutor_id: int,
        *,
        range_name: str = 'month',
        start_date: str | None = None,
        end_date: str | None = None,
        course_id: int | None = None,
        student_id: int | str | None = None,
    ) -> dict:
        return await self.request(
            'GET',
            '/revenue',
            params={
                'tutorId': tutor_id,
                'range': range_name,
                'startDate': start_date,
                'endDate': end_date,
                'courseId': course_id,
                'studentId': student_id,
            },
        )

    async def export_revenue(
        self,
        tutor_id: int,
        start_date: str,
        end_date: str,
        student_id: int | str | None = None,
    ) -> dict:
        return await self.request(
            'GET',
            '/revenue/export',
            params={'tutorId': tutor_id, 'startDate': start_date, 'endDate': end_date, 'studentId': student_id},
        )

    async def get_tutor_dashboard(self) -> dict:
        return await self.request('GET', '/dashboard/tutor')

    # Users

    async def get_user(self, user_id: int) -> dict:
        return await self.request('GET', f'/users/{user_id}')

    async def update_user(self, user_id: int, data: dict) -> dict:
        return await self.request('PATCH', f'/users/{user_id}', json=data)
