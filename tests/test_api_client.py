import asyncio
import json
import unittest

import httpx

from tutordesk.client import ApiClient, ApiError, ApiTimeoutError


def json_response(status_code, body):
    return httpx.Response(status_code, content=json.dumps(body).encode('utf-8'), headers={'content-type': 'application/json'})


class ApiClientTests(unittest.IsolatedAsyncioTestCase):
    def make_client(self, handler, **kwargs):
        client = ApiClient('http://tutordesk.test', token=kwargs.pop('token', 'tok'), transport=httpx.MockTransport(handler), **kwargs)
        self.addAsyncCleanup(client.aclose)
        return client

    async def test_sends_bearer_token_and_drops_empty_params(self):
        seen = {}

        def handler(request):
            seen['auth'] = request.headers.get('authorization')
            seen['params'] = dict(request.url.params)
            return json_response(200, [])

        client = self.make_client(handler)
        result = await client.get_lessons(tutor_id=3, start_date='2026-03-01')
        self.assertEqual(result, [])
        self.assertEqual(seen['auth'], 'Bearer tok')
        self.assertEqual(seen['params'], {'tutorId': '3', 'startDate': '2026-03-01'})

    async def test_error_body_is_normalized(self):
        def handler(request):
            return json_response(409, {'error': 'User already exists', 'details': {'field': 'email'}})

        client = self.make_client(handler)
        with self.assertRaises(ApiError) as ctx:
            await client.create_student({'firstName': 'A'})
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.message, 'User already exists')
        self.assertEqual(ctx.exception.details, {'field': 'email'})

    async def test_error_without_json_body_uses_fallback_message(self):
        def handler(request):
            return httpx.Response(502, content=b'<html>bad gateway</html>')

        client = self.make_client(handler)
        with self.assertRaises(ApiError) as ctx:
            await client.get_students(1)
        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(ctx.exception.message, 'API request failed')

    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError('connection refused', request=request)

        client = self.make_client(handler)
        with self.assertRaises(ApiError) as ctx:
            await client.get_courses(1)
        self.assertEqual(ctx.exception.status_code, 0)
        self.assertEqual(ctx.exception.message, 'Network error')

    async def test_timeout(self):
        async def handler(request):
            await asyncio.sleep(1)
            return json_response(200, {})

        client = self.make_client(handler, timeout=0.01)
        with self.assertRaises(ApiTimeoutError) as ctx:
            await client.get_user(1)
        self.assertEqual(ctx.exception.status_code, 0)

    async def test_empty_body_returns_none(self):
        client = self.make_client(lambda request: httpx.Response(204))
        self.assertIsNone(await client.delete_lesson(4))

    async def test_login_stores_token(self):
        def handler(request):
            if request.url.path == '/auth/login':
                self.assertEqual(json.loads(request.content), {'email': 'tutor@example.com', 'password': 'secret123'})
                return json_response(200, {'token': 'fresh', 'user': {'id': 1}})
            return json_response(200, {'ok': True})

        client = self.make_client(handler, token=None)
        await client.login('tutor@example.com', 'secret123')
        self.assertEqual(client.token, 'fresh')
        await client.logout()
        self.assertIsNone(client.token)


if __name__ == '__main__':
    unittest.main()
