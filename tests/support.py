import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from tutordesk.cache import cache
from tutordesk.db import Base, get_db
from tutordesk.main import app
from tutordesk.services.auth_service import register


PASSWORD = 'secret123'


class TempDatabaseMixin:
    """Points the real application at a throwaway sqlite file per test class."""

    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / f'{cls.__name__}.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        def override_get_db():
            db = cls._session_factory()
            try:
                yield db
            finally:
                db.close()

        cls.app = app
        app.dependency_overrides[get_db] = override_get_db

    @classmethod
    def tearDownClass(cls):
        app.dependency_overrides.pop(get_db, None)
        cls._engine.dispose()
        cls._tmpdir.cleanup()
        super().tearDownClass()

    def reset_database(self):
        db = self._session_factory()
        try:
            for table in reversed(Base.metadata.sorted_tables):
                db.execute(table.delete())
            db.commit()
        finally:
            db.close()
        cache.clear()

    def db(self):
        return self._session_factory()

    def make_user(self, email: str, role: str = 'tutor', **extra) -> tuple[int, str]:
        db = self._session_factory()
        try:
            data = register(db, email=email, password=PASSWORD, role=role, **extra)
        finally:
            db.close()
        return data['user']['id'], data['token']

    @staticmethod
    def auth(token: str) -> dict:
        return {'Authorization': f'Bearer {token}'}


class ApiTestCase(TempDatabaseMixin, unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls):
        cls.client.close()
        super().tearDownClass()

    def setUp(self):
        self.reset_database()
        self.client.cookies.clear()


class AsyncApiTestCase(TempDatabaseMixin, unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.reset_database()
