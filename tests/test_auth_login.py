import tempfile
import unittest
from datetime import timedelta
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient
from freezegun import freeze_time
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from results_portal.config import settings
from results_portal.db import Base, enable_sqlite_foreign_keys, get_db
from results_portal.models import District, Role, User
from results_portal.routers import auth
from results_portal.services.auth_service import hash_password, validate_session_token


class AuthLoginTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_auth_login.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        enable_sqlite_foreign_keys(cls._engine)
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        app = FastAPI()
        app.include_router(auth.router)

        def override_get_db():
            db = cls._session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        cls.client = TestClient(app)

    @classmethod
    def tearDownClass(cls):
        cls.client.close()
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            db.query(User).delete()
            db.query(District).delete()
            db.add(District(id=1, name='Narayanpet'))
            db.add(
                User(
                    id=1,
                    username='deo.narayanpet',
                    password_hash=hash_password('Password@123'),
                    full_name='District Officer',
                    role=Role.DEO.value,
                    district_id=1,
                )
            )
            db.commit()
        finally:
            db.close()

    def _login(self, username='deo.narayanpet', password='Password@123'):
        return self.client.post('/api/auth/login', json={'username': username, 'password': password})

    def test_login_returns_token_and_identity(self):
        res = self._login()
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertTrue(body['token'])
        self.assertIn('expires_at', body)
        self.assertEqual(body['user']['role'], 'deo')
        self.assertEqual(body['user']['district_id'], 1)
        self.assertEqual(body['user']['district_name'], 'Narayanpet')
        self.assertIsNone(body['user']['school_id'])
        self.assertNotIn('password_hash', body['user'])

    def test_username_is_case_insensitive(self):
        self.assertEqual(self._login(username='DEO.Narayanpet').status_code, 200)

    def test_unknown_user_and_wrong_password_share_one_message(self):
        unknown = self._login(username='nobody')
        wrong = self._login(password='not-the-password')
        self.assertEqual(unknown.status_code, 401)
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(unknown.json(), wrong.json())
        self.assertEqual(unknown.json()['detail'], 'Invalid username or password')

    def test_me_requires_bearer_token(self):
        res = self.client.get('/api/auth/me')
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.headers.get('www-authenticate'), 'Bearer')

        token = self._login().json()['token']
        me = self.client.get('/api/auth/me', headers={'Authorization': f'Bearer {token}'})
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()['username'], 'deo.narayanpet')

    def test_tampered_token_is_rejected(self):
        token = self._login().json()['token']
        header, payload, signature = token.split('.')
        tampered = f'{header}.{payload}.{signature[:-2]}xx'
        res = self.client.get('/api/auth/me', headers={'Authorization': f'Bearer {tampered}'})
        self.assertEqual(res.status_code, 401)

    def test_token_expires_after_configured_hours(self):
        with freeze_time('2026-10-18 08:00:00'):
            token = self._login().json()['token']
            self.assertIsNotNone(validate_session_token(token))
        with freeze_time('2026-10-18 08:00:00') as frozen:
            frozen.tick(delta=timedelta(hours=settings.auth_session_expiry_hours, seconds=-1))
            self.assertIsNotNone(validate_session_token(token))
            frozen.tick(delta=timedelta(seconds=2))
            self.assertIsNone(validate_session_token(token))

    def test_logout_revokes_token(self):
        token = self._login().json()['token']
        headers = {'Authorization': f'Bearer {token}'}
        self.assertEqual(self.client.post('/api/auth/logout', headers=headers).status_code, 200)
        self.assertEqual(self.client.get('/api/auth/me', headers=headers).status_code, 401)
