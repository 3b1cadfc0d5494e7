import tempfile
import unittest
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from results_portal.core import router_guard
from results_portal.db import Base, enable_sqlite_foreign_keys, get_db
from results_portal.models import District, Mandal, School, User
from results_portal.routers import admin
from results_portal.services.auth_service import hash_password


SESSIONS = {
    'token-admin': {'user_id': 1, 'role': 'admin', 'district_id': None, 'mandal_id': None, 'school_id': None},
    'token-deo-d1': {'user_id': 2, 'role': 'deo', 'district_id': 1, 'mandal_id': None, 'school_id': None},
    'token-meo-m10': {'user_id': 3, 'role': 'meo', 'district_id': 1, 'mandal_id': 10, 'school_id': None},
    'token-principal-s100': {'user_id': 4, 'role': 'school_admin', 'district_id': 1, 'mandal_id': 10, 'school_id': 100},
}


def _auth(token: str) -> dict:
    return {'Authorization': f'Bearer {token}'}


class AdminUserTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_admin_users.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        enable_sqlite_foreign_keys(cls._engine)
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        cls._orig_validate = router_guard.validate_session_token
        router_guard.validate_session_token = lambda token: SESSIONS.get(token)

        app = FastAPI()
        app.include_router(admin.router)

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
        router_guard.validate_session_token = cls._orig_validate
        cls.client.close()
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            db.query(User).delete()
            db.query(School).delete()
            db.query(Mandal).delete()
            db.query(District).delete()
            db.add_all([District(id=1, name='Narayanpet'), District(id=2, name='Mahabubnagar')])
            db.flush()
            db.add_all(
                [
                    Mandal(id=10, name='Maddur', district_id=1),
                    Mandal(id=11, name='Kosgi', district_id=1),
                    Mandal(id=20, name='Jadcherla', district_id=2),
                ]
            )
            db.flush()
            db.add_all(
                [
                    School(id=100, name='ZPHS Maddur', udise_code='36000000100', district_id=1, mandal_id=10),
                    School(id=101, name='ZPHS Kosgi', udise_code='36000000101', district_id=1, mandal_id=11),
                    School(id=200, name='ZPHS Jadcherla', udise_code='36000000200', district_id=2, mandal_id=20),
                ]
            )
            db.flush()
            password_hash = hash_password('Password@123')
            db.add_all(
                [
                    User(id=1, username='admin', password_hash=password_hash, role='admin'),
                    User(id=2, username='deo1', password_hash=password_hash, role='deo', district_id=1),
                    User(id=3, username='meo10', password_hash=password_hash, role='meo', district_id=1, mandal_id=10),
                    User(
                        id=4,
                        username='principal100',
                        password_hash=password_hash,
                        role='school_admin',
                        district_id=1,
                        mandal_id=10,
                        school_id=100,
                    ),
                ]
            )
            db.commit()
        finally:
            db.close()

    def _create(self, token: str, **payload):
        body = {'username': payload.pop('username', 'new.user'), 'password': 'Password@123'}
        body.update(payload)
        return self.client.post('/api/admin/create-user', json=body, headers=_auth(token))

    def test_requires_authentication(self):
        res = self.client.post('/api/admin/create-user', json={'username': 'x', 'password': 'y', 'role': 'deo'})
        self.assertEqual(res.status_code, 401)

    def test_meo_cannot_create_peer_or_senior(self):
        for role in ('deo', 'meo', 'admin'):
            with self.subTest(role=role):
                res = self._create('token-meo-m10', role=role, mandal_id=10)
                self.assertEqual(res.status_code, 403)
                self.assertEqual(res.json()['detail'], 'Cannot create a user with equal or higher authority')

    def test_meo_creates_school_admin_with_derived_parentage(self):
        res = self._create('token-meo-m10', username='Principal.Two', role='school_admin', school_id=100)
        self.assertEqual(res.status_code, 200, res.text)
        body = res.json()
        self.assertEqual(body['username'], 'principal.two')
        self.assertEqual((body['district_id'], body['mandal_id'], body['school_id']), (1, 10, 100))
        self.assertEqual(body['created_by'], 3)
        self.assertNotIn('password_hash', body)

    def test_meo_cannot_create_school_admin_in_other_mandal(self):
        res = self._create('token-meo-m10', role='school_admin', school_id=101)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()['detail'], 'Outside Mandal Jurisdiction')

    def test_deo_scope_is_forced_and_checked(self):
        own = self._create('token-deo-d1', username='meo.kosgi', role='meo', mandal_id=11)
        self.assertEqual(own.status_code, 200, own.text)
        self.assertEqual(own.json()['district_id'], 1)

        other = self._create('token-deo-d1', username='meo.jadcherla', role='meo', district_id=2, mandal_id=20)
        self.assertEqual(other.status_code, 403)
        self.assertEqual(other.json()['detail'], 'Outside District Jurisdiction')

    def test_deo_created_by_admin_needs_district(self):
        missing = self._create('token-admin', role='deo')
        self.assertEqual(missing.status_code, 400)

        created = self._create('token-admin', username='deo2', role='deo', district_id=2, mandal_id=20, school_id=200)
        self.assertEqual(created.status_code, 200, created.text)
        body = created.json()
        # Fields below the role's level are dropped.
        self.assertEqual((body['district_id'], body['mandal_id'], body['school_id']), (2, None, None))

    def test_contradictory_parent_is_rejected(self):
        res = self._create('token-admin', role='school_admin', district_id=2, school_id=100)
        self.assertEqual(res.status_code, 400)

    def test_unknown_school_is_not_found(self):
        res = self._create('token-admin', role='school_admin', school_id=999)
        self.assertEqual(res.status_code, 404)

    def test_duplicate_username_conflicts(self):
        res = self._create('token-admin', username='DEO1', role='deo', district_id=1)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.json()['detail'], 'Username already exists')

    def test_short_password_is_rejected(self):
        res = self.client.post(
            '/api/admin/create-user',
            json={'username': 'deo9', 'password': 'short', 'role': 'deo', 'district_id': 1},
            headers=_auth('token-admin'),
        )
        self.assertEqual(res.status_code, 400)

    def test_list_users_is_scoped(self):
        res = self.client.get('/api/admin/users', headers=_auth('token-meo-m10'))
        self.assertEqual(res.status_code, 200)
        usernames = {row['username'] for row in res.json()}
        self.assertEqual(usernames, {'meo10', 'principal100'})

        denied = self.client.get('/api/admin/users', headers=_auth('token-principal-s100'))
        self.assertEqual(denied.status_code, 403)

    def test_update_user_rules(self):
        renamed = self.client.put('/api/admin/users/4', json={'full_name': 'Head Master'}, headers=_auth('token-meo-m10'))
        self.assertEqual(renamed.status_code, 200, renamed.text)
        self.assertEqual(renamed.json()['full_name'], 'Head Master')

        senior = self.client.put('/api/admin/users/2', json={'full_name': 'X'}, headers=_auth('token-meo-m10'))
        self.assertEqual(senior.status_code, 403)

        clash = self.client.put('/api/admin/users/4', json={'username': 'meo10'}, headers=_auth('token-admin'))
        self.assertEqual(clash.status_code, 409)

        unknown_field = self.client.put('/api/admin/users/4', json={'role': 'admin'}, headers=_auth('token-admin'))
        self.assertEqual(unknown_field.status_code, 422)

        self_edit = self.client.put('/api/admin/users/3', json={'full_name': 'Mandal Officer'}, headers=_auth('token-meo-m10'))
        self.assertEqual(self_edit.status_code, 200)

    def test_stats_are_scoped(self):
        res = self.client.get('/api/admin/stats', headers=_auth('token-deo-d1'))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {'school_count': 2, 'student_count': 0})
