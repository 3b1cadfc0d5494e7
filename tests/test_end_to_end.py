import tempfile
import unittest
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from results_portal.db import Base, enable_sqlite_foreign_keys, get_db
from results_portal.models import Role, User
from results_portal.routers import admin, analytics, auth, entities, marks, public, schools
from results_portal.services.auth_service import hash_password


class NarayanpetScenarioTests(unittest.TestCase):
    """Admin sets up one district, a DEO enters marks, a parent opens the result link."""

    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_end_to_end.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        enable_sqlite_foreign_keys(cls._engine)
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        app = FastAPI()
        for module in (auth, admin, entities, schools, marks, analytics, public):
            app.include_router(module.router)

        def override_get_db():
            db = cls._session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        cls.client = TestClient(app)

        db = cls._session_factory()
        try:
            db.add(User(username='admin', password_hash=hash_password('Admin@12345'), role=Role.ADMIN.value))
            db.commit()
        finally:
            db.close()

    @classmethod
    def tearDownClass(cls):
        cls.client.close()
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def _login(self, username: str, password: str) -> dict:
        res = self.client.post('/api/auth/login', json={'username': username, 'password': password})
        self.assertEqual(res.status_code, 200, res.text)
        return {'Authorization': f"Bearer {res.json()['token']}"}

    def _post(self, path: str, payload: dict, headers: dict) -> dict:
        res = self.client.post(path, json=payload, headers=headers)
        self.assertEqual(res.status_code, 200, res.text)
        return res.json()

    def test_marks_flow_from_setup_to_parent_view(self):
        admin_auth = self._login('admin', 'Admin@12345')

        district = self._post('/api/entities/districts/add', {'name': 'Narayanpet'}, admin_auth)
        mandal = self._post('/api/entities/mandals/add', {'name': 'Maddur', 'district_id': district['id']}, admin_auth)
        created = self._post(
            '/api/schools/create',
            {
                'name': 'ZPHS Maddur',
                'udise_code': '36210100101',
                'district_id': district['id'],
                'mandal_id': mandal['id'],
                'grade_levels': [9, 10],
            },
            admin_auth,
        )
        school = created['school']
        grade_10 = next(row for row in created['classes'] if row['grade_level'] == 10)
        math = self._post('/api/entities/subjects/add', {'name': 'Mathematics'}, admin_auth)
        english = self._post('/api/entities/subjects/add', {'name': 'English'}, admin_auth)
        exam = self._post(
            '/api/entities/exams/add',
            {'name': 'Quarterly Examination', 'exam_code': 'Q1', 'start_date': '2026-10-05'},
            admin_auth,
        )
        student = self._post(
            '/api/entities/students/add',
            {'name': 'Ravi', 'pen_number': '123', 'school_id': school['id'], 'class_id': grade_10['id']},
            admin_auth,
        )

        deo_user = self._post(
            '/api/admin/create-user',
            {'username': 'deo.narayanpet', 'password': 'Deo@12345', 'role': 'deo', 'district_id': district['id']},
            admin_auth,
        )
        self.assertEqual(deo_user['district_id'], district['id'])
        deo_auth = self._login('deo.narayanpet', 'Deo@12345')

        for subject, score, grade in ((math, 95, None), (english, 80, 'A2')):
            entry = {'student_id': student['id'], 'marks': score, 'max_marks': 100}
            if grade:
                entry['grade'] = grade
            saved = self._post(
                '/api/marks/bulk-update',
                {'exam_id': exam['id'], 'subject_id': subject['id'], 'marks_data': [entry]},
                deo_auth,
            )
            self.assertEqual(saved['updated'], 1)

        qr_rows = self.client.get(f"/api/schools/{school['id']}/qr-data", headers=deo_auth).json()
        self.assertEqual(len(qr_rows), 1)
        token = qr_rows[0]['parent_access_token']
        self.assertTrue(qr_rows[0]['result_url'].endswith(f'/student/{token}'))

        # The parent view needs no login.
        res = self.client.get(f'/api/public/student/{token}')
        self.assertEqual(res.status_code, 200, res.text)
        body = res.json()
        self.assertEqual(body['student']['name'], 'Ravi')
        self.assertEqual(body['student']['school']['district'], 'Narayanpet')
        result = body['results'][0]
        self.assertEqual(result['exam_code'], 'Q1')
        self.assertEqual(result['percentage'], 87.5)
        self.assertEqual([(row['name'], row['grade']) for row in result['subjects']], [('Mathematics', 'A1'), ('English', 'A2')])
        self.assertEqual(result['subjects'][0]['class_average'], 95.0)

        drill = self.client.get(
            '/api/analytics/drill-down',
            params={'level': 'mandal', 'parent_id': mandal['id']},
            headers=deo_auth,
        )
        self.assertEqual(drill.status_code, 200)
        self.assertEqual(
            drill.json(),
            [
                {
                    'id': school['id'],
                    'name': 'ZPHS Maddur',
                    'avg_score': 87.5,
                    'pass_percentage': 100.0,
                    'grade_a_count': 2,
                    'student_count': 1,
                }
            ],
        )

        stats = self.client.get('/api/analytics/stats', headers=deo_auth).json()
        self.assertEqual(stats['total_students'], 1)
        self.assertEqual(stats['grade_a_students'], 1)

    def test_omitted_grade_for_eighty_percent_is_b1(self):
        admin_auth = self._login('admin', 'Admin@12345')
        district = self._post('/api/entities/districts/add', {'name': 'Vikarabad'}, admin_auth)
        mandal = self._post('/api/entities/mandals/add', {'name': 'Tandur', 'district_id': district['id']}, admin_auth)
        created = self._post(
            '/api/schools/create',
            {
                'name': 'ZPHS Tandur',
                'udise_code': '36220100101',
                'district_id': district['id'],
                'mandal_id': mandal['id'],
                'grade_levels': [9],
            },
            admin_auth,
        )
        subject = self._post('/api/entities/subjects/add', {'name': 'Science'}, admin_auth)
        exam = self._post('/api/entities/exams/add', {'name': 'Unit Test', 'exam_code': 'UT-VKB'}, admin_auth)
        student = self._post(
            '/api/entities/students/add',
            {
                'name': 'Kavya',
                'pen_number': 'PEN2026777',
                'school_id': created['school']['id'],
                'class_id': created['classes'][0]['id'],
            },
            admin_auth,
        )
        self._post(
            '/api/marks/bulk-update',
            {'exam_id': exam['id'], 'subject_id': subject['id'], 'marks_data': [{'student_id': student['id'], 'marks': 80}]},
            admin_auth,
        )
        rows = self.client.get(
            '/api/analytics/student-marks',
            params={'school_id': created['school']['id']},
            headers=admin_auth,
        ).json()
        self.assertEqual([row['grade'] for row in rows], ['B1'])
