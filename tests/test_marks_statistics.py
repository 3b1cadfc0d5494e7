import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from results_portal.core import router_guard
from results_portal.db import Base, enable_sqlite_foreign_keys, get_db
from results_portal.models import ClassStatistic, District, Exam, Mandal, Mark, School, SchoolClass, Student, Subject
from results_portal.routers import entities, marks


SESSIONS = {
    'token-admin': {'user_id': 1, 'role': 'admin', 'district_id': None, 'mandal_id': None, 'school_id': None},
    'token-deo-d1': {'user_id': 2, 'role': 'deo', 'district_id': 1, 'mandal_id': None, 'school_id': None},
    'token-principal-s100': {'user_id': 4, 'role': 'school_admin', 'district_id': 1, 'mandal_id': 10, 'school_id': 100},
}

EXAM_ID = 1
MATH = 1
ENGLISH = 2
GRADE_9 = 1
GRADE_10 = 2


def _auth(token: str) -> dict:
    return {'Authorization': f'Bearer {token}'}


class MarksStatisticsTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_marks_statistics.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        enable_sqlite_foreign_keys(cls._engine)
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

        cls._orig_validate = router_guard.validate_session_token
        router_guard.validate_session_token = lambda token: SESSIONS.get(token)

        app = FastAPI()
        app.include_router(marks.router)
        app.include_router(entities.router)

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
            for model in (ClassStatistic, Mark, Student, Exam, Subject, SchoolClass, School, Mandal, District):
                db.query(model).delete()
            db.add_all([District(id=1, name='Narayanpet'), District(id=2, name='Mahabubnagar')])
            db.flush()
            db.add_all([Mandal(id=10, name='Maddur', district_id=1), Mandal(id=20, name='Jadcherla', district_id=2)])
            db.flush()
            db.add_all(
                [
                    School(id=100, name='ZPHS Maddur', udise_code='36000000100', district_id=1, mandal_id=10),
                    School(id=200, name='ZPHS Jadcherla', udise_code='36000000200', district_id=2, mandal_id=20),
                    SchoolClass(id=GRADE_9, grade_level=9),
                    SchoolClass(id=GRADE_10, grade_level=10),
                    Subject(id=MATH, name='Mathematics'),
                    Subject(id=ENGLISH, name='English'),
                    Exam(id=EXAM_ID, name='Quarterly', exam_code='Q1'),
                ]
            )
            db.flush()
            db.add_all(
                [
                    Student(id=1001, name='Anil', pen_number='P1001', school_id=100, class_id=GRADE_10),
                    Student(id=1002, name='Bhavya', pen_number='P1002', school_id=100, class_id=GRADE_10),
                    Student(id=1003, name='Chaitanya', pen_number='P1003', school_id=100, class_id=GRADE_10),
                    Student(id=2001, name='Deepa', pen_number='P2001', school_id=200, class_id=GRADE_10),
                ]
            )
            db.commit()
        finally:
            db.close()

    def _bulk(self, rows, token='token-admin', subject_id=MATH):
        payload = {'exam_id': EXAM_ID, 'subject_id': subject_id, 'marks_data': rows}
        return self.client.post('/api/marks/bulk-update', json=payload, headers=_auth(token))

    def _statistics(self):
        db = self._session_factory()
        try:
            rows = db.query(ClassStatistic).order_by(ClassStatistic.school_id.asc(), ClassStatistic.class_id.asc()).all()
            return [
                (row.exam_id, row.subject_id, row.school_id, row.class_id, row.average_marks, row.highest_marks, row.lowest_marks)
                for row in rows
            ]
        finally:
            db.close()

    def test_statistics_match_marks(self):
        res = self._bulk(
            [
                {'student_id': 1001, 'marks': 70, 'max_marks': 100},
                {'student_id': 1002, 'marks': 80, 'max_marks': 100},
                {'student_id': 1003, 'marks': 90, 'max_marks': 100},
            ]
        )
        self.assertEqual(res.status_code, 200, res.text)
        body = res.json()
        self.assertEqual(body['updated'], 3)
        self.assertEqual(body['classes'], [GRADE_10])
        self.assertEqual(
            body['statistics'],
            [
                {
                    'exam_id': EXAM_ID,
                    'subject_id': MATH,
                    'school_id': 100,
                    'class_id': GRADE_10,
                    'average_marks': 80.0,
                    'highest_marks': 90.0,
                    'lowest_marks': 70.0,
                }
            ],
        )
        self.assertEqual(self._statistics(), [(EXAM_ID, MATH, 100, GRADE_10, 80.0, 90.0, 70.0)])

    def test_same_batch_twice_is_idempotent(self):
        rows = [
            {'student_id': 1001, 'marks': 70},
            {'student_id': 1002, 'marks': 80},
            {'student_id': 1003, 'marks': 90},
        ]
        self.assertEqual(self._bulk(rows).status_code, 200)
        first = self._statistics()
        self.assertEqual(self._bulk(rows).status_code, 200)
        self.assertEqual(self._statistics(), first)

        db = self._session_factory()
        try:
            self.assertEqual(db.query(Mark).count(), 3)
        finally:
            db.close()

    def test_split_batches_cover_all_marks_of_the_class(self):
        self.assertEqual(self._bulk([{'student_id': 1003, 'marks': 90}]).status_code, 200)
        self.assertEqual(
            self._bulk([{'student_id': 1001, 'marks': 70}, {'student_id': 1002, 'marks': 80}]).status_code,
            200,
        )
        self.assertEqual(self._statistics(), [(EXAM_ID, MATH, 100, GRADE_10, 80.0, 90.0, 70.0)])

    def test_upsert_replaces_previous_mark(self):
        self._bulk([{'student_id': 1001, 'marks': 40}])
        self._bulk([{'student_id': 1001, 'marks': 65, 'grade': 'b2'}])
        res = self.client.get(
            '/api/marks/fetch',
            params={'exam_id': EXAM_ID, 'class_id': GRADE_10, 'subject_id': MATH},
            headers=_auth('token-admin'),
        )
        self.assertEqual(res.status_code, 200)
        rows = res.json()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['marks_obtained'], 65.0)
        self.assertEqual(rows[0]['grade'], 'B2')

    def test_grade_is_computed_when_omitted(self):
        self._bulk([{'student_id': 1001, 'marks': 95}, {'student_id': 1002, 'marks': 80}])
        db = self._session_factory()
        try:
            grades = dict(db.query(Mark.student_id, Mark.grade).all())
        finally:
            db.close()
        self.assertEqual(grades, {1001: 'A1', 1002: 'B1'})

    def test_validation_errors(self):
        self.assertEqual(self._bulk([]).status_code, 400)
        self.assertEqual(self._bulk([{'student_id': 1001, 'marks': 120, 'max_marks': 100}]).status_code, 422)
        self.assertEqual(self._bulk([{'student_id': 1001, 'marks': 10, 'max_marks': 0}]).status_code, 422)
        self.assertEqual(self._bulk([{'student_id': 1001, 'marks': -1}]).status_code, 422)
        self.assertEqual(self._bulk([{'student_id': 1001, 'marks': 10, 'grade': 'Z9'}]).status_code, 400)
        duplicate = self._bulk(
            [
                {'student_id': 1002, 'marks': 10},
                {'student_id': 1001, 'marks': 10},
                {'student_id': 1002, 'marks': 20},
                {'student_id': 1001, 'marks': 30},
                {'student_id': 1003, 'marks': 40},
            ]
        )
        self.assertEqual(duplicate.status_code, 400)
        self.assertEqual(duplicate.json()['detail'], 'Duplicate student_id in marks_data: [1001, 1002]')

    def test_unknown_student_rejects_whole_batch(self):
        res = self._bulk([{'student_id': 1001, 'marks': 50}, {'student_id': 9999, 'marks': 50}])
        self.assertEqual(res.status_code, 404)
        self.assertEqual(self._statistics(), [])

    def test_out_of_district_student_is_forbidden(self):
        res = self._bulk([{'student_id': 1001, 'marks': 50}, {'student_id': 2001, 'marks': 60}], token='token-deo-d1')
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json()['detail'], 'Outside District Jurisdiction')

        own = self._bulk([{'student_id': 1001, 'marks': 50}], token='token-deo-d1')
        self.assertEqual(own.status_code, 200)

    def test_storage_failure_rolls_back_marks(self):
        def failing_recompute(*args, **kwargs):
            raise OperationalError('UPDATE class_statistics', {}, Exception('disk I/O error'))

        with patch('results_portal.services.marks_service.recompute_class_statistics', failing_recompute):
            res = self._bulk([{'student_id': 1001, 'marks': 50}])
        self.assertEqual(res.status_code, 500)

        db = self._session_factory()
        try:
            self.assertEqual(db.query(Mark).count(), 0)
        finally:
            db.close()

    def test_schools_sharing_a_grade_level_keep_separate_statistics(self):
        res = self._bulk([{'student_id': 1001, 'marks': 95}, {'student_id': 2001, 'marks': 0}])
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(res.json()['classes'], [GRADE_10])
        self.assertEqual([row['school_id'] for row in res.json()['statistics']], [100, 200])
        self.assertEqual(
            self._statistics(),
            [
                (EXAM_ID, MATH, 100, GRADE_10, 95.0, 95.0, 95.0),
                (EXAM_ID, MATH, 200, GRADE_10, 0.0, 0.0, 0.0),
            ],
        )

        # A later batch for one school leaves the other school's row alone.
        self._bulk([{'student_id': 1002, 'marks': 85}])
        self.assertEqual(
            self._statistics(),
            [
                (EXAM_ID, MATH, 100, GRADE_10, 90.0, 95.0, 85.0),
                (EXAM_ID, MATH, 200, GRADE_10, 0.0, 0.0, 0.0),
            ],
        )

    def test_statistics_endpoint_and_fetch_scope(self):
        self._bulk([{'student_id': 1001, 'marks': 70}, {'student_id': 2001, 'marks': 30}])
        stats = self.client.get('/api/marks/statistics', params={'exam_id': EXAM_ID}, headers=_auth('token-admin'))
        self.assertEqual(stats.status_code, 200)
        self.assertEqual(
            [(row['school_id'], row['average_marks']) for row in stats.json()],
            [(100, 70.0), (200, 30.0)],
        )

        own = self.client.get(
            '/api/marks/statistics',
            params={'exam_id': EXAM_ID, 'school_id': 200},
            headers=_auth('token-principal-s100'),
        )
        self.assertEqual(own.status_code, 200)
        self.assertEqual([row['school_id'] for row in own.json()], [100])

        foreign = self.client.get(
            '/api/marks/statistics',
            params={'exam_id': EXAM_ID, 'school_id': 200},
            headers=_auth('token-deo-d1'),
        )
        self.assertEqual(foreign.status_code, 200)
        self.assertEqual(foreign.json(), [])

        scoped = self.client.get(
            '/api/marks/fetch',
            params={'exam_id': EXAM_ID, 'class_id': GRADE_10, 'school_id': 200},
            headers=_auth('token-principal-s100'),
        )
        self.assertEqual(scoped.status_code, 200)
        self.assertEqual([row['student_id'] for row in scoped.json()], [1001])

    def test_class_change_moves_statistics(self):
        self._bulk(
            [
                {'student_id': 1001, 'marks': 70},
                {'student_id': 1002, 'marks': 80},
                {'student_id': 1003, 'marks': 90},
            ]
        )
        res = self.client.put(
            '/api/entities/students/1003',
            json={'class_id': GRADE_9},
            headers=_auth('token-admin'),
        )
        self.assertEqual(res.status_code, 200, res.text)
        self.assertEqual(
            self._statistics(),
            [
                (EXAM_ID, MATH, 100, GRADE_9, 90.0, 90.0, 90.0),
                (EXAM_ID, MATH, 100, GRADE_10, 75.0, 80.0, 70.0),
            ],
        )

    def test_emptied_class_loses_its_statistic(self):
        self._bulk([{'student_id': 1001, 'marks': 70}])
        res = self.client.put('/api/entities/students/1001', json={'class_id': GRADE_9}, headers=_auth('token-admin'))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(self._statistics(), [(EXAM_ID, MATH, 100, GRADE_9, 70.0, 70.0, 70.0)])
