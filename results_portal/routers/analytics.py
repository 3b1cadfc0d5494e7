from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from results_portal.core.jurisdiction import Scope, resolve_scope
from results_portal.core.router_guard import raise_http_error, require_auth_user
from results_portal.db import get_db
from results_portal.request_context import EndpointNameRoute
from results_portal.services.analytics_service import (
    get_drill_down,
    get_entity_performance,
    get_stats,
    get_student_marks,
    get_subject_performance,
)


router = APIRouter(prefix='/api/analytics', tags=['Analytics'], route_class=EndpointNameRoute)


def _scope(
    district_id: int | None = Query(default=None),
    mandal_id: int | None = Query(default=None),
    school_id: int | None = Query(default=None),
    user: dict = Depends(require_auth_user),
) -> Scope:
    return resolve_scope(user, district_id=district_id, mandal_id=mandal_id, school_id=school_id)


@router.get('/stats')
def analytics_stats(
    exam_id: int | None = Query(default=None),
    scope: Scope = Depends(_scope),
    db: Session = Depends(get_db),
):
    return get_stats(db, scope, exam_id=exam_id)


@router.get('/drill-down')
def analytics_drill_down(
    level: str = Query(default='root'),
    parent_id: int | None = Query(default=None),
    exam_id: int | None = Query(default=None),
    scope: Scope = Depends(_scope),
    db: Session = Depends(get_db),
):
    return get_drill_down(db, scope, level=level, parent_id=parent_id, exam_id=exam_id)


@router.get('/entity-performance')
def analytics_entity_performance(
    level: str = Query(default='root'),
    parent_id: int | None = Query(default=None),
    exam_id: int | None = Query(default=None),
    scope: Scope = Depends(_scope),
    db: Session = Depends(get_db),
):
    return get_entity_performance(db, scope, level=level, parent_id=parent_id, exam_id=exam_id)


@router.get('/subject-performance')
def analytics_subject_performance(
    exam_id: int | None = Query(default=None),
    scope: Scope = Depends(_scope),
    db: Session = Depends(get_db),
):
    return get_subject_performance(db, scope, exam_id=exam_id)


@router.get('/student-marks')
def analytics_student_marks(
    exam_id: int | None = Query(default=None),
    scope: Scope = Depends(_scope),
    db: Session = Depends(get_db),
):
    try:
        return get_student_marks(db, scope, exam_id=exam_id)
    except ValueError as exc:
        raise_http_error(exc)
