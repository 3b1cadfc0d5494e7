import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from results_portal.core.jurisdiction import resolve_scope
from results_portal.core.router_guard import raise_http_error, require_auth_user
from results_portal.db import get_db
from results_portal.request_context import EndpointNameRoute
from results_portal.schemas import MarksBulkUpdateRequest
from results_portal.services.marks_service import bulk_update_marks, fetch_marks
from results_portal.services.statistics_service import list_class_statistics


logger = logging.getLogger(__name__)
router = APIRouter(prefix='/api/marks', tags=['Marks'], route_class=EndpointNameRoute)


@router.get('/fetch')
def marks_fetch(
    exam_id: int = Query(...),
    class_id: int = Query(...),
    subject_id: int | None = Query(default=None),
    school_id: int | None = Query(default=None),
    district_id: int | None = Query(default=None),
    mandal_id: int | None = Query(default=None),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    scope = resolve_scope(user, district_id=district_id, mandal_id=mandal_id, school_id=school_id)
    return fetch_marks(db, scope, exam_id=exam_id, class_id=class_id, subject_id=subject_id)


@router.post('/bulk-update')
def marks_bulk_update(
    payload: MarksBulkUpdateRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    entries = [entry.model_dump() for entry in payload.marks_data]
    try:
        return bulk_update_marks(db, user, exam_id=payload.exam_id, subject_id=payload.subject_id, entries=entries)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            'marks_bulk_update_failed exam_id=%s subject_id=%s user_id=%s',
            payload.exam_id,
            payload.subject_id,
            user.get('user_id'),
        )
        raise HTTPException(status_code=500, detail='Failed to save marks; no changes were applied') from exc
    except (ValueError, LookupError, PermissionError) as exc:
        raise_http_error(exc)


@router.get('/statistics')
def marks_statistics(
    exam_id: int = Query(...),
    subject_id: int | None = Query(default=None),
    class_id: int | None = Query(default=None),
    school_id: int | None = Query(default=None),
    district_id: int | None = Query(default=None),
    mandal_id: int | None = Query(default=None),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    scope = resolve_scope(user, district_id=district_id, mandal_id=mandal_id, school_id=school_id)
    return list_class_statistics(db, scope, exam_id=exam_id, subject_id=subject_id, class_id=class_id)
