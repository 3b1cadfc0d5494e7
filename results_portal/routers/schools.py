from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from results_portal.core.router_guard import raise_http_error, require_auth_user, require_role
from results_portal.core.roles import roles_at_least
from results_portal.db import get_db
from results_portal.models import Role
from results_portal.request_context import EndpointNameRoute
from results_portal.schemas import SchoolWithClassesCreate
from results_portal.services.qr_service import get_qr_data
from results_portal.services.school_service import create_school_with_classes


router = APIRouter(prefix='/api/schools', tags=['Schools'], route_class=EndpointNameRoute)


@router.post('/create')
def schools_create(
    payload: SchoolWithClassesCreate,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    require_role(user, roles_at_least(Role.MEO.value))
    try:
        return create_school_with_classes(db, user, payload.model_dump())
    except (ValueError, LookupError, PermissionError) as exc:
        raise_http_error(exc)


@router.get('/{school_id}/qr-data')
def schools_qr_data(
    school_id: int,
    class_id: str = Query(default='all'),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    try:
        return get_qr_data(db, user, school_id=school_id, class_filter=class_id)
    except (ValueError, LookupError, PermissionError) as exc:
        raise_http_error(exc)
