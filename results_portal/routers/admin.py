from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from results_portal.core.jurisdiction import resolve_scope
from results_portal.core.router_guard import raise_http_error, require_auth_user, require_role
from results_portal.core.roles import roles_at_least
from results_portal.db import get_db
from results_portal.models import Role
from results_portal.request_context import EndpointNameRoute
from results_portal.schemas import UserCreateRequest, UserUpdateRequest
from results_portal.services.analytics_service import get_overview_counts
from results_portal.services.user_service import create_user, list_users, update_user


router = APIRouter(prefix='/api/admin', tags=['Admin'], route_class=EndpointNameRoute)

# School admins sit at the bottom of the hierarchy and manage nobody.
_USER_MANAGERS = roles_at_least(Role.MEO.value)


@router.post('/create-user')
def admin_create_user(
    payload: UserCreateRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    try:
        return create_user(db, user, payload.model_dump())
    except (ValueError, LookupError, PermissionError) as exc:
        raise_http_error(exc)


@router.get('/users')
def admin_list_users(
    district_id: int | None = Query(default=None),
    mandal_id: int | None = Query(default=None),
    school_id: int | None = Query(default=None),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    require_role(user, _USER_MANAGERS)
    return list_users(db, user, district_id=district_id, mandal_id=mandal_id, school_id=school_id)


@router.put('/users/{user_id}')
def admin_update_user(
    user_id: int,
    payload: UserUpdateRequest,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    try:
        return update_user(db, user, user_id, payload.model_dump(exclude_unset=True))
    except (ValueError, LookupError, PermissionError) as exc:
        raise_http_error(exc)


@router.get('/stats')
def admin_stats(
    district_id: int | None = Query(default=None),
    mandal_id: int | None = Query(default=None),
    school_id: int | None = Query(default=None),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    scope = resolve_scope(user, district_id=district_id, mandal_id=mandal_id, school_id=school_id)
    return get_overview_counts(db, scope)
