from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from results_portal.core.router_guard import raise_http_error, require_auth_user
from results_portal.db import get_db
from results_portal.request_context import EndpointNameRoute
from results_portal.services.entity_service import (
    create_entity,
    delete_entity,
    list_entities,
    list_exams,
    parse_kind,
    update_entity,
)


router = APIRouter(prefix='/api', tags=['Entities'], route_class=EndpointNameRoute)


def _kind_or_404(kind: str):
    try:
        return parse_kind(kind)
    except LookupError as exc:
        raise_http_error(exc)


@router.get('/exams')
def exams_list(_: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    return list_exams(db)


@router.get('/entities/{kind}')
def entities_list(
    kind: str,
    district_id: int | None = Query(default=None),
    mandal_id: int | None = Query(default=None),
    school_id: int | None = Query(default=None),
    class_id: int | None = Query(default=None),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    entity_kind = _kind_or_404(kind)
    filters = {'district_id': district_id, 'mandal_id': mandal_id, 'school_id': school_id, 'class_id': class_id}
    return list_entities(db, user, entity_kind, filters=filters)


@router.post('/entities/{kind}/add')
def entities_add(
    kind: str,
    payload: dict[str, Any] = Body(...),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    entity_kind = _kind_or_404(kind)
    try:
        return create_entity(db, user, entity_kind, payload)
    except (ValueError, LookupError, PermissionError) as exc:
        raise_http_error(exc)


@router.put('/entities/{kind}/{entity_id}')
def entities_update(
    kind: str,
    entity_id: int,
    payload: dict[str, Any] = Body(...),
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    entity_kind = _kind_or_404(kind)
    try:
        return update_entity(db, user, entity_kind, entity_id, payload)
    except (ValueError, LookupError, PermissionError) as exc:
        raise_http_error(exc)


@router.delete('/entities/{kind}/{entity_id}')
def entities_delete(
    kind: str,
    entity_id: int,
    user: dict = Depends(require_auth_user),
    db: Session = Depends(get_db),
):
    entity_kind = _kind_or_404(kind)
    try:
        return delete_entity(db, user, entity_kind, entity_id)
    except (ValueError, LookupError, PermissionError) as exc:
        raise_http_error(exc)
