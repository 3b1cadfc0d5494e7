from __future__ import annotations

import logging
from typing import Iterable

from fastapi import HTTPException, Request

from results_portal.core.errors import AuthenticationError, ConflictError, JurisdictionError, NotFoundError, RoleHierarchyError
from results_portal.services.auth_service import validate_session_token


logger = logging.getLogger(__name__)

_UNAUTHORIZED_HEADERS = {'WWW-Authenticate': 'Bearer'}


def _resolve_token(request: Request) -> str | None:
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    return None


def require_auth_user(request: Request) -> dict:
    token = _resolve_token(request)
    session = validate_session_token(token)
    if not session:
        raise HTTPException(status_code=401, detail='Unauthorized', headers=_UNAUTHORIZED_HEADERS)
    user = {
        'user_id': int(session.get('user_id') or 0),
        'username': str(session.get('username') or ''),
        'role': str(session.get('role') or '').strip().lower(),
        'district_id': session.get('district_id'),
        'mandal_id': session.get('mandal_id'),
        'school_id': session.get('school_id'),
        'token': token,
    }
    if user['user_id'] <= 0:
        raise HTTPException(status_code=401, detail='Unauthorized', headers=_UNAUTHORIZED_HEADERS)
    request.state.auth_user = user
    return user


def require_role(user: dict, allowed_roles: set[str] | Iterable[str]) -> None:
    normalized = {str(role).strip().lower() for role in allowed_roles}
    if str(user.get('role') or '').strip().lower() not in normalized:
        logger.warning('role_denied user_id=%s role=%s allowed=%s', user.get('user_id'), user.get('role'), sorted(normalized))
        raise HTTPException(status_code=403, detail='Forbidden')


def raise_http_error(exc: Exception) -> None:
    """Translate a service-layer exception into the matching HTTP error."""
    if isinstance(exc, HTTPException):
        raise exc
    if isinstance(exc, AuthenticationError):
        raise HTTPException(status_code=401, detail=str(exc), headers=_UNAUTHORIZED_HEADERS) from exc
    if isinstance(exc, (JurisdictionError, RoleHierarchyError)):
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    if isinstance(exc, PermissionError):
        raise HTTPException(status_code=403, detail=str(exc) or 'Forbidden') from exc
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else 'Not found') from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise exc
