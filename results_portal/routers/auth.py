from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from results_portal.core.errors import AuthenticationError
from results_portal.core.router_guard import raise_http_error, require_auth_user
from results_portal.db import get_db
from results_portal.models import User
from results_portal.request_context import EndpointNameRoute
from results_portal.schemas import LoginRequest
from results_portal.services.auth_service import clear_session_token, identity_payload, login


router = APIRouter(prefix='/api/auth', tags=['Auth'], route_class=EndpointNameRoute)


@router.post('/login')
def auth_login(payload: LoginRequest, db: Session = Depends(get_db)):
    try:
        return login(db, payload.username, payload.password)
    except AuthenticationError as exc:
        raise_http_error(exc)


@router.post('/logout')
def auth_logout(user: dict = Depends(require_auth_user)):
    clear_session_token(user.get('token'))
    return {'ok': True}


@router.get('/me')
def auth_me(user: dict = Depends(require_auth_user), db: Session = Depends(get_db)):
    row = db.query(User).filter(User.id == user['user_id']).first()
    if not row:
        raise HTTPException(status_code=401, detail='Unauthorized', headers={'WWW-Authenticate': 'Bearer'})
    return identity_payload(row)
