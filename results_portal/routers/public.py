from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from results_portal.core.router_guard import raise_http_error
from results_portal.db import get_db
from results_portal.request_context import EndpointNameRoute
from results_portal.services.public_result_service import get_public_result


router = APIRouter(prefix='/api/public', tags=['Public'], route_class=EndpointNameRoute)


@router.get('/student/{token}')
def public_student_result(token: str, db: Session = Depends(get_db)):
    try:
        return get_public_result(db, token)
    except (ValueError, LookupError) as exc:
        raise_http_error(exc)
