from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from results_portal.config import settings
from results_portal.db import Base, SessionLocal, engine
from results_portal.request_context import EndpointNameRoute, actor_label, endpoint_label
from results_portal.routers import admin, analytics, auth, entities, marks, public, schools
from results_portal.services.bootstrap_service import run_startup_bootstrap

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        run_startup_bootstrap(db)
    finally:
        db.close()
    yield


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('results_portal.request').info(
            'request_slow endpoint=%s actor=%s status_code=%s duration_ms=%.2f',
            endpoint_label(request),
            actor_label(request),
            response.status_code,
            duration_ms,
        )
    return response


app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(entities.router)
app.include_router(schools.router)
app.include_router(marks.router)
app.include_router(analytics.router)
app.include_router(public.router)


@app.get('/')
def health():
    return {'app': settings.app_name, 'status': 'ok'}


@app.get('/health')
def healthcheck():
    return {'status': 'ok'}
