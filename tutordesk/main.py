from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from tutordesk.config import settings
from tutordesk.db import Base, engine
from tutordesk.errors import register_exception_handlers
from tutordesk.metrics import flush_cache_metrics
from tutordesk.route_logging import EndpointNameRoute
from tutordesk.routers import auth, courses, dashboard, lessons, revenue, students, users

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield
    flush_cache_metrics()


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)
register_exception_handlers(app)


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('tutordesk.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response


app.include_router(auth.router)
app.include_router(students.router)
app.include_router(courses.router)
app.include_router(lessons.router)
app.include_router(revenue.router)
app.include_router(dashboard.router)
app.include_router(users.router)


@app.get('/health')
def health():
    return {'status': 'ok', 'app': settings.app_name, 'env': settings.app_env}
