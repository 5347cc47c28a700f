import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from booking_backend.core import config
from booking_backend.core.errors import SchedulingError
from booking_backend.database import Base, engine, ensure_appointment_schema, ensure_suggestion_schema
from booking_backend.models import appointment, notification, suggestion, user  # noqa: F401
from booking_backend.routes import appointment_routes, job_routes, suggestion_routes

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

logger = logging.getLogger(__name__)

app = FastAPI(title='Appointment Negotiation API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
        ensure_suggestion_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.exception_handler(SchedulingError)
async def handle_scheduling_error(request: Request, exc: SchedulingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={'detail': exc.message})


@app.exception_handler(SQLAlchemyError)
async def handle_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception('Database error on %s %s', request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content={'detail': 'Database unavailable. Verify DATABASE_URL and database credentials.'},
    )


@app.get('/')
def root():
    return {'status': 'Appointment Negotiation API Running'}


app.include_router(appointment_routes.router, prefix='/appointments')
app.include_router(suggestion_routes.router, prefix='/suggestions')
app.include_router(job_routes.router, prefix='/jobs')
