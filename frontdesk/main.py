import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from frontdesk.core.config import CORS_ALLOWED_ORIGINS, validate_runtime_config
from frontdesk.database import Base, engine, ensure_appointment_schema, ensure_reservation_schema
from frontdesk.models import appointment, availability, clinic, patient, reservation, walk_in_pool  # noqa: F401
from frontdesk.routes import scheduling_routes

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    validate_runtime_config()

    try:
        Base.metadata.create_all(bind=engine)
        ensure_appointment_schema()
        ensure_reservation_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.get('/')
def root():
    return {'status': 'Front Desk Scheduler Running'}


app.include_router(scheduling_routes.router, prefix='/scheduling')
