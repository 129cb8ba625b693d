import logging

from fastapi import FastAPI, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from studio_booking.core import config
from studio_booking.core.errors import BookingError
from studio_booking.database import Base, engine, ensure_booking_schema
from studio_booking.models import availability, booking, customer, device, setting  # noqa: F401
from studio_booking.routes import auth_routes, availability_routes, booking_routes, catalog_routes

logging.basicConfig(level=logging.INFO)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


async def booking_error_handler(request: Request, exc: BookingError):
    return await http_exception_handler(request, exc.to_http_exception())


app.add_exception_handler(BookingError, booking_error_handler)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_booking_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.get('/')
def root():
    return {'status': 'Studio Booking API Running'}


app.include_router(auth_routes.router, prefix='/auth')
app.include_router(availability_routes.router, prefix='/availability')
app.include_router(catalog_routes.router)
app.include_router(booking_routes.router, prefix='/bookings')
