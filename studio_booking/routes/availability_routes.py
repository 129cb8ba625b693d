import logging
from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studio_booking.auth.dependencies import require_staff
from studio_booking.core.errors import BookingError
from studio_booking.database import get_db
from studio_booking.models.availability import AvailabilitySlot
from studio_booking.models.booking import STUDIOS
from studio_booking.routes.common import database_unavailable, ensure_database_ready
from studio_booking.scheduling.slabs import CHOICE_STEP_MINUTES, end_choices, start_choices
from studio_booking.scheduling.slots import GRID_CLOSE_TIME, GRID_OPEN_TIME, format_time, parse_time, time_to_minutes
from studio_booking.services import availability_service, booking_guard

router = APIRouter(tags=['availability'])

logger = logging.getLogger(__name__)

MAX_BLOCK_REASON_LENGTH = 200


def _normalize_studio(value: str) -> str:
    normalized = value.strip().upper()
    if normalized not in STUDIOS:
        raise ValueError('Studio must be A, B or C.')
    return normalized


class SlotResponse(BaseModel):
    start: str
    end: str
    label: str
    status: str
    is_available: bool


class SlabResponse(BaseModel):
    start: str
    end: str
    label: str
    duration: float
    start_choices: list[str]


class SettingsResponse(BaseModel):
    min_booking_duration: float
    max_booking_duration: float
    booking_buffer: int
    advance_booking_days: int
    default_open_time: str
    default_close_time: str


class AvailabilityResponse(BaseModel):
    studio: str
    date: date
    slots: list[SlotResponse]
    slabs: list[SlabResponse]
    settings: SettingsResponse
    end_choices: list[str] = []


class BookedIntervalResponse(BaseModel):
    id: int
    studio: str
    session_type: str
    date: date
    start_time: time
    end_time: time
    status: str

    class Config:
        from_attributes = True


class CreateBlockRequest(BaseModel):
    studio: str
    date: date
    start_time: time
    end_time: time
    is_available: bool = False
    reason: str | None = None

    @field_validator('studio')
    @classmethod
    def validate_studio(cls, value: str) -> str:
        return _normalize_studio(value)

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_boundary(cls, value: time) -> time:
        if time_to_minutes(value) % CHOICE_STEP_MINUTES != 0:
            raise ValueError(f'Times must be on {CHOICE_STEP_MINUTES}-minute boundaries.')
        return parse_time(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) > MAX_BLOCK_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_BLOCK_REASON_LENGTH} characters or fewer.')
        return normalized or None


class BlockResponse(BaseModel):
    id: int
    studio: str
    date: date
    start_time: time
    end_time: time
    is_available: bool
    reason: str | None = None

    class Config:
        from_attributes = True


def settings_response(settings) -> SettingsResponse:
    return SettingsResponse(**settings.as_public_dict())


@router.get('', response_model=AvailabilityResponse)
def get_availability(
    studio: str = Query(...),
    slot_date: date = Query(..., alias='date'),
    min_duration: float | None = Query(default=None, gt=0),
    exclude_booking_id: int | None = Query(default=None),
    start: time | None = Query(default=None),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        view = availability_service.get_availability(
            db,
            studio.strip().upper(),
            slot_date,
            min_duration=min_duration,
            exclude_booking_id=exclude_booking_id,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    choice_duration = view.settings.min_booking_duration if min_duration is None else min_duration
    end_choice_times = []
    if start is not None:
        for slab in view.slabs:
            if slab.start <= start < slab.end:
                end_choice_times = end_choices(slab, start, choice_duration, view.settings.max_booking_duration)
                break

    return AvailabilityResponse(
        studio=view.studio,
        date=view.date,
        slots=[
            SlotResponse(
                start=format_time(slot.start),
                end=format_time(slot.end),
                label=slot.slot.label,
                status=slot.status,
                is_available=slot.available,
            )
            for slot in view.slots
        ],
        slabs=[
            SlabResponse(
                start=format_time(slab.start),
                end=format_time(slab.end),
                label=slab.label,
                duration=slab.duration,
                start_choices=[format_time(choice) for choice in start_choices(slab, choice_duration)],
            )
            for slab in view.slabs
        ],
        settings=settings_response(view.settings),
        end_choices=[format_time(choice) for choice in end_choice_times],
    )


@router.get('/bookings', response_model=list[BookedIntervalResponse])
def list_bookings_for_date(slot_date: date = Query(..., alias='date'), db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return availability_service.get_bookings_for_date(db, slot_date)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/blocks', response_model=list[BlockResponse])
def list_blocks(
    slot_date: date | None = Query(default=None, alias='date'),
    studio: str | None = Query(default=None),
    staff_id: str = Depends(require_staff),
    db: Session = Depends(get_db),
):
    del staff_id
    ensure_database_ready()

    try:
        query = db.query(AvailabilitySlot)
        if slot_date is not None:
            query = query.filter(AvailabilitySlot.date == slot_date)
        else:
            query = query.filter(AvailabilitySlot.date >= date.today())
        if studio:
            query = query.filter(AvailabilitySlot.studio == studio.strip().upper())
        return query.order_by(
            AvailabilitySlot.date.asc(),
            AvailabilitySlot.studio.asc(),
            AvailabilitySlot.start_time.asc(),
        ).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/blocks', response_model=BlockResponse, status_code=status.HTTP_201_CREATED)
def create_block(data: CreateBlockRequest, staff_id: str = Depends(require_staff), db: Session = Depends(get_db)):
    if data.end_time <= data.start_time:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='End time must be after start time.')
    if data.start_time < GRID_OPEN_TIME or data.end_time > GRID_CLOSE_TIME:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Times must fall between {format_time(GRID_OPEN_TIME)} and {format_time(GRID_CLOSE_TIME)}.',
        )

    ensure_database_ready()

    try:
        block = booking_guard.add_availability_window(
            db,
            data.studio,
            data.date,
            data.start_time,
            data.end_time,
            is_available=data.is_available,
            reason=data.reason,
        )
    except BookingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    logger.info('Staff %s added %s window for studio %s on %s', staff_id,
                'open' if block.is_available else 'blocked', block.studio, block.date)
    return block


@router.delete('/blocks/{block_id}', status_code=status.HTTP_204_NO_CONTENT)
def remove_block(block_id: int, staff_id: str = Depends(require_staff), db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        block = db.query(AvailabilitySlot).filter(AvailabilitySlot.id == block_id).first()
        if not block:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Availability window not found.')

        db.delete(block)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    logger.info('Staff %s removed availability window %s', staff_id, block_id)
