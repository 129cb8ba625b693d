from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from studio_booking.database import get_db
from studio_booking.routes.availability_routes import SettingsResponse, settings_response
from studio_booking.routes.common import database_unavailable, ensure_database_ready
from studio_booking.scheduling import studios
from studio_booking.services.booking_settings import load_booking_settings

router = APIRouter(tags=['catalog'])

SESSION_OPTIONS = {
    studios.KARAOKE: list(studios.KARAOKE_OPTIONS),
    studios.LIVE: list(studios.LIVE_OPTIONS),
    studios.DRUM_PRACTICE: [],
    studios.BAND: list(studios.BAND_EQUIPMENT),
    studios.RECORDING: list(studios.RECORDING_OPTIONS),
    studios.MEETING: [],
}


class SessionTypeResponse(BaseModel):
    session_type: str
    options: list[str]
    needs_participants: bool


class StudioRateResponse(BaseModel):
    studio: str
    rates: dict[str, int]


class CatalogResponse(BaseModel):
    studios: list[StudioRateResponse]
    session_types: list[SessionTypeResponse]


class SuggestionRequest(BaseModel):
    session_type: str
    session_option: str | None = None


class SuggestionResponse(BaseModel):
    recommended_studio: str
    allowed_studios: list[str]
    explanation: str
    rate: int
    rate_unit: str


@router.get('/settings', response_model=SettingsResponse)
def get_settings(db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return settings_response(load_booking_settings(db))
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/studios', response_model=CatalogResponse)
def list_studios():
    return CatalogResponse(
        studios=[
            StudioRateResponse(studio=studio, rates=dict(studios.STUDIO_RATES[studio]))
            for studio in sorted(studios.STUDIO_RATES)
        ],
        session_types=[
            SessionTypeResponse(
                session_type=session_type,
                options=SESSION_OPTIONS[session_type],
                needs_participants=session_type not in studios.NO_SELECTOR_SESSION_TYPES,
            )
            for session_type in studios.SESSION_TYPES
        ],
    )


@router.post('/studios/suggestion', response_model=SuggestionResponse)
def suggest_studio(data: SuggestionRequest):
    suggestion = studios.suggest_studio(data.session_type, data.session_option)
    rate = studios.studio_rate(suggestion.recommended_studio, data.session_type, data.session_option)
    return SuggestionResponse(
        recommended_studio=suggestion.recommended_studio,
        allowed_studios=list(suggestion.allowed_studios),
        explanation=suggestion.explanation,
        rate=rate.amount,
        rate_unit=rate.unit,
    )
