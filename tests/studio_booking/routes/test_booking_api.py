import os
from datetime import date, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from studio_booking.auth import jwt_handler  # noqa: E402
from studio_booking.core import config  # noqa: E402
from studio_booking.core.errors import BookingError, ConflictError, RateLimitError  # noqa: E402
from studio_booking.database import Base, get_db  # noqa: E402
from studio_booking.main import app, booking_error_handler  # noqa: E402

PHONE = '5551234567'
BOOKING_DAY = (date.today() + timedelta(days=3)).isoformat()
ROUTE_MODULES = (
    'studio_booking.routes.auth_routes',
    'studio_booking.routes.availability_routes',
    'studio_booking.routes.booking_routes',
    'studio_booking.routes.catalog_routes',
)


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch):
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = testing_session_local()
        try:
            yield db
        finally:
            db.close()

    for module in ROUTE_MODULES:
        monkeypatch.setattr(f'{module}.ensure_database_ready', lambda: None)
    monkeypatch.setattr(config, 'OTP_DEBUG_ECHO', True)
    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)


def _staff_headers() -> dict[str, str]:
    token = jwt_handler.create_access_token('front-desk', role=jwt_handler.ROLE_STAFF)
    return {'Authorization': f'Bearer {token}'}


def _verified_token(client: TestClient, phone: str = PHONE, fingerprint: str | None = None) -> str:
    sent = client.post('/auth/send-otp', json={'phone': phone})
    assert sent.status_code == 200
    verified = client.post(
        '/auth/verify-otp',
        json={'phone': phone, 'code': sent.json()['debug_code'], 'device_fingerprint': fingerprint},
    )
    assert verified.status_code == 200
    return verified.json()['access_token']


def _booking_body(**overrides) -> dict:
    body = {
        'phone': PHONE,
        'studio': 'C',
        'session_type': 'Karaoke',
        'session_option': '1_5',
        'date': BOOKING_DAY,
        'start_time': '10:00',
        'end_time': '12:00',
        'name': 'Ada',
    }
    body.update(overrides)
    return body


def test_root_reports_status(client: TestClient) -> None:
    assert client.get('/').json() == {'status': 'Studio Booking API Running'}


def test_availability_lists_every_grid_slot(client: TestClient) -> None:
    response = client.get('/availability', params={'studio': 'A', 'date': BOOKING_DAY})

    assert response.status_code == 200
    payload = response.json()
    assert len(payload['slots']) == 14
    assert payload['slabs'][0]['start'] == '08:00'
    assert payload['settings']['advance_booking_days'] == config.DEFAULT_ADVANCE_BOOKING_DAYS


def test_settings_and_studio_catalog(client: TestClient) -> None:
    settings = client.get('/settings').json()
    catalog = client.get('/studios').json()

    assert settings['default_open_time'] == '08:00'
    assert [studio['studio'] for studio in catalog['studios']] == ['A', 'B', 'C']
    meeting = next(item for item in catalog['session_types'] if item['session_type'] == 'Meetings/Classes')
    assert meeting['needs_participants'] is False


def test_studio_suggestion_endpoint(client: TestClient) -> None:
    response = client.post('/studios/suggestion', json={'session_type': 'Karaoke', 'session_option': '1_5'})

    assert response.json()['recommended_studio'] == 'C'
    assert response.json()['allowed_studios'] == ['C', 'B', 'A']
    assert response.json()['rate'] == 250


def test_book_with_verified_token_then_slot_is_taken(client: TestClient) -> None:
    token = _verified_token(client)
    headers = {'Authorization': f'Bearer {token}'}

    created = client.post('/bookings', json=_booking_body(), headers=headers)
    duplicate = client.post('/bookings', json=_booking_body(start_time='11:00', end_time='13:00'), headers=headers)
    availability = client.get('/availability', params={'studio': 'C', 'date': BOOKING_DAY}).json()

    assert created.status_code == 201
    assert created.json()['total_amount'] == 500
    assert duplicate.status_code == 409
    assert duplicate.json()['detail']['code'] == 'slot_taken'
    statuses = {slot['start']: slot['status'] for slot in availability['slots']}
    assert statuses['10:00'] == statuses['11:00'] == 'booked'


def test_booking_without_verification_is_unauthorized(client: TestClient) -> None:
    response = client.post('/bookings', json=_booking_body())

    assert response.status_code == 401
    assert response.json()['detail']['code'] == 'verification_required'


def test_invalid_booking_request_returns_400(client: TestClient) -> None:
    response = client.post('/bookings', json=_booking_body(studio='D'), headers=_staff_headers())

    assert response.status_code == 400
    assert response.json()['detail']['message'] == 'Unknown studio.'


def test_send_otp_twice_is_rate_limited(client: TestClient) -> None:
    client.post('/auth/send-otp', json={'phone': PHONE})

    response = client.post('/auth/send-otp', json={'phone': PHONE})

    assert response.status_code == 429
    assert int(response.headers['Retry-After']) > 0


def test_wrong_code_is_rejected_without_leaking(client: TestClient) -> None:
    sent = client.post('/auth/send-otp', json={'phone': PHONE}).json()
    wrong_code = '000000' if sent['debug_code'] != '000000' else '111111'

    known = client.post('/auth/verify-otp', json={'phone': PHONE, 'code': wrong_code})
    unknown = client.post('/auth/verify-otp', json={'phone': '5550000000', 'code': wrong_code})

    assert known.status_code == unknown.status_code == 401
    assert known.json()['detail']['message'] == unknown.json()['detail']['message']


def test_trusted_device_flow(client: TestClient) -> None:
    _verified_token(client, fingerprint='fp-laptop')
    device = {'phone': PHONE, 'device_fingerprint': 'fp-laptop'}

    assert client.post('/auth/verify-device', json=device).json() == {'trusted': True}
    assert client.post('/auth/verify-device', json={**device, 'device_fingerprint': 'other'}).json() == {
        'trusted': False,
    }

    created = client.post('/bookings', json=_booking_body(device_fingerprint='fp-laptop'))
    assert created.status_code == 201

    auto_login = client.post('/auth/auto-login', json=device).json()
    assert auto_login['authenticated'] is True
    assert auto_login['name'] == 'Ada'

    revoked = client.delete('/auth/verify-device', params=device)
    assert revoked.json() == {'revoked': 1}
    assert client.post('/auth/verify-device', json=device).json() == {'trusted': False}


def test_check_user_hides_contact_details_from_strangers(client: TestClient) -> None:
    client.post('/bookings', json=_booking_body(email='ada@example.com'), headers=_staff_headers())

    stranger = client.post('/auth/check-user', json={'phone': PHONE}).json()
    unknown = client.post('/auth/check-user', json={'phone': '5550000000'}).json()

    assert stranger == {'exists': True, 'name': None, 'email': None}
    assert unknown['exists'] is False


def test_modify_cancel_and_list_upcoming(client: TestClient) -> None:
    token = _verified_token(client)
    headers = {'Authorization': f'Bearer {token}'}
    booking_id = client.post('/bookings', json=_booking_body(), headers=headers).json()['id']

    moved = client.put(
        f'/bookings/{booking_id}',
        json=_booking_body(start_time='14:00', end_time='16:00'),
        headers=headers,
    )
    upcoming = client.get('/bookings/upcoming', params={'phone': PHONE}, headers=headers)
    cancelled = client.post(f'/bookings/{booking_id}/cancel', json={'phone': PHONE}, headers=headers)
    cancelled_again = client.post(f'/bookings/{booking_id}/cancel', json={'phone': PHONE}, headers=headers)

    assert moved.status_code == 200
    assert moved.json()['id'] == booking_id
    assert moved.json()['start_time'] == '14:00:00'
    assert [item['id'] for item in upcoming.json()] == [booking_id]
    assert cancelled.json()['status'] == 'cancelled'
    assert cancelled_again.status_code == 200
    assert client.get('/bookings/upcoming', params={'phone': PHONE}, headers=headers).json() == []


def test_staff_blocks_require_staff_token(client: TestClient) -> None:
    body = {'studio': 'A', 'date': BOOKING_DAY, 'start_time': '14:00', 'end_time': '16:00', 'reason': 'Maintenance'}

    anonymous = client.post('/availability/blocks', json=body)
    customer = client.post('/availability/blocks', json=body, headers={
        'Authorization': f'Bearer {jwt_handler.create_access_token(PHONE)}',
    })
    created = client.post('/availability/blocks', json=body, headers=_staff_headers())

    assert anonymous.status_code in (401, 403)
    assert customer.status_code == 403
    assert created.status_code == 201

    availability = client.get('/availability', params={'studio': 'A', 'date': BOOKING_DAY}).json()
    statuses = {slot['start']: slot['status'] for slot in availability['slots']}
    assert statuses['14:00'] == statuses['15:00'] == 'unavailable'

    listed = client.get('/availability/blocks', params={'date': BOOKING_DAY}, headers=_staff_headers()).json()
    assert [block['id'] for block in listed] == [created.json()['id']]

    removed = client.delete(f'/availability/blocks/{created.json()["id"]}', headers=_staff_headers())
    assert removed.status_code == 204


def test_block_over_existing_booking_conflicts(client: TestClient) -> None:
    client.post('/bookings', json=_booking_body(), headers=_staff_headers())

    response = client.post(
        '/availability/blocks',
        json={'studio': 'C', 'date': BOOKING_DAY, 'start_time': '11:00', 'end_time': '12:00'},
        headers=_staff_headers(),
    )

    assert response.status_code == 409


def test_booking_errors_escaping_a_route_use_the_structured_detail() -> None:
    error_app = FastAPI()
    error_app.add_exception_handler(BookingError, booking_error_handler)

    @error_app.get('/taken')
    def taken():
        raise ConflictError('Slot taken.', code='slot_taken')

    @error_app.get('/slow-down')
    def slow_down():
        raise RateLimitError('Wait.', retry_after=12)

    error_client = TestClient(error_app)
    taken_response = error_client.get('/taken')
    limited = error_client.get('/slow-down')

    assert app.exception_handlers[BookingError] is booking_error_handler
    assert taken_response.status_code == 409
    assert taken_response.json()['detail'] == {'message': 'Slot taken.', 'code': 'slot_taken', 'details': {}}
    assert limited.status_code == 429
    assert limited.headers['Retry-After'] == '12'


def test_availability_offers_end_choices_for_a_chosen_start(client: TestClient) -> None:
    client.post('/bookings', json=_booking_body(), headers=_staff_headers())
    params = {'studio': 'C', 'date': BOOKING_DAY}

    unbounded = client.get('/availability', params=params).json()
    before_booking = client.get('/availability', params={**params, 'start': '08:00'}).json()
    after_booking = client.get('/availability', params={**params, 'start': '12:00'}).json()
    inside_booking = client.get('/availability', params={**params, 'start': '10:30'}).json()

    assert unbounded['end_choices'] == []
    assert before_booking['end_choices'] == ['09:00', '09:30', '10:00']
    assert after_booking['end_choices'][0] == '13:00'
    assert after_booking['end_choices'][-1] == '20:00'
    assert inside_booking['end_choices'] == []
