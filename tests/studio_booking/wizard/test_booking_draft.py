from datetime import date, time
from types import SimpleNamespace

import pytest

from studio_booking.core.errors import ValidationError
from studio_booking.scheduling import studios
from studio_booking.wizard.draft import (
    STEP_CONFIRM,
    STEP_OTP,
    STEP_PARTICIPANTS,
    STEP_PHONE,
    STEP_REVIEW,
    STEP_SESSION,
    STEP_STUDIO,
    STEP_TIME,
    BookingDraftStateMachine,
    DeviceTrustHints,
    StepBlockedError,
)

DAY = date(2030, 1, 8)


class RecordingSubmit:
    def __init__(self, result='booking-1') -> None:
        self.calls = []
        self.result = result

    def __call__(self, draft):
        self.calls.append(draft)
        return self.result


def _existing_booking() -> SimpleNamespace:
    return SimpleNamespace(
        id=42,
        phone='5551234567',
        name='Ada',
        email='ada@example.com',
        session_type=studios.KARAOKE,
        session_option='6_10',
        song_count=None,
        studio='B',
        date=DAY,
        start_time=time(10, 0),
        end_time=time(12, 0),
    )


def test_wizard_starts_at_phone_and_needs_ten_digits() -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())

    assert machine.current_step == STEP_PHONE
    with pytest.raises(StepBlockedError):
        machine.advance()

    machine.set_identity('555-123-456')
    assert machine.can_enter(STEP_SESSION) is False

    machine.set_identity('555-123-4567')
    assert machine.advance() == STEP_SESSION


@pytest.mark.parametrize('session_type', [studios.DRUM_PRACTICE, studios.MEETING])
def test_sessions_without_selector_skip_participants(session_type: str) -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())
    machine.set_identity('5551234567')
    machine.advance()

    machine.select_session(session_type)

    assert machine.can_enter(STEP_PARTICIPANTS) is False
    assert machine.advance() == STEP_STUDIO


def test_karaoke_goes_through_participants_and_recomputes_studio() -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())
    machine.set_identity('5551234567')
    machine.advance()
    machine.select_session(studios.KARAOKE)

    assert machine.advance() == STEP_PARTICIPANTS
    with pytest.raises(StepBlockedError):
        machine.advance()

    machine.select_option('6_10')

    assert machine.draft.recommended_studio == 'B'
    assert machine.draft.allowed_studios == ('B', 'A')
    assert machine.draft.studio == 'B'
    assert machine.draft.rate_per_hour == 300
    assert machine.advance() == STEP_STUDIO


def test_select_studio_rejects_studios_outside_allowed_set() -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())
    machine.select_session(studios.DRUM_PRACTICE)

    with pytest.raises(ValidationError):
        machine.select_studio('C')

    assert machine.draft.studio == 'A'


def test_changing_session_type_clears_the_selector() -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())
    machine.select_session(studios.LIVE)
    machine.select_option('9_12')

    machine.select_session(studios.KARAOKE)

    assert machine.draft.session_option is None
    assert machine.draft.allowed_studios == studios.ALL_STUDIOS


def _walk_to_review(machine: BookingDraftStateMachine) -> None:
    machine.set_identity('5551234567')
    machine.advance()
    machine.select_session(studios.DRUM_PRACTICE)
    machine.advance()
    assert machine.advance() == STEP_TIME
    machine.select_time(DAY, '10:00', '12:00')
    assert machine.advance() == STEP_REVIEW


def test_review_requires_otp_when_not_verified() -> None:
    submit = RecordingSubmit()
    machine = BookingDraftStateMachine(submit=submit)
    _walk_to_review(machine)

    assert machine.advance() == STEP_OTP
    with pytest.raises(StepBlockedError):
        machine.advance()

    machine.mark_otp_verified()
    assert machine.advance() == STEP_CONFIRM
    assert machine.confirm() == 'booking-1'
    assert submit.calls[0].rate_per_hour == 350


def test_trusted_device_goes_straight_to_confirm() -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())
    machine.apply_auto_login('5551234567', 'Ada', 'ada@example.com', 'Trusted device')
    _walk_to_review(machine)

    assert machine.draft.name == 'Ada'
    assert machine.advance() == STEP_CONFIRM


def test_changing_phone_drops_verification() -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())
    machine.apply_auto_login('5551234567', 'Ada', 'ada@example.com', 'Trusted device')

    machine.set_identity('5559876543')

    assert machine.draft.is_verified is False
    assert machine.draft.trusted_device_label is None


def test_confirm_submits_only_once() -> None:
    submit = RecordingSubmit()
    machine = BookingDraftStateMachine(submit=submit)
    _walk_to_review(machine)
    machine.mark_otp_verified()

    first = machine.confirm()
    second = machine.confirm()

    assert first == second == 'booking-1'
    assert len(submit.calls) == 1


def test_confirm_ignores_reentrant_calls() -> None:
    machine = None
    nested_results = []

    def submit(draft):
        nested_results.append(machine.confirm())
        return 'booking-7'

    machine = BookingDraftStateMachine(submit=submit)
    _walk_to_review(machine)
    machine.mark_otp_verified()

    assert machine.confirm() == 'booking-7'
    assert nested_results == [None]


def test_confirm_before_verification_is_blocked() -> None:
    submit = RecordingSubmit()
    machine = BookingDraftStateMachine(submit=submit)
    _walk_to_review(machine)

    with pytest.raises(StepBlockedError):
        machine.confirm()

    assert submit.calls == []


def test_edit_without_changes_cannot_be_submitted() -> None:
    submit = RecordingSubmit()
    machine = BookingDraftStateMachine(submit=submit)
    machine.load_booking(_existing_booking())
    machine.mark_otp_verified()
    machine.go_to(STEP_REVIEW)

    assert machine.has_changes_from_original() is False
    with pytest.raises(StepBlockedError) as exception_info:
        machine.advance()
    assert 'No changes' in exception_info.value.message

    machine.select_time(DAY, '13:00', '15:00')

    assert machine.has_changes_from_original() is True
    assert machine.advance() == STEP_CONFIRM
    machine.confirm()
    assert submit.calls[0].original_booking_id == 42


def test_edit_keeps_original_studio_and_choices() -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())

    machine.load_booking(_existing_booking())

    assert machine.draft.is_edit_mode is True
    assert machine.draft.studio == 'B'
    assert machine.draft.original_choices.start_time == time(10, 0)
    assert machine.reachable_steps()[-1] == STEP_REVIEW


def test_edit_detects_selector_change() -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())
    machine.load_booking(_existing_booking())

    machine.select_option('1_5')

    assert machine.has_changes_from_original() is True


def test_device_trust_hints_follow_authoritative_answer() -> None:
    hints = DeviceTrustHints({'5551234567'})

    assert hints.looks_trusted('5551234567') is True
    assert hints.check('5551234567', 'fp', lambda phone, fingerprint: False) is False
    assert hints.looks_trusted('5551234567') is False
    assert hints.check('5559876543', 'fp', lambda phone, fingerprint: True) is True
    assert hints.looks_trusted('5559876543') is True


def test_participant_count_picks_the_selector() -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())
    machine.select_session(studios.LIVE)

    machine.select_participants(7)

    assert machine.draft.session_option == '6_8'
    assert machine.draft.allowed_studios == ('A',)

    machine.select_session(studios.BAND)
    with pytest.raises(ValidationError):
        machine.select_participants(4)


def test_fall_back_to_otp_after_failed_device_check() -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())
    machine.apply_auto_login('5551234567', 'Ada', 'ada@example.com', 'Trusted device')
    _walk_to_review(machine)

    machine.fall_back_to_otp()

    assert machine.advance() == STEP_OTP


def test_select_time_records_the_booking_date() -> None:
    machine = BookingDraftStateMachine(submit=RecordingSubmit())

    assert machine.draft.booking_date is None
    machine.select_time(DAY, '10:00', '11:30')

    assert machine.draft.booking_date == DAY
    assert machine.draft.duration == 1.5


def test_confirm_with_submit_returning_none_still_submits_once() -> None:
    calls = []
    machine = BookingDraftStateMachine(submit=calls.append)
    _walk_to_review(machine)
    machine.mark_otp_verified()

    assert machine.confirm() is None
    assert machine.confirm() is None
    assert len(calls) == 1
    assert calls[0].booking_date == DAY


def test_failed_submit_can_be_retried() -> None:
    attempts = []

    def submit(draft):
        attempts.append(draft)
        if len(attempts) == 1:
            raise RuntimeError('network down')
        return 'booking-9'

    machine = BookingDraftStateMachine(submit=submit)
    _walk_to_review(machine)
    machine.mark_otp_verified()

    with pytest.raises(RuntimeError):
        machine.confirm()

    assert machine.confirm() == 'booking-9'
    assert len(attempts) == 2
