"""Booking wizard state, independent of any presentation layer.

The wizard is a directed graph of named steps. Each step has an entry guard
evaluated against the draft; ``next_step`` follows the first outgoing edge
whose target can be entered.
"""

import re
from dataclasses import dataclass, replace
from datetime import date, time
from typing import Any, Callable

from studio_booking.core.errors import ValidationError
from studio_booking.scheduling import studios
from studio_booking.scheduling.slots import TimeSlot, hours_between, parse_time

STEP_PHONE = 'phone'
STEP_SESSION = 'session'
STEP_PARTICIPANTS = 'participants'
STEP_STUDIO = 'studio'
STEP_TIME = 'time'
STEP_REVIEW = 'review'
STEP_OTP = 'otp'
STEP_CONFIRM = 'confirm'
STEPS = (STEP_PHONE, STEP_SESSION, STEP_PARTICIPANTS, STEP_STUDIO, STEP_TIME, STEP_REVIEW, STEP_OTP, STEP_CONFIRM)

TRANSITIONS = {
    STEP_PHONE: (STEP_SESSION,),
    STEP_SESSION: (STEP_PARTICIPANTS, STEP_STUDIO),
    STEP_PARTICIPANTS: (STEP_STUDIO,),
    STEP_STUDIO: (STEP_TIME,),
    STEP_TIME: (STEP_REVIEW,),
    STEP_REVIEW: (STEP_CONFIRM, STEP_OTP),
    STEP_OTP: (STEP_CONFIRM,),
    STEP_CONFIRM: (),
}


class StepBlockedError(ValidationError):
    """Raised when the wizard is asked to move to a step it cannot enter."""


@dataclass(frozen=True)
class OriginalChoices:
    session_type: str
    session_option: str | None
    studio: str
    booking_date: date
    start_time: time
    end_time: time


@dataclass
class BookingDraft:
    phone: str = ''
    name: str = ''
    email: str = ''
    session_type: str = ''
    session_option: str | None = None
    song_count: int | None = None
    studio: str = ''
    allowed_studios: tuple[str, ...] = ()
    recommended_studio: str = ''
    rate_per_hour: int = 0
    rate_unit: str = studios.RATE_PER_HOUR
    booking_date: date | None = None
    selected_slot: TimeSlot | None = None
    otp_verified: bool = False
    device_trusted: bool = False
    trusted_device_label: str | None = None
    is_edit_mode: bool = False
    original_booking_id: int | None = None
    original_choices: OriginalChoices | None = None

    @property
    def phone_digits(self) -> str:
        return re.sub(r'\D', '', self.phone)

    @property
    def duration(self) -> float:
        if self.selected_slot is None:
            return 0
        return hours_between(self.selected_slot.start, self.selected_slot.end)

    @property
    def is_verified(self) -> bool:
        return self.otp_verified or self.device_trusted


class DeviceTrustHints:
    """Locally remembered trusted phones, as a browser would keep them.

    Only a hint for showing the trusted-device banner early; ``check``
    always asks the authoritative verifier and refreshes the hint from it.
    """

    def __init__(self, phones: set[str] | None = None) -> None:
        self._phones = set(phones or ())

    def looks_trusted(self, phone: str) -> bool:
        return phone in self._phones

    def check(self, phone: str, device_fingerprint: str, verify_device: Callable[[str, str], bool]) -> bool:
        trusted = verify_device(phone, device_fingerprint)
        if trusted:
            self._phones.add(phone)
        else:
            self._phones.discard(phone)
        return trusted


class BookingDraftStateMachine:
    def __init__(self, submit: Callable[[BookingDraft], Any], draft: BookingDraft | None = None) -> None:
        self.draft = draft or BookingDraft()
        self.current_step = STEP_PHONE
        self._submit = submit
        self._submitting = False
        self._submitted = False
        self.result: Any = None

    # Guards

    def _phone_ready(self) -> bool:
        return len(self.draft.phone_digits) == 10

    def _session_ready(self) -> bool:
        draft = self.draft
        return self._phone_ready() and studios.is_valid_selection(draft.session_type, draft.session_option)

    def _studio_ready(self) -> bool:
        return self._session_ready() and self.draft.studio in self.draft.allowed_studios

    def _time_ready(self) -> bool:
        return self._studio_ready() and self.draft.booking_date is not None and self.draft.selected_slot is not None

    def can_enter(self, step: str) -> bool:
        draft = self.draft
        if step == STEP_PHONE:
            return True
        if step == STEP_SESSION:
            return self._phone_ready()
        if step == STEP_PARTICIPANTS:
            return (
                self._phone_ready()
                and draft.session_type in studios.SESSION_TYPES
                and draft.session_type not in studios.NO_SELECTOR_SESSION_TYPES
            )
        if step == STEP_STUDIO:
            return self._session_ready()
        if step == STEP_TIME:
            return self._studio_ready()
        if step == STEP_REVIEW:
            return self._time_ready()
        if step == STEP_OTP:
            return self._time_ready() and not draft.is_verified and self.has_changes_from_original()
        if step == STEP_CONFIRM:
            return self._time_ready() and draft.is_verified and self.has_changes_from_original()
        return False

    def next_step(self) -> str | None:
        for candidate in TRANSITIONS[self.current_step]:
            if self.can_enter(candidate):
                return candidate
        return None

    def advance(self) -> str:
        step = self.next_step()
        if step is None:
            if self.current_step == STEP_REVIEW and not self.has_changes_from_original():
                raise StepBlockedError('No changes to save. Change the session, studio, date or time first.')
            raise StepBlockedError(f'Cannot continue from the {self.current_step} step yet.')
        self.current_step = step
        return step

    def go_to(self, step: str) -> str:
        if step not in STEPS or not self.can_enter(step):
            raise StepBlockedError(f'The {step} step is not available yet.')
        self.current_step = step
        return step

    def reachable_steps(self) -> list[str]:
        return [step for step in STEPS if self.can_enter(step)]

    # Draft updates

    def set_identity(self, phone: str, name: str | None = None, email: str | None = None) -> None:
        if re.sub(r'\D', '', phone) != self.draft.phone_digits:
            self.draft.otp_verified = False
            self.draft.device_trusted = False
            self.draft.trusted_device_label = None
        self.draft.phone = phone
        if name is not None:
            self.draft.name = name
        if email is not None:
            self.draft.email = email

    def apply_auto_login(self, phone: str, name: str, email: str, label: str) -> None:
        """Pre-fill identity from a trusted device without running the OTP flow."""
        self.set_identity(phone, name, email)
        self.draft.otp_verified = True
        self.draft.device_trusted = True
        self.draft.trusted_device_label = label

    def fall_back_to_otp(self) -> None:
        self.draft.otp_verified = False
        self.draft.device_trusted = False
        self.draft.trusted_device_label = None

    def _reprice(self) -> None:
        draft = self.draft
        rate = studios.studio_rate(draft.studio, draft.session_type, draft.session_option)
        draft.rate_per_hour = rate.amount
        draft.rate_unit = rate.unit

    def _recommend(self) -> None:
        draft = self.draft
        suggestion = studios.suggest_studio(draft.session_type, draft.session_option)
        draft.allowed_studios = suggestion.allowed_studios
        draft.recommended_studio = suggestion.recommended_studio
        if draft.studio not in suggestion.allowed_studios:
            draft.studio = suggestion.recommended_studio
        self._reprice()

    def select_session(self, session_type: str) -> None:
        if session_type not in studios.SESSION_TYPES:
            raise ValidationError('Unknown session type.')
        if session_type != self.draft.session_type:
            self.draft.session_option = None
            self.draft.song_count = None
        self.draft.session_type = session_type
        self._recommend()

    def select_option(self, option: str | None, song_count: int | None = None) -> None:
        normalized = studios.normalize_option(self.draft.session_type, option)
        if normalized is None:
            raise ValidationError('Unknown option for this session type.')
        self.draft.session_option = normalized
        self.draft.song_count = song_count
        self._recommend()

    def select_participants(self, count: int) -> None:
        if count < 1:
            raise ValidationError('At least one participant is required.')
        if self.draft.session_type == studios.KARAOKE:
            self.select_option(studios.karaoke_option_for(count))
        elif self.draft.session_type == studios.LIVE:
            self.select_option(studios.live_option_for(count))
        else:
            raise ValidationError(f'{self.draft.session_type or "This session"} is not sized by head count.')

    def select_studio(self, studio: str) -> None:
        if studio not in self.draft.allowed_studios:
            raise ValidationError(f'Studio {studio} is not available for this session.')
        self.draft.studio = studio
        self._reprice()

    def select_time(self, booking_date: date, start: str | time, end: str | time) -> None:
        slot = TimeSlot(parse_time(start), parse_time(end))
        if slot.end <= slot.start:
            raise ValidationError('End time must be after start time.')
        self.draft.booking_date = booking_date
        self.draft.selected_slot = slot

    def mark_otp_verified(self, device_trusted: bool = False) -> None:
        self.draft.otp_verified = True
        self.draft.device_trusted = self.draft.device_trusted or device_trusted

    # Edit mode

    def load_booking(self, booking: Any) -> None:
        """Start editing an existing booking, remembering its choices."""
        draft = self.draft
        self.set_identity(booking.phone, booking.name or '', booking.email or '')
        draft.session_type = booking.session_type
        draft.session_option = booking.session_option
        draft.song_count = booking.song_count
        draft.studio = booking.studio
        self._recommend()
        draft.studio = booking.studio
        draft.booking_date = booking.date
        draft.selected_slot = TimeSlot(booking.start_time, booking.end_time)
        draft.is_edit_mode = True
        draft.original_booking_id = booking.id
        draft.original_choices = OriginalChoices(
            session_type=booking.session_type,
            session_option=booking.session_option,
            studio=booking.studio,
            booking_date=booking.date,
            start_time=booking.start_time,
            end_time=booking.end_time,
        )

    def has_changes_from_original(self) -> bool:
        draft = self.draft
        original = draft.original_choices
        if not draft.is_edit_mode or original is None:
            return True
        slot = draft.selected_slot
        return (
            draft.session_type != original.session_type
            or draft.session_option != original.session_option
            or draft.studio != original.studio
            or draft.booking_date != original.booking_date
            or slot is None
            or slot.start != original.start_time
            or slot.end != original.end_time
        )

    # Submission

    def confirm(self) -> Any:
        """Submit the draft once; later calls return the first result."""
        if self._submitted or self._submitting:
            return self.result
        if self.current_step != STEP_CONFIRM:
            self.go_to(STEP_CONFIRM)

        self._submitting = True
        try:
            self.result = self._submit(replace(self.draft))
            self._submitted = True
        finally:
            self._submitting = False
        return self.result

    def reset(self) -> None:
        self.draft = BookingDraft()
        self.current_step = STEP_PHONE
        self.result = None
        self._submitted = False
