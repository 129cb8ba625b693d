"""Studio recommendation and pricing decision tables.

Studio A is the largest and priciest room, Studio C the smallest. Allowed
studios are always listed smallest first (C, B, A). Every lookup is total:
incomplete or unknown input falls back to recommending C with all studios
allowed, and unknown rate combinations fall back to the studio's standard
rate or ``DEFAULT_RATE``.
"""

from dataclasses import dataclass

KARAOKE = 'Karaoke'
LIVE = 'Live with musicians'
DRUM_PRACTICE = 'Only Drum Practice'
BAND = 'Band'
RECORDING = 'Recording'
MEETING = 'Meetings/Classes'
SESSION_TYPES = (KARAOKE, LIVE, DRUM_PRACTICE, BAND, RECORDING, MEETING)

# Session types with nothing to choose before picking a studio.
NO_SELECTOR_SESSION_TYPES = (DRUM_PRACTICE, MEETING)

KARAOKE_OPTIONS = ('1_5', '6_10', '11_20', '21_30')
LIVE_OPTIONS = ('1_2', '3_4', '5', '6_8', '9_12')
BAND_EQUIPMENT = ('drum', 'amps', 'guitars', 'keyboard')
RECORDING_OPTIONS = ('audio_recording', 'video_recording', 'chroma_key', 'sd_card_recording')

ALL_STUDIOS = ('C', 'B', 'A')
B_AND_UP = ('B', 'A')
A_ONLY = ('A',)

DEFAULT_RATE = 300
RATE_PER_HOUR = 'hour'
RATE_PER_SONG = 'song'

STUDIO_RATES = {
    'A': {
        'karaoke_standard': 400,
        'karaoke_large': 500,
        'live_standard': 600,
        'live_large': 800,
        'drum_practice': 350,
        'band_standard': 600,
        'band_drums_amps': 500,
        'band_small': 400,
        'recording_audio': 700,
        'recording_video': 800,
        'recording_chroma': 1200,
        'recording_sd': 100,
        'meeting': 350,
    },
    'B': {
        'karaoke_standard': 300,
        'live_standard': 400,
        'live_5': 500,
        'band_standard': 450,
        'band_small': 400,
        'meeting': 250,
    },
    'C': {
        'karaoke_standard': 250,
        'live_standard': 350,
        'band_standard': 350,
        'band_small': 300,
        'meeting': 200,
    },
}


@dataclass(frozen=True)
class Rate:
    amount: int
    unit: str = RATE_PER_HOUR


@dataclass(frozen=True)
class StudioSuggestion:
    recommended_studio: str
    allowed_studios: tuple[str, ...]
    explanation: str

    def allows(self, studio: str) -> bool:
        return studio in self.allowed_studios


DEFAULT_SUGGESTION = StudioSuggestion('C', ALL_STUDIOS, 'Select your session details to see studio recommendations.')


def karaoke_option_for(participants: int) -> str:
    if participants <= 5:
        return '1_5'
    if participants <= 10:
        return '6_10'
    if participants <= 20:
        return '11_20'
    return '21_30'


def live_option_for(musicians: int) -> str:
    if musicians <= 2:
        return '1_2'
    if musicians <= 4:
        return '3_4'
    if musicians == 5:
        return '5'
    if musicians <= 8:
        return '6_8'
    return '9_12'


def parse_equipment(option: str | None) -> frozenset[str]:
    if not option:
        return frozenset()
    return frozenset(item.strip().lower() for item in option.split(',') if item.strip())


def normalize_option(session_type: str, option: str | None) -> str | None:
    """Return the canonical selector string, or None when it is not in the table."""
    if session_type in NO_SELECTOR_SESSION_TYPES:
        return None
    if option is None:
        return None

    if session_type == BAND:
        equipment = parse_equipment(option)
        if not equipment or not equipment <= set(BAND_EQUIPMENT):
            return None
        return ','.join(item for item in BAND_EQUIPMENT if item in equipment)

    normalized = option.strip().lower()
    known = {KARAOKE: KARAOKE_OPTIONS, LIVE: LIVE_OPTIONS, RECORDING: RECORDING_OPTIONS}.get(session_type, ())
    return normalized if normalized in known else None


def is_valid_selection(session_type: str, option: str | None) -> bool:
    if session_type not in SESSION_TYPES:
        return False
    if session_type in NO_SELECTOR_SESSION_TYPES:
        return True
    return normalize_option(session_type, option) is not None


def _band_suggestion(equipment: frozenset[str]) -> StudioSuggestion:
    if equipment >= {'drum', 'amps', 'guitars', 'keyboard'}:
        return StudioSuggestion('A', A_ONLY, 'A full band rig needs Studio A.')
    if equipment >= {'drum', 'amps', 'guitars'}:
        return StudioSuggestion('B', B_AND_UP, 'Drums, amps and guitars fit Studio B. You can upgrade to A.')
    if 'drum' in equipment and equipment <= {'drum', 'amps'}:
        return StudioSuggestion('C', ALL_STUDIOS, 'Drums (with amps) fit Studio C. You can upgrade if needed.')
    return StudioSuggestion('C', ALL_STUDIOS, 'Your equipment fits Studio C. You can upgrade if needed.')


def suggest_studio(session_type: str, option: str | None = None) -> StudioSuggestion:
    if session_type == DRUM_PRACTICE:
        return StudioSuggestion('A', A_ONLY, 'Drum practice is only available in Studio A.')
    if session_type == RECORDING:
        return StudioSuggestion('A', A_ONLY, 'Recording sessions are only available in Studio A.')
    if session_type == MEETING:
        return StudioSuggestion('C', ALL_STUDIOS, 'Any studio can host a meeting or class.')

    normalized = normalize_option(session_type, option)
    if normalized is None:
        return DEFAULT_SUGGESTION

    if session_type == KARAOKE:
        if normalized == '1_5':
            return StudioSuggestion('C', ALL_STUDIOS, 'Studio C fits up to 5 people. You can upgrade to B or A.')
        if normalized == '6_10':
            return StudioSuggestion('B', B_AND_UP, 'Studio B fits up to 10 people. You can upgrade to A.')
        return StudioSuggestion('A', A_ONLY, 'Only Studio A can hold a group this size.')

    if session_type == LIVE:
        if normalized == '1_2':
            return StudioSuggestion('C', ALL_STUDIOS, 'Studio C fits up to 2 musicians. You can upgrade to B or A.')
        if normalized in ('3_4', '5'):
            return StudioSuggestion('B', B_AND_UP, 'Studio B fits up to 5 musicians. You can upgrade to A.')
        return StudioSuggestion('A', A_ONLY, 'Only Studio A has room for this many musicians.')

    return _band_suggestion(parse_equipment(normalized))


def _first_rate(rates: dict[str, int], *keys: str, default: int) -> int:
    for key in keys:
        if key in rates:
            return rates[key]
    return default


def studio_rate(studio: str, session_type: str, option: str | None = None) -> Rate:
    rates = STUDIO_RATES.get(studio, {})
    normalized = normalize_option(session_type, option)

    if session_type == KARAOKE:
        if normalized == '21_30':
            return Rate(_first_rate(rates, 'karaoke_large', 'karaoke_standard', default=400))
        return Rate(_first_rate(rates, 'karaoke_standard', default=DEFAULT_RATE))

    if session_type == LIVE:
        if normalized == '9_12':
            return Rate(_first_rate(rates, 'live_large', 'live_standard', default=600))
        if normalized == '5' and studio == 'B':
            return Rate(_first_rate(rates, 'live_5', 'live_standard', default=500))
        return Rate(_first_rate(rates, 'live_standard', default=400))

    if session_type == DRUM_PRACTICE:
        return Rate(_first_rate(rates, 'drum_practice', default=350))

    if session_type == BAND:
        equipment = parse_equipment(normalized)
        if equipment >= {'drum', 'amps', 'guitars'}:
            return Rate(_first_rate(rates, 'band_standard', default=450))
        if equipment >= {'drum', 'amps'}:
            return Rate(_first_rate(rates, 'band_drums_amps', 'band_small', 'band_standard', default=400))
        return Rate(_first_rate(rates, 'band_small', 'band_standard', default=350))

    if session_type == RECORDING:
        if normalized == 'chroma_key':
            return Rate(_first_rate(rates, 'recording_chroma', default=1200))
        if normalized == 'video_recording':
            return Rate(_first_rate(rates, 'recording_video', default=800))
        if normalized == 'sd_card_recording':
            return Rate(_first_rate(rates, 'recording_sd', default=100), RATE_PER_SONG)
        return Rate(_first_rate(rates, 'recording_audio', default=700))

    if session_type == MEETING:
        return Rate(_first_rate(rates, 'meeting', default=DEFAULT_RATE))

    return Rate(DEFAULT_RATE)


def describe_selection(session_type: str, option: str | None) -> str:
    normalized = normalize_option(session_type, option)
    if normalized is None:
        return session_type
    if session_type == BAND:
        return f'{session_type}: {", ".join(normalized.split(","))}'
    return f'{session_type}: {normalized.replace("_", "-")}'


def total_amount(rate: Rate, hours: float, song_count: int | None = None) -> int:
    if rate.unit == RATE_PER_SONG:
        return rate.amount * max(1, song_count or 1)
    return round(rate.amount * hours)
