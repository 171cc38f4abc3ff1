"""
Relative date, clock time, time range and duration parsing (Spanish/English)

AM/PM rule for an hour 1-11 written without a meridiem marker:
  * on the send date, the AM reading is used unless it is already in the
    past relative to the send time, in which case the PM reading is used
    (a PM reading that is also past stays on the send date);
  * on any other date, hours 1-7 read as PM and 8-11 as AM;
  * 12 without a marker is noon; 0 and 13-23 are 24-hour clock values.
The end of a range without a marker is the first of h or h+12 after the start.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional


WEEKDAYS = {
    'lunes': 0, 'martes': 1, 'miercoles': 2, 'miércoles': 2, 'jueves': 3,
    'viernes': 4, 'sabado': 5, 'sábado': 5, 'domingo': 6,
    'monday': 0, 'tuesday': 1, 'wednesday': 2, 'thursday': 3,
    'friday': 4, 'saturday': 5, 'sunday': 6,
}

MONTHS = {
    'enero': 1, 'febrero': 2, 'marzo': 3, 'abril': 4, 'mayo': 5, 'junio': 6, 'julio': 7,
    'agosto': 8, 'septiembre': 9, 'setiembre': 9, 'octubre': 10, 'noviembre': 11, 'diciembre': 12,
    'january': 1, 'february': 2, 'march': 3, 'april': 4, 'may': 5, 'june': 6, 'july': 7,
    'august': 8, 'september': 9, 'october': 10, 'november': 11, 'december': 12,
}

_MONTH_NAMES = '|'.join(sorted(MONTHS, key=len, reverse=True))
_WEEKDAY_NAMES = '|'.join(sorted(WEEKDAYS, key=len, reverse=True))
_MERIDIEM = r'a\.?\s?m\.?|p\.?\s?m\.?'
_PERIOD = r'(?:de|en|por)\s+la\s+(?P<period>mañana|tarde|noche)'

_TIME = re.compile(
    r'(?P<prefix>\b(?:a\s+las?|desde\s+las?|de\s+las?|hasta\s+las?|at|from|until)\s*)?'
    r'(?<![\d/.,:])(?P<hour>\d{1,2})(?::(?P<minute>\d{2}))?'
    rf'(?:\s*(?P<meridiem>{_MERIDIEM})(?![a-z]))?'
    rf'(?:\s+{_PERIOD})?'
    r'(?![\d/]|\s*(?:%|d[ií]as?\b|days?\b|horas?\b|hours?\b|hrs?\b|min))',
    re.IGNORECASE
)

_RANGE = re.compile(
    r'(?P<lead>\b(?:de|desde|from|entre|between)\s+(?:las?\s+)?)?'
    r'(?<![\d/.,:])(?P<h1>\d{1,2})(?::(?P<m1>\d{2}))?'
    rf'(?:\s*(?P<mer1>{_MERIDIEM})(?![a-z]))?'
    r'\s*(?P<sep>-|–|\ba\b|\bto\b|\bhasta\b|\by\b|\band\b)\s*(?:las?\s+)?'
    r'(?P<h2>\d{1,2})(?::(?P<m2>\d{2}))?'
    rf'(?:\s*(?P<mer2>{_MERIDIEM})(?![a-z]))?'
    rf'(?:\s+{_PERIOD})?'
    r'(?![\d/-]|\s*(?:%|d[ií]as?\b|days?\b|horas?\b|hours?\b))',
    re.IGNORECASE
)

_NAMED_TIMES = re.compile(r'\b(?:al\s+)?(mediod[ií]a|noon|medianoche|midnight)\b', re.IGNORECASE)

MAX_DURATION = timedelta(days=7)

_DURATION = re.compile(
    r'(?:\b(?:por|durante|for)\s+)?'
    r'\b(?:(?P<num>\d{1,4}(?:[.,]\d+)?)|(?P<word>una?|an?|one|media|half\s+an?))\s*'
    r'(?P<unit>horas?|hrs?|hours?|h|minutos?|mins?|minutes?)\b'
    r'(?P<half>\s+y\s+media|\s+and\s+a\s+half)?',
    re.IGNORECASE
)

# dd-mm needs a year, otherwise it reads as a time range
_NUMERIC_DATE = re.compile(r'(?<![\d/-])(\d{1,2})([/-])(\d{1,2})(?:\2(\d{2,4}))?(?![\d/-])')
_DAY_MONTH = re.compile(rf'\b(\d{{1,2}})\s+(?:de\s+)?({_MONTH_NAMES})\b(?:\s+(?:de\s+|del\s+)?(\d{{4}}))?', re.IGNORECASE)
_MONTH_DAY = re.compile(rf'\b({_MONTH_NAMES})\s+(\d{{1,2}})(?:st|nd|rd|th)?\b(?:,?\s+(\d{{4}}))?', re.IGNORECASE)
_IN_N_DAYS = re.compile(r'\b(?:en|in|dentro\s+de)\s+(\d{1,3})\s+(d[ií]as?|days?|semanas?|weeks?)\b', re.IGNORECASE)
_WEEKDAY = re.compile(rf'\b(?:(?:el|este|próximo|proximo|next|on|this)\s+)?({_WEEKDAY_NAMES})\b', re.IGNORECASE)


@dataclass
class DateMention:
    value: date
    start: int
    end: int
    text: str


@dataclass
class TimeMention:
    hour: int
    minute: int
    meridiem: Optional[str]
    start: int
    end: int
    text: str

    @property
    def is_ambiguous(self) -> bool:
        return self.meridiem is None and 1 <= self.hour <= 11


@dataclass
class TimeRange:
    start: TimeMention
    end: TimeMention
    span_start: int
    span_end: int


@dataclass
class DurationMention:
    value: timedelta
    start: int
    end: int
    text: str


def _meridiem(raw: Optional[str], period: Optional[str]) -> Optional[str]:
    if raw:
        return 'pm' if raw.lower().startswith('p') else 'am'
    if period:
        return 'am' if period.lower() == 'mañana' else 'pm'
    return None


def _apply_meridiem(hour: int, meridiem: Optional[str]) -> int:
    if meridiem == 'pm' and hour < 12:
        return hour + 12
    if meridiem == 'am' and hour == 12:
        return 0
    return hour


def _valid_clock(hour: int, minute: int, meridiem: Optional[str]) -> bool:
    if minute > 59:
        return False
    if meridiem:
        return 1 <= hour <= 12
    return 0 <= hour <= 23


def _overlaps(start: int, end: int, spans) -> bool:
    return any(start < s_end and s_start < end for s_start, s_end in spans)


# Dates

def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _roll_forward(candidate: Optional[date], reference: date, explicit_year: bool) -> Optional[date]:
    if candidate and not explicit_year and candidate < reference:
        return _safe_date(candidate.year + 1, candidate.month, candidate.day)
    return candidate


def next_weekday(reference: date, weekday: int) -> date:
    """Next occurrence of weekday strictly after the reference date"""
    days_ahead = (weekday - reference.weekday()) % 7 or 7
    return reference + timedelta(days=days_ahead)


def find_date(text: str, reference: date, day_first: bool = True) -> Optional[DateMention]:
    """First (leftmost) date phrase in text resolved against the reference date"""
    mentions = find_dates(text, reference, day_first)
    return mentions[0] if mentions else None


def find_dates(text: str, reference: date, day_first: bool = True) -> List[DateMention]:
    text = text or ""
    found: List[DateMention] = []
    taken = []

    def add(value: Optional[date], start: int, end: int):
        if value is None or _overlaps(start, end, taken):
            return
        taken.append((start, end))
        found.append(DateMention(value=value, start=start, end=end, text=text[start:end]))

    for match in re.finditer(r'\bpasado\s+mañana\b|\bday\s+after\s+tomorrow\b', text, re.IGNORECASE):
        add(reference + timedelta(days=2), *match.span())

    for match in re.finditer(r'\bmañana\b|\btomorrow\b', text, re.IGNORECASE):
        # "de la mañana" / "por la mañana" is a time of day
        if match.group(0).lower() == 'mañana' and re.search(r'\bla\s+$', text[:match.start()], re.IGNORECASE):
            continue
        add(reference + timedelta(days=1), *match.span())

    for match in re.finditer(r'\bhoy\b|\btoday\b|\btonight\b|\besta\s+noche\b|\besta\s+tarde\b', text, re.IGNORECASE):
        add(reference, *match.span())

    for match in re.finditer(r'\b(?:la\s+)?(?:pr[oó]xima\s+semana|semana\s+que\s+viene|next\s+week)\b', text, re.IGNORECASE):
        add(reference + timedelta(days=7), *match.span())

    for match in _IN_N_DAYS.finditer(text):
        count = int(match.group(1))
        unit_days = 7 if match.group(2).lower().startswith(('semana', 'week')) else 1
        add(reference + timedelta(days=count * unit_days), *match.span())

    for match in _DAY_MONTH.finditer(text):
        year = int(match.group(3)) if match.group(3) else reference.year
        candidate = _safe_date(year, MONTHS[match.group(2).lower()], int(match.group(1)))
        add(_roll_forward(candidate, reference, bool(match.group(3))), *match.span())

    for match in _MONTH_DAY.finditer(text):
        year = int(match.group(3)) if match.group(3) else reference.year
        candidate = _safe_date(year, MONTHS[match.group(1).lower()], int(match.group(2)))
        add(_roll_forward(candidate, reference, bool(match.group(3))), *match.span())

    for match in _NUMERIC_DATE.finditer(text):
        if match.group(2) == '-' and not match.group(4):
            continue
        first, second = int(match.group(1)), int(match.group(3))
        day, month = (first, second) if day_first else (second, first)
        if match.group(4):
            year = int(match.group(4))
            year = year + 2000 if year < 100 else year
        else:
            year = reference.year
        candidate = _safe_date(year, month, day)
        add(_roll_forward(candidate, reference, bool(match.group(4))), *match.span())

    for match in _WEEKDAY.finditer(text):
        add(next_weekday(reference, WEEKDAYS[match.group(1).lower()]), *match.span())

    found.sort(key=lambda mention: mention.start)
    return found


# Times

def find_time_range(text: str) -> Optional[TimeRange]:
    for match in _RANGE.finditer(text or ""):
        h1, h2 = int(match.group('h1')), int(match.group('h2'))
        m1, m2 = int(match.group('m1') or 0), int(match.group('m2') or 0)
        period = match.group('period')
        mer2 = _meridiem(match.group('mer2'), period)
        mer1 = _meridiem(match.group('mer1'), None)
        sep = match.group('sep').lower()

        explicit = match.group('lead') or sep in ('-', '–') or any(
            match.group(name) for name in ('m1', 'm2', 'mer1', 'mer2', 'period')
        )
        if not explicit or (sep in ('y', 'and') and not match.group('lead')):
            continue

        if mer1 is None and mer2 is not None:
            # "2-4pm" shares the marker, "11-1pm" crosses noon
            if mer2 == 'pm' and h1 > h2 and h1 != 12:
                mer1 = 'am'
            else:
                mer1 = mer2

        if not (_valid_clock(h1, m1, mer1) and _valid_clock(h2, m2, mer2)):
            continue

        return TimeRange(
            start=TimeMention(h1, m1, mer1, match.start('h1'), match.end('h1'), text[match.start('h1'):match.start('sep')].strip()),
            end=TimeMention(h2, m2, mer2, match.start('h2'), match.end(), text[match.start('h2'):match.end()].strip()),
            span_start=match.start(),
            span_end=match.end(),
        )
    return None


def find_times(text: str) -> List[TimeMention]:
    """Clock times that carry minutes, a meridiem, a period of day or an 'a las/at' prefix"""
    text = text or ""
    mentions = []
    taken = []

    for match in _NAMED_TIMES.finditer(text):
        word = match.group(1).lower()
        hour = 0 if word in ('medianoche', 'midnight') else 12
        mentions.append(TimeMention(hour, 0, 'am' if hour == 0 else 'pm', match.start(), match.end(), match.group(0)))
        taken.append(match.span())

    for match in _TIME.finditer(text):
        minute = match.group('minute')
        meridiem = _meridiem(match.group('meridiem'), match.group('period'))
        if not (match.group('prefix') or minute or meridiem):
            continue
        hour, minute = int(match.group('hour')), int(minute or 0)
        if not _valid_clock(hour, minute, meridiem) or _overlaps(match.start(), match.end(), taken):
            continue
        mentions.append(TimeMention(hour, minute, meridiem, match.start(), match.end(), match.group(0).strip()))

    mentions.sort(key=lambda mention: mention.start)
    return mentions


def find_duration(text: str) -> Optional[DurationMention]:
    for match in _DURATION.finditer(text or ""):
        unit = match.group('unit').lower()
        if match.group('num'):
            amount = float(match.group('num').replace(',', '.'))
        else:
            word = match.group('word').lower()
            amount = 0.5 if word.startswith(('media', 'half')) else 1.0
        if match.group('half'):
            amount += 0.5

        minutes = amount * 60 if unit.startswith('h') else amount
        if minutes <= 0 or timedelta(minutes=minutes) > MAX_DURATION:
            continue
        return DurationMention(timedelta(minutes=minutes), match.start(), match.end(), match.group(0).strip())
    return None


def resolve_clock_time(mention: TimeMention, on_date: date, reference: datetime) -> datetime:
    """Combine a time mention with a date using the AM/PM rule.

    The result carries the reference's tzinfo.
    """
    tz = reference.tzinfo
    if not mention.is_ambiguous:
        hour = _apply_meridiem(mention.hour, mention.meridiem)
        return datetime.combine(on_date, time(hour, mention.minute), tzinfo=tz)

    am = datetime.combine(on_date, time(mention.hour, mention.minute), tzinfo=tz)
    pm = am + timedelta(hours=12)

    if on_date == reference.date():
        return pm if am < reference else am
    return pm if mention.hour <= 7 else am


def resolve_range_end(mention: TimeMention, start: datetime) -> datetime:
    """End of a range: first matching clock reading after the start"""
    if mention.meridiem is not None or not 1 <= mention.hour <= 12:
        hour = _apply_meridiem(mention.hour, mention.meridiem)
        end = start.replace(hour=hour, minute=mention.minute, second=0, microsecond=0)
        return end if end > start else end + timedelta(days=1)

    base = start.replace(hour=mention.hour % 12, minute=mention.minute, second=0, microsecond=0)
    for candidate in (base, base + timedelta(hours=12)):
        if candidate > start:
            return candidate
    return base + timedelta(days=1)
