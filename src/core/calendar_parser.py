"""
Calendar parser - calendar events from WhatsApp messages
Title, time window (ranges, single times, meal anchors), location, virtual flag, attendees
"""

import re
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional, Tuple

from src.core.extraction import ParseContext, ParserStrategy
from src.core.models import ActionKind, CalendarEventDraft
from src.core.time_parser import (
    find_dates, find_duration, find_time_range, find_times,
    resolve_clock_time, resolve_range_end
)


DEFAULT_MEAL_START_TIMES = {'breakfast': '09:00', 'lunch': '14:00', 'dinner': '20:00'}

CLAUSE_END = re.compile(r'[.!?;\n]')
EMAIL = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')
MENTION = re.compile(r'(?<![\w.])@(\+?\d{8,15}|[A-Za-zÁÉÍÓÚÑáéíóúñ][\w.]*\w)')
PHONE = re.compile(r'(?<![\w@+])(?:\+52\s?)?\d{3}\s?\d{3}\s?\d{4}\b')
LOCATIVE = re.compile(r'\b(?:en|in|at)\s+', re.IGNORECASE)

TITLE_TRAILING_WORDS = {
    'a', 'al', 'de', 'del', 'el', 'la', 'las', 'los', 'en', 'para', 'por', 'y', 'e',
    'at', 'on', 'in', 'for', 'the', 'and', 'to', 'este', 'esta', 'this', 'next', 'próximo',
}

_NOT_A_PLACE = re.compile(
    r'^(?:\d|la\s+(?:mañana|tarde|noche)\b|punto\b|cuanto\b|unos?\b|the\s+(?:morning|afternoon|evening)\b|'
    r'(?:morning|afternoon|evening|night)\b|línea\b|linea\b)',
    re.IGNORECASE
)


def _parse_clock(value: str, fallback: str = "09:00") -> time:
    try:
        hour, minute = (int(part) for part in str(value).split(':', 1))
        return time(hour, minute)
    except ValueError:
        hour, minute = (int(part) for part in fallback.split(':', 1))
        return time(hour, minute)


def _overlaps(start: int, end: int, spans) -> bool:
    return any(start < s_end and s_start < end for s_start, s_end in spans)


class CalendarParser(ParserStrategy):
    """Parse a message into a single CalendarEventDraft"""

    action_kind = ActionKind.CREATE_CALENDAR_EVENT

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__()
        config = config or {}

        self.default_start_time = _parse_clock(config.get('default_start_time', '09:00'))
        self.default_duration = timedelta(minutes=config.get('default_duration_minutes', 60))
        meal_times = {**DEFAULT_MEAL_START_TIMES, **(config.get('meal_start_times') or {})}
        self.meal_start_times = {meal: _parse_clock(value) for meal, value in meal_times.items()}

        # Meal keywords, checked in order
        self.meal_keywords = {
            'breakfast': ['desayuno', 'desayunar', 'desayunamos', 'breakfast', 'brunch'],
            'lunch': ['almuerzo', 'almorzar', 'almorzamos', 'comida', 'comer', 'comemos', 'lunch'],
            'dinner': ['cena', 'cenar', 'cenamos', 'dinner', 'supper'],
        }

        self.virtual_keywords = [
            'zoom', 'meet', 'google meet', 'teams', 'skype', 'webex', 'hangout', 'videollamada',
            'videoconferencia', 'virtual', 'online', 'en línea', 'remoto', 'remote', 'llamada',
            'call', 'video call',
        ]
        self.physical_keywords = [
            'sala', 'room', 'oficina', 'office', 'edificio', 'building', 'casa', 'house',
            'restaurante', 'restaurant', 'consultorio', 'auditorio', 'cafetería', 'café',
        ]

    def parse(self, content: str, context: ParseContext) -> List[CalendarEventDraft]:
        text = (content or "").strip()
        if not text:
            return []

        reference = context.sent_at
        dates = find_dates(text, reference.date(), context.locale.day_first)
        date_spans = [(mention.start, mention.end) for mention in dates]

        time_range = find_time_range(text)
        if time_range and _overlaps(time_range.span_start, time_range.span_end, date_spans):
            time_range = None
        excluded = date_spans + ([(time_range.span_start, time_range.span_end)] if time_range else [])
        times = [mention for mention in find_times(text) if not _overlaps(mention.start, mention.end, excluded)]
        duration = find_duration(text)

        day = dates[0].value if dates else reference.date()
        meal = self._detect_meal(text)
        metadata: Dict[str, Any] = {}
        if meal:
            metadata['meal'] = meal

        if time_range:
            start = resolve_clock_time(time_range.start, day, reference)
            end = resolve_range_end(time_range.end, start)
            metadata['timing'] = 'range'
        elif times:
            start = resolve_clock_time(times[0], day, reference)
            end = self._end_after(start, duration)
            metadata['timing'] = 'explicit_time'
        else:
            anchor = self.meal_start_times.get(meal, self.default_start_time)
            start = datetime.combine(day, anchor, tzinfo=reference.tzinfo)
            end = self._end_after(start, duration)
            metadata['timing'] = 'meal_anchor' if meal else 'default_anchor'

        phrase_spans = list(excluded)
        phrase_spans += [(mention.start, mention.end) for mention in times]
        if duration:
            phrase_spans.append((duration.start, duration.end))

        location, location_start = self._extract_location(text, phrase_spans)
        is_virtual = self._detect_virtual(text, location)
        attendees = self._extract_attendees(text)

        cut_points = [span[0] for span in phrase_spans]
        if location_start is not None:
            cut_points.append(location_start)
        title = self._extract_title(text, cut_points, meal)

        confidence = 0.5
        if time_range or times:
            confidence += 0.2
        elif meal:
            confidence += 0.1
        if dates:
            confidence += 0.1
        if location:
            confidence += 0.1
        if attendees:
            confidence += 0.05

        draft = CalendarEventDraft(
            title=title,
            start_time=start,
            end_time=end,
            location=location,
            is_virtual=is_virtual,
            attendees=attendees,
            description=text,
            confidence=confidence,
            source_span=text,
            metadata=metadata,
        )
        self.logger.debug(
            f"Calendar event parsed: title='{title}', start={start.isoformat()}, "
            f"virtual={is_virtual}, location={location!r}"
        )
        return [draft]

    def _end_after(self, start: datetime, duration) -> datetime:
        for length in ([duration.value] if duration else []) + [self.default_duration]:
            try:
                return start + length
            except OverflowError:
                self.logger.debug(f"Duration {length} overflows from {start.isoformat()}, ignoring")
        return start

    def _detect_meal(self, text: str) -> Optional[str]:
        for meal, keywords in self.meal_keywords.items():
            if self._has_keyword(text, keywords):
                return meal
        return None

    def _has_keyword(self, text: str, keywords: List[str]) -> bool:
        lowered = text.lower()
        return any(re.search(rf'(?<!\w){re.escape(keyword)}(?!\w)', lowered) for keyword in keywords)

    def _detect_virtual(self, text: str, location: Optional[str]) -> bool:
        if not self._has_keyword(text, self.virtual_keywords):
            return False
        if self._has_keyword(text, self.physical_keywords):
            return False
        # a named place that is not itself a video tool is a physical meeting point
        if location and not self._has_keyword(location, self.virtual_keywords):
            return False
        return True

    def _extract_location(self, text: str, phrase_spans) -> Tuple[Optional[str], Optional[int]]:
        """Last 'en/in/at <place>' phrase that is not a time or date expression"""
        found: Tuple[Optional[str], Optional[int]] = (None, None)
        for match in LOCATIVE.finditer(text):
            if _overlaps(match.start(), match.end() + 1, phrase_spans):
                continue
            rest = text[match.end():]
            if _NOT_A_PLACE.match(rest):
                continue

            stop = len(rest)
            clause = CLAUSE_END.search(rest)
            if clause:
                stop = clause.start()
            comma = rest.find(',')
            if comma != -1:
                stop = min(stop, comma)
            for span_start, _ in phrase_spans:
                offset = span_start - match.end()
                if 0 < offset < stop:
                    stop = offset
            next_locative = LOCATIVE.search(rest, 1)
            if next_locative and next_locative.start() < stop:
                stop = next_locative.start()

            words = rest[:stop].split()
            while words and words[-1] in TITLE_TRAILING_WORDS:
                words.pop()
            place = " ".join(words).strip(" ,:-")
            if 2 <= len(place) <= 60:
                found = (place, match.start())
        return found

    def _extract_attendees(self, text: str) -> List[str]:
        attendees = EMAIL.findall(text)
        email_spans = [match.span() for match in EMAIL.finditer(text)]
        for match in MENTION.finditer(text):
            if not _overlaps(match.start(), match.end(), email_spans):
                attendees.append(match.group(1))
        for match in PHONE.finditer(text):
            if not _overlaps(match.start(), match.end(), email_spans):
                number = re.sub(r'\s', '', match.group(0))
                if number not in attendees and number.lstrip('+') not in attendees:
                    attendees.append(number)
        return list(dict.fromkeys(attendees))

    def _extract_title(self, text: str, cut_points: List[int], meal: Optional[str]) -> str:
        clause = CLAUSE_END.search(text)
        limit = clause.start() if clause and clause.start() > 0 else len(text)
        cut = min([point for point in cut_points if 0 < point < limit] + [limit])

        words = text[:cut].split()
        while words and words[-1].strip(',') in TITLE_TRAILING_WORDS:
            words.pop()
        title = " ".join(words).strip(" ,:-")
        title = MENTION.sub(lambda m: m.group(1), title)

        if not title:
            title = meal.capitalize() if meal else "Evento"
        if len(title) > 80:
            title = title[:80].rsplit(' ', 1)[0] + "..."
        return title[0].upper() + title[1:]
