"""
Unit tests for CalendarParser
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from src.core.calendar_parser import CalendarParser


MEXICO_CITY = ZoneInfo("America/Mexico_City")


def _local(day, hour, minute=0):
    return datetime(2024, 3, day, hour, minute, tzinfo=MEXICO_CITY)


@pytest.fixture
def calendar_parser(test_config):
    return CalendarParser(test_config['calendar'])


class TestCalendarParser:
    """Test CalendarParser functionality"""

    def test_unmarked_time_resolves_after_send_time(self, calendar_parser, make_context):
        context = make_context(datetime(2024, 3, 4, 17, 0))
        draft = calendar_parser.parse("Reunión con Ana a las 6:30", context)[0]

        assert draft.title == "Reunión con Ana"
        assert draft.start_time == _local(4, 18, 30)
        assert draft.end_time == _local(4, 19, 30)
        assert draft.metadata['timing'] == 'explicit_time'

    def test_meal_without_time_uses_anchor_and_default_duration(self, calendar_parser, make_context):
        draft = calendar_parser.parse("almuerzo con mi hermana", make_context())[0]

        assert draft.metadata['meal'] == 'lunch'
        assert draft.metadata['timing'] == 'meal_anchor'
        assert draft.start_time == _local(4, 14, 0)
        assert draft.end_time - draft.start_time == timedelta(minutes=60)
        assert draft.title == "Almuerzo con mi hermana"

    def test_configured_meal_anchor(self, make_context):
        parser = CalendarParser({'meal_start_times': {'dinner': '21:30'}})
        draft = parser.parse("cena con amigos", make_context())[0]
        assert draft.start_time == _local(4, 21, 30)

    def test_range_with_date_and_location(self, calendar_parser, make_context):
        draft = calendar_parser.parse("Junta mañana de 3 a 5 pm en la oficina", make_context())[0]

        assert draft.title == "Junta"
        assert draft.start_time == _local(5, 15, 0)
        assert draft.end_time == _local(5, 17, 0)
        assert draft.location == "la oficina"
        assert draft.is_virtual is False
        assert draft.metadata['timing'] == 'range'

    def test_virtual_meeting(self, calendar_parser, make_context):
        draft = calendar_parser.parse("Llamada por Zoom con el equipo mañana a las 10", make_context())[0]

        assert draft.is_virtual is True
        assert draft.start_time == _local(5, 10, 0)
        assert draft.title == "Llamada por Zoom con el equipo"

    def test_physical_place_overrides_virtual_keyword(self, calendar_parser, make_context):
        draft = calendar_parser.parse("Reunión en sala B, o por zoom si no puedo", make_context())[0]

        assert draft.location == "sala B"
        assert draft.is_virtual is False

    def test_attendees_and_weekday(self, calendar_parser, make_context):
        draft = calendar_parser.parse("Comida con ana@example.com y @Pedro el viernes", make_context())[0]

        assert draft.attendees == ["ana@example.com", "Pedro"]
        assert draft.start_time == _local(8, 14, 0)

    def test_explicit_duration(self, calendar_parser, make_context):
        draft = calendar_parser.parse("Dentista a las 4pm por 30 minutos", make_context())[0]

        assert draft.start_time == _local(4, 16, 0)
        assert draft.end_time == _local(4, 16, 30)
        assert draft.title == "Dentista"

    def test_huge_duration_falls_back_to_default(self, calendar_parser, make_context):
        draft = calendar_parser.parse("Retiro a las 10 por 99999999 horas", make_context())[0]

        assert draft.end_time - draft.start_time == timedelta(hours=1)

    def test_default_anchor_without_time(self, calendar_parser, make_context):
        draft = calendar_parser.parse("Cita con el doctor", make_context())[0]

        assert draft.start_time == _local(4, 9, 0)
        assert draft.metadata['timing'] == 'default_anchor'
        assert 'meal' not in draft.metadata

    def test_empty_message(self, calendar_parser, make_context):
        assert calendar_parser.parse("", make_context()) == []
