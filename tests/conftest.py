"""
Pytest configuration and fixtures for automation engine tests
"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from src.core.database import DatabaseService
from src.core.execution_ledger import ExecutionLedger
from src.core.extraction import LocaleSettings, ParseContext, build_default_pipeline
from src.core.models import TriggerEvent, TriggerType
from src.core.rule_schema import parse_rule_definition
from src.core.rule_store import RuleStore
from src.core.storage import SqlEntityStorage


MEXICO_CITY = ZoneInfo("America/Mexico_City")

OWNER_JID = "5215511111111@s.whatsapp.net"
OTHER_JID = "5215522222222@s.whatsapp.net"
INSTANCE_ID = "inst-1"


class FakeClock:
    """Controllable UTC clock"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock fixed at 2024-03-04 16:00 UTC (10:00 in Mexico City, a Monday)"""
    return FakeClock(datetime(2024, 3, 4, 16, 0, tzinfo=timezone.utc))


@pytest.fixture
def test_config() -> Dict[str, Any]:
    return {
        'locale': {
            'language': 'es',
            'timezone': 'America/Mexico_City',
            'thousands_separator': ',',
            'decimal_separator': '.',
            'default_currency': 'MXN',
            'day_first': True
        },
        'extraction': {'confidence_threshold': 0.6},
        'calendar': {
            'default_start_time': '09:00',
            'default_duration_minutes': 60,
            'meal_start_times': {'breakfast': '09:00', 'lunch': '14:00', 'dinner': '20:00'}
        },
        'executor': {'max_retries': 1, 'retry_backoff_seconds': 0},
        'engine': {'unit_timeout_seconds': 5, 'max_concurrent_events': 4},
        'instances': {INSTANCE_ID: {'owner_jid': OWNER_JID}},
    }


@pytest.fixture
def locale():
    return LocaleSettings()


@pytest.fixture
def make_context(locale):
    """ParseContext factory; sent_at is local wall time in Mexico City"""

    def factory(sent_at: Optional[datetime] = None, **kwargs) -> ParseContext:
        sent_at = sent_at or datetime(2024, 3, 4, 10, 0)
        if sent_at.tzinfo is None:
            sent_at = sent_at.replace(tzinfo=MEXICO_CITY)
        return ParseContext(sent_at=sent_at, locale=kwargs.pop('locale', locale), **kwargs)

    return factory


@pytest.fixture
def pipeline(test_config):
    return build_default_pipeline(test_config)


@pytest.fixture
def make_rule():
    """AutomationRule factory going through load-time validation"""

    def factory(**overrides):
        definition = {
            'id': 'rule-1',
            'name': 'Test rule',
            'trigger': {'type': 'reaction', 'emojis': ['💰']},
            'action': {'kind': 'create_bill_payable'},
        }
        definition.update(overrides)
        return parse_rule_definition(definition)

    return factory


@pytest.fixture
def make_event(clock):
    """TriggerEvent factory; defaults to an owner reaction on the current clock time"""
    counter = {'n': 0}

    def factory(**overrides) -> TriggerEvent:
        counter['n'] += 1
        fields = {
            'type': TriggerType.REACTION,
            'instance_id': INSTANCE_ID,
            'chat_id': '5215599999999@s.whatsapp.net',
            'message_id': f"MSG{counter['n']:04d}",
            'sender_jid': OTHER_JID,
            'timestamp': clock(),
            'reactor_jid': OWNER_JID,
            'emoji': '💰',
            'content': 'Pago 5,000 a Carlos',
        }
        fields.update(overrides)
        return TriggerEvent(**fields)

    return factory


@pytest.fixture
async def db_service():
    """In-memory database with all tables"""
    service = DatabaseService("sqlite+aiosqlite:///:memory:")
    await service.create_tables()
    yield service
    await service.close()


@pytest.fixture
async def file_db_service(tmp_path):
    """File-backed database, for tests that run sessions concurrently"""
    service = DatabaseService(f"sqlite+aiosqlite:///{tmp_path / 'automations.db'}")
    await service.create_tables()
    yield service
    await service.close()


@pytest.fixture
def rule_store(db_service):
    return RuleStore(db_service)


@pytest.fixture
def ledger(db_service):
    return ExecutionLedger(db_service)


@pytest.fixture
def storage(db_service):
    return SqlEntityStorage(db_service)


def pytest_configure(config):
    """Configure pytest"""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
