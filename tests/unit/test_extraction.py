"""
Unit tests for the extraction pipeline and template application
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from src.core.extraction import (
    ExtractionPipeline, LocaleSettings, ParseContext, ParserStrategy, interpolate_template
)
from src.core.models import ActionKind, TaskDraft, TaskPriority, TriggerType


class EchoTaskParser(ParserStrategy):
    """Parser stub returning the raw content as a task title"""

    action_kind = ActionKind.CREATE_TASK

    def __init__(self, label: str):
        super().__init__()
        self.label = label

    def parse(self, content, context):
        return [TaskDraft(title=f"{self.label}:{content}", confidence=0.3,
                          metadata={'priority_source': 'default'})]


class TestExtractionPipeline:
    """Strategy dispatch and confidence handling"""

    def test_missing_strategy_raises_lookup_error(self):
        pipeline = ExtractionPipeline()
        with pytest.raises(LookupError):
            pipeline.get_strategy(ActionKind.CREATE_TASK)

    def test_language_specific_strategy_wins_over_fallback(self, make_context):
        pipeline = ExtractionPipeline()
        pipeline.register(EchoTaskParser("any"))
        pipeline.register(EchoTaskParser("es"), language="es")

        drafts = pipeline.parse(ActionKind.CREATE_TASK, "hola", make_context())
        assert drafts[0].title == "es:hola"

    def test_low_confidence_flag(self, make_context):
        pipeline = ExtractionPipeline(confidence_threshold=0.6)
        pipeline.register(EchoTaskParser("any"))

        draft = pipeline.parse(ActionKind.CREATE_TASK, "x", make_context())[0]
        assert draft.low_confidence is True

    @pytest.mark.parametrize("timestamp", [
        datetime(2024, 3, 4, 16, 0),
        datetime(2024, 3, 4, 16, 0, tzinfo=timezone.utc),
    ])
    def test_event_context_reads_naive_timestamps_as_utc(self, make_event, timestamp):
        context = ParseContext.for_event(make_event(timestamp=timestamp), LocaleSettings())

        assert context.sent_at == datetime(2024, 3, 4, 10, 0, tzinfo=ZoneInfo("America/Mexico_City"))
        assert context.sent_at.utcoffset() is not None


class TestTemplates:
    """Rule action templates applied to drafts"""

    def test_interpolate_leaves_unknown_placeholders(self):
        assert interpolate_template("{{title}} - {{nope}}", {'title': 'A'}) == "A - {{nope}}"

    def test_task_title_and_description_templates(self, pipeline, make_rule, make_event):
        rule = make_rule(
            trigger={'type': 'keyword', 'keyword': 'tarea'},
            action={'kind': 'create_task', 'template': {
                'title_template': 'WA: {{title}}',
                'description_template': '{{content}} ({{sender}})',
                'default_priority': 'high',
            }},
        )
        event = make_event(type=TriggerType.MESSAGE, emoji=None, reactor_jid=None,
                           content="tarea: comprar pan")

        draft = pipeline.extract(rule, event)[0]
        assert draft.title.startswith("WA: ")
        assert draft.description == f"tarea: comprar pan ({event.sender_jid})"
        assert draft.priority == TaskPriority.HIGH
        assert draft.metadata['priority_source'] == 'template'

    def test_keyword_priority_is_not_overridden(self, pipeline, make_rule, make_event):
        rule = make_rule(action={'kind': 'create_task', 'template': {'default_priority': 'low'}})
        event = make_event(content="Enviar reporte urgente")

        draft = pipeline.extract(rule, event)[0]
        assert draft.priority == TaskPriority.HIGH

    def test_bill_default_category(self, pipeline, make_rule, make_event):
        rule = make_rule(action={'kind': 'create_bill_payable', 'template': {'default_category': 'proveedores'}})
        event = make_event(content="Pago 5,000 a Carlos")

        draft = pipeline.extract(rule, event)[0]
        assert draft.category == "proveedores"
        assert draft.vendor == "Carlos"
