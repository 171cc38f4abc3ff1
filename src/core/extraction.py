"""
Extraction Pipeline - turns message content into typed entity drafts
Parser strategies are pluggable per (language, action kind)
"""

import logging
import re
import zoneinfo
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from src.core.models import (
    ActionKind, AutomationRule, BillDraft, CalendarEventDraft, EntityDraft,
    TaskDraft, TriggerEvent
)


ANY_LANGUAGE = "*"

_PLACEHOLDER = re.compile(r'\{\{\s*(\w+)\s*\}\}')


@dataclass(frozen=True)
class LocaleSettings:
    language: str = "es"
    timezone: str = "America/Mexico_City"
    thousands_separator: str = ","
    decimal_separator: str = "."
    default_currency: str = "MXN"
    day_first: bool = True

    @property
    def tzinfo(self) -> zoneinfo.ZoneInfo:
        return zoneinfo.ZoneInfo(self.timezone)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'LocaleSettings':
        locale = config.get('locale', {})
        return cls(
            language=locale.get('language', 'es'),
            timezone=locale.get('timezone', 'America/Mexico_City'),
            thousands_separator=locale.get('thousands_separator', ','),
            decimal_separator=locale.get('decimal_separator', '.'),
            default_currency=locale.get('default_currency', 'MXN'),
            day_first=locale.get('day_first', True),
        )


@dataclass
class ParseContext:
    """Everything a parser may use besides the content itself"""
    sent_at: datetime
    locale: LocaleSettings = field(default_factory=LocaleSettings)
    sender_jid: str = ""
    instance_id: str = ""
    chat_id: str = ""

    @classmethod
    def for_event(cls, event: TriggerEvent, locale: LocaleSettings) -> 'ParseContext':
        timestamp = event.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            sent_at=timestamp.astimezone(locale.tzinfo),
            locale=locale,
            sender_jid=event.sender_jid,
            instance_id=event.instance_id,
            chat_id=event.chat_id,
        )


class ParserStrategy(ABC):
    """Base class for entity parsers"""

    action_kind: ActionKind

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__module__)

    @abstractmethod
    def parse(self, content: str, context: ParseContext) -> List[EntityDraft]:
        """Extract zero or more drafts from message content"""
        pass


def interpolate_template(template: str, values: Dict[str, str]) -> str:
    """Replace {{name}} placeholders; unknown placeholders are left untouched"""
    def replace(match):
        key = match.group(1)
        return values[key] if key in values else match.group(0)
    return _PLACEHOLDER.sub(replace, template)


class ExtractionPipeline:
    """Dispatches message content to the parser registered for the rule's action kind"""

    def __init__(self, locale: Optional[LocaleSettings] = None, confidence_threshold: float = 0.6):
        self.locale = locale or LocaleSettings()
        self.confidence_threshold = confidence_threshold
        self.logger = logging.getLogger(__name__)
        self._strategies: Dict[Tuple[str, ActionKind], ParserStrategy] = {}

    def register(self, strategy: ParserStrategy, language: str = ANY_LANGUAGE):
        self._strategies[(language, strategy.action_kind)] = strategy
        self.logger.debug(f"Registered {strategy.__class__.__name__} for ({language}, {strategy.action_kind.value})")

    def get_strategy(self, action_kind: ActionKind, language: Optional[str] = None) -> ParserStrategy:
        language = language or self.locale.language
        strategy = self._strategies.get((language, action_kind)) or self._strategies.get((ANY_LANGUAGE, action_kind))
        if strategy is None:
            raise LookupError(f"No parser registered for {action_kind.value} ({language})")
        return strategy

    def parse(self, action_kind: ActionKind, content: str, context: ParseContext) -> List[EntityDraft]:
        """Run the strategy and flag low-confidence drafts, without template application"""
        drafts = self.get_strategy(action_kind, context.locale.language).parse(content or "", context)
        for draft in drafts:
            draft.confidence = round(max(0.0, min(draft.confidence, 1.0)), 3)
            draft.low_confidence = draft.confidence < self.confidence_threshold
        return drafts

    def extract(self, rule: AutomationRule, event: TriggerEvent) -> List[EntityDraft]:
        context = ParseContext.for_event(event, self.locale)
        drafts = self.parse(rule.action_kind, event.content, context)

        for draft in drafts:
            self._apply_template(rule, event, draft)

        self.logger.info(
            f"Extracted {len(drafts)} {rule.action_kind.value} drafts for rule {rule.id}",
            extra={
                'rule_id': rule.id,
                'message_id': event.message_id,
                'draft_count': len(drafts),
                'low_confidence': sum(1 for draft in drafts if draft.low_confidence),
            }
        )
        return drafts

    def _template_values(self, event: TriggerEvent, draft: EntityDraft) -> Dict[str, str]:
        if isinstance(draft, BillDraft):
            title = draft.vendor
        else:
            title = draft.title
        hashtags = re.findall(r'#(\w+)', event.content or "")
        return {
            'content': event.content or "",
            'sender': event.sender_jid or "",
            'reaction': event.emoji or "",
            'chat_id': event.chat_id or "",
            'chatId': event.chat_id or "",
            'timestamp': event.timestamp.astimezone(self.locale.tzinfo).strftime('%Y-%m-%d %H:%M'),
            'hashtags': ' '.join(f"#{tag}" for tag in hashtags),
            'title': title,
        }

    def _apply_template(self, rule: AutomationRule, event: TriggerEvent, draft: EntityDraft):
        template = rule.action_template
        values = self._template_values(event, draft)

        if template.title_template and not isinstance(draft, BillDraft):
            draft.title = interpolate_template(template.title_template, values).strip() or draft.title
        if template.description_template:
            draft.description = interpolate_template(template.description_template, values)

        if isinstance(draft, TaskDraft):
            if template.default_priority and draft.metadata.get('priority_source') == 'default':
                draft.priority = template.default_priority
                draft.metadata['priority_source'] = 'template'
        elif isinstance(draft, BillDraft):
            if template.default_category and not draft.category:
                draft.category = template.default_category
        elif isinstance(draft, CalendarEventDraft):
            if template.default_category and not draft.metadata.get('category'):
                draft.metadata['category'] = template.default_category


def build_default_pipeline(config: Dict[str, Any]) -> ExtractionPipeline:
    """Pipeline with the built-in bill, task and calendar parsers"""
    from src.core.bill_parser import BillParser
    from src.core.calendar_parser import CalendarParser
    from src.core.task_parser import TaskParser

    extraction = config.get('extraction', {})
    pipeline = ExtractionPipeline(
        locale=LocaleSettings.from_config(config),
        confidence_threshold=extraction.get('confidence_threshold', 0.6),
    )
    pipeline.register(BillParser())
    pipeline.register(TaskParser())
    pipeline.register(CalendarParser(config.get('calendar', {})))
    return pipeline
