"""
Core data models for the WhatsApp automation engine - SQLAlchemy Integration
Domain dataclasses for rules, trigger events and entity drafts, plus the
persistence models for rules, the execution ledger and created records
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
import uuid

from sqlalchemy import (
    Boolean, CheckConstraint, Column, Date, DateTime, Float, ForeignKey, Index,
    Integer, JSON, String, Text, text
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator


Base = declarative_base()


class TriggerType(Enum):
    """Kinds of WhatsApp activity a rule can listen to"""
    REACTION = "reaction"
    KEYWORD = "keyword"
    MESSAGE = "message"


class ActionKind(Enum):
    """Business record a rule creates"""
    CREATE_TASK = "create_task"
    CREATE_BILL_PAYABLE = "create_bill_payable"
    CREATE_CALENDAR_EVENT = "create_calendar_event"


class PerformerFilterMode(Enum):
    ANY = "any"
    INSTANCE_OWNER_ONLY = "instance_owner_only"
    EXPLICIT_LIST = "explicit_list"


class InstanceFilterMode(Enum):
    ALL = "all"
    SUBSET = "subset"


class FilterOutcome(Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RejectionReason(Enum):
    """Why a candidate rule did not fire"""
    PERFORMER_MISMATCH = "performer_mismatch"
    INSTANCE_EXCLUDED = "instance_excluded"
    COOLDOWN_ACTIVE = "cooldown_active"
    QUOTA_EXCEEDED = "quota_exceeded"
    TRIGGER_MISMATCH = "trigger_mismatch"


class ExecutionStatus(Enum):
    """Ledger status of a (rule, message) execution attempt"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class TaskPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EntityType(Enum):
    TASK = "task"
    BILL = "bill"
    CALENDAR_EVENT = "calendar_event"


class LinkType(Enum):
    TRIGGER = "trigger"
    CONTEXT = "context"
    REPLY = "reply"


# Event types whose content a rule trigger type may inspect
EVENT_TRIGGER_TYPES = {
    TriggerType.REACTION: {TriggerType.REACTION},
    TriggerType.MESSAGE: {TriggerType.MESSAGE, TriggerType.KEYWORD},
    TriggerType.KEYWORD: {TriggerType.KEYWORD},
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC for storage"""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def from_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to a datetime read back from storage"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# Custom SQLAlchemy types
class DecimalType(TypeDecorator):
    """Exact fixed-point storage for money amounts (SQLite has no DECIMAL)"""
    impl = String(32)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(Decimal(value).quantize(Decimal("0.01")))
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            return Decimal(value)
        return value


# Trigger conditions - closed variant, one per trigger type
@dataclass(frozen=True)
class ReactionCondition:
    emojis: Tuple[str, ...] = ()
    trigger_type: TriggerType = field(default=TriggerType.REACTION, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.trigger_type.value, 'emojis': list(self.emojis)}


@dataclass(frozen=True)
class KeywordCondition:
    keyword: str = ""
    trigger_type: TriggerType = field(default=TriggerType.KEYWORD, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.trigger_type.value, 'keyword': self.keyword}


@dataclass(frozen=True)
class MessageCondition:
    trigger_type: TriggerType = field(default=TriggerType.MESSAGE, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.trigger_type.value}


TriggerCondition = Union[ReactionCondition, KeywordCondition, MessageCondition]


def trigger_condition_from_dict(data: Dict[str, Any]) -> TriggerCondition:
    """Rebuild a stored trigger condition (already validated at load time)"""
    trigger_type = TriggerType(data.get('type'))
    if trigger_type == TriggerType.REACTION:
        return ReactionCondition(emojis=tuple(data.get('emojis') or ()))
    if trigger_type == TriggerType.KEYWORD:
        return KeywordCondition(keyword=data.get('keyword', ''))
    return MessageCondition()


@dataclass(frozen=True)
class ActionTemplate:
    """Title/description templates and defaults applied to extracted drafts"""
    title_template: Optional[str] = None
    description_template: Optional[str] = None
    default_priority: Optional[TaskPriority] = None
    default_category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title_template': self.title_template,
            'description_template': self.description_template,
            'default_priority': self.default_priority.value if self.default_priority else None,
            'default_category': self.default_category,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ActionTemplate':
        data = data or {}
        priority = data.get('default_priority')
        return cls(
            title_template=data.get('title_template'),
            description_template=data.get('description_template'),
            default_priority=TaskPriority(priority) if priority else None,
            default_category=data.get('default_category'),
        )


@dataclass(frozen=True)
class PerformerFilter:
    mode: PerformerFilterMode = PerformerFilterMode.ANY
    jids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {'mode': self.mode.value, 'jids': list(self.jids)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'PerformerFilter':
        data = data or {}
        return cls(
            mode=PerformerFilterMode(data.get('mode', 'any')),
            jids=tuple(data.get('jids') or ()),
        )


@dataclass(frozen=True)
class InstanceFilter:
    mode: InstanceFilterMode = InstanceFilterMode.ALL
    instance_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {'mode': self.mode.value, 'instance_ids': list(self.instance_ids)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'InstanceFilter':
        data = data or {}
        return cls(
            mode=InstanceFilterMode(data.get('mode', 'all')),
            instance_ids=tuple(data.get('instance_ids') or ()),
        )


# SQLAlchemy Models
class AutomationRuleDB(Base):
    """SQLAlchemy model for AutomationRule"""
    __tablename__ = 'automation_rules'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False, default="")
    description = Column(Text, default="")
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Trigger
    trigger_type = Column(String(20), nullable=False, index=True)
    trigger_condition = Column(JSON, nullable=False, default=dict)

    # Action
    action_kind = Column(String(40), nullable=False)
    action_template = Column(JSON, nullable=False, default=dict)

    # Filters
    performer_filter = Column(JSON, nullable=False, default=dict)
    instance_filter = Column(JSON, nullable=False, default=dict)
    cooldown_minutes = Column(Integer, nullable=False, default=0)
    max_executions_per_day = Column(Integer, nullable=False, default=0)

    # Statistics, only mutated through atomic UPDATE statements
    execution_count = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    last_executed_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_domain_model(self) -> 'AutomationRule':
        """Convert SQLAlchemy model to domain model"""
        return AutomationRule(
            id=self.id,
            name=self.name,
            description=self.description or "",
            trigger_type=TriggerType(self.trigger_type),
            trigger_condition=trigger_condition_from_dict(self.trigger_condition or {'type': self.trigger_type}),
            action_kind=ActionKind(self.action_kind),
            action_template=ActionTemplate.from_dict(self.action_template),
            performer_filter=PerformerFilter.from_dict(self.performer_filter),
            instance_filter=InstanceFilter.from_dict(self.instance_filter),
            cooldown_minutes=self.cooldown_minutes or 0,
            max_executions_per_day=self.max_executions_per_day or 0,
            execution_count=self.execution_count or 0,
            success_count=self.success_count or 0,
            failure_count=self.failure_count or 0,
            last_executed_at=from_utc_naive(self.last_executed_at),
            is_active=bool(self.is_active),
            created_at=from_utc_naive(self.created_at),
        )


class ExecutionRecordDB(Base):
    """Execution ledger entry, one per (rule, triggering message) attempt"""
    __tablename__ = 'rule_executions'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    rule_id = Column(String(36), ForeignKey('automation_rules.id', ondelete='CASCADE'), nullable=False)
    message_id = Column(String(128), nullable=False)
    actor_jid = Column(String(128), nullable=False, default="")
    instance_id = Column(String(100), nullable=True)
    chat_id = Column(String(128), nullable=True)
    status = Column(String(20), nullable=False, default=ExecutionStatus.PENDING.value)
    entities = Column(JSON, default=list)
    annotations = Column(JSON, default=dict)
    error = Column(Text, nullable=True)
    executed_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # At most one non-skipped record per (rule, message)
        Index(
            'uq_rule_executions_rule_message', 'rule_id', 'message_id',
            unique=True,
            sqlite_where=text("status != 'skipped'"),
            postgresql_where=text("status != 'skipped'"),
        ),
        Index('idx_rule_executions_quota', 'rule_id', 'executed_at'),
    )

    def to_domain_model(self) -> 'ExecutionRecord':
        return ExecutionRecord(
            id=self.id,
            rule_id=self.rule_id,
            message_id=self.message_id,
            actor_jid=self.actor_jid or "",
            instance_id=self.instance_id,
            chat_id=self.chat_id,
            status=ExecutionStatus(self.status),
            entities=list(self.entities or []),
            annotations=dict(self.annotations or {}),
            error=self.error,
            executed_at=from_utc_naive(self.executed_at),
            completed_at=from_utc_naive(self.completed_at),
        )


class TaskRecordDB(Base):
    """Task created from a WhatsApp message"""
    __tablename__ = 'tasks'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    instance_id = Column(String(100), nullable=True, index=True)
    chat_id = Column(String(128), nullable=True)
    parent_task_id = Column(String(36), ForeignKey('tasks.id', ondelete='CASCADE'), nullable=True, index=True)
    title = Column(String(300), nullable=False)
    description = Column(Text, default="")
    priority = Column(String(10), nullable=False, default=TaskPriority.MEDIUM.value)
    status = Column(String(20), nullable=False, default="to_do")
    due_date = Column(Date, nullable=True)
    tags = Column(JSON, default=list)
    triggering_message_id = Column(String(128), nullable=True, index=True)
    created_by_rule_id = Column(String(36), nullable=True)
    confidence = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class BillPayableDB(Base):
    """Payable bill created from a WhatsApp message"""
    __tablename__ = 'bills_payable'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    instance_id = Column(String(100), nullable=True, index=True)
    vendor = Column(String(200), nullable=False)
    amount = Column(DecimalType, nullable=True)
    currency = Column(String(3), nullable=False)
    category = Column(String(50), nullable=True)
    description = Column(Text, default="")
    due_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="unpaid")
    triggering_message_id = Column(String(128), nullable=True, index=True)
    created_by_rule_id = Column(String(36), nullable=True)
    confidence = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class CalendarEventDB(Base):
    """Calendar event created from a WhatsApp message"""
    __tablename__ = 'calendar_events'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    instance_id = Column(String(100), nullable=True, index=True)
    title = Column(String(300), nullable=False)
    description = Column(Text, default="")
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    location = Column(String(300), nullable=True)
    is_virtual = Column(Boolean, nullable=False, default=False)
    meeting_link = Column(String(500), nullable=True)
    attendees = Column(JSON, default=list)
    category = Column(String(50), nullable=True)
    triggering_message_id = Column(String(128), nullable=True, index=True)
    created_by_rule_id = Column(String(36), nullable=True)
    confidence = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class MessageEntityLinkDB(Base):
    """Link between a WhatsApp message and a created business record"""
    __tablename__ = 'message_entity_links'

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(String(36), ForeignKey('tasks.id', ondelete='CASCADE'), nullable=True, index=True)
    bill_id = Column(String(36), ForeignKey('bills_payable.id', ondelete='CASCADE'), nullable=True, index=True)
    event_id = Column(String(36), ForeignKey('calendar_events.id', ondelete='CASCADE'), nullable=True, index=True)
    message_id = Column(String(128), nullable=False, index=True)
    instance_id = Column(String(100), nullable=False)
    link_type = Column(String(20), nullable=False, default=LinkType.TRIGGER.value)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN task_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN bill_id IS NULL THEN 0 ELSE 1 END"
            " + CASE WHEN event_id IS NULL THEN 0 ELSE 1 END) = 1",
            name='ck_message_entity_links_one_parent'
        ),
    )

    @property
    def entity_type(self) -> EntityType:
        if self.task_id:
            return EntityType.TASK
        if self.bill_id:
            return EntityType.BILL
        return EntityType.CALENDAR_EVENT

    @property
    def entity_id(self) -> str:
        return self.task_id or self.bill_id or self.event_id

    def to_domain_model(self) -> 'MessageEntityLink':
        return MessageEntityLink(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            message_id=self.message_id,
            instance_id=self.instance_id,
            link_type=LinkType(self.link_type),
            created_at=from_utc_naive(self.created_at),
        )


# Domain models
@dataclass
class AutomationRule:
    """User-configured binding of a trigger condition to an action kind"""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    description: str = ""

    trigger_type: TriggerType = TriggerType.REACTION
    trigger_condition: TriggerCondition = field(default_factory=ReactionCondition)

    action_kind: ActionKind = ActionKind.CREATE_TASK
    action_template: ActionTemplate = field(default_factory=ActionTemplate)

    performer_filter: PerformerFilter = field(default_factory=PerformerFilter)
    instance_filter: InstanceFilter = field(default_factory=InstanceFilter)
    cooldown_minutes: int = 0
    max_executions_per_day: int = 0

    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_executed_at: Optional[datetime] = None

    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)

    def to_db_model(self) -> AutomationRuleDB:
        """Convert to SQLAlchemy model"""
        return AutomationRuleDB(
            id=self.id,
            name=self.name,
            description=self.description,
            is_active=self.is_active,
            trigger_type=self.trigger_type.value,
            trigger_condition=self.trigger_condition.to_dict(),
            action_kind=self.action_kind.value,
            action_template=self.action_template.to_dict(),
            performer_filter=self.performer_filter.to_dict(),
            instance_filter=self.instance_filter.to_dict(),
            cooldown_minutes=self.cooldown_minutes,
            max_executions_per_day=self.max_executions_per_day,
            execution_count=self.execution_count,
            success_count=self.success_count,
            failure_count=self.failure_count,
            last_executed_at=to_utc_naive(self.last_executed_at),
            created_at=to_utc_naive(self.created_at),
        )


@dataclass
class TriggerEvent:
    """Normalized representation of an incoming message or reaction"""

    type: TriggerType
    instance_id: str
    chat_id: str
    message_id: str
    sender_jid: str
    timestamp: datetime
    reactor_jid: Optional[str] = None
    emoji: Optional[str] = None
    keyword_text: Optional[str] = None
    content: str = ""

    @property
    def acting_jid(self) -> str:
        """JID that caused the event: the reactor for reactions, the sender otherwise"""
        if self.type == TriggerType.REACTION and self.reactor_jid:
            return self.reactor_jid
        return self.sender_jid

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'instance_id': self.instance_id,
            'chat_id': self.chat_id,
            'message_id': self.message_id,
            'sender_jid': self.sender_jid,
            'reactor_jid': self.reactor_jid,
            'emoji': self.emoji,
            'keyword_text': self.keyword_text,
            'content': self.content,
            'timestamp': self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TriggerEvent':
        """Build an event from an already-normalized dictionary"""
        timestamp = data.get('timestamp')
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp.replace('Z', '+00:00'))
        elif isinstance(timestamp, (int, float)):
            try:
                timestamp = datetime.fromtimestamp(timestamp, tz=timezone.utc)
            except (OverflowError, OSError) as e:
                raise ValueError(f"Invalid event timestamp {timestamp}: {e}") from e
        elif timestamp is None:
            timestamp = utc_now()
        elif not isinstance(timestamp, datetime):
            raise TypeError(f"Unsupported event timestamp type: {type(timestamp).__name__}")
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return cls(
            type=TriggerType(data['type']),
            instance_id=data['instance_id'],
            chat_id=data.get('chat_id', ''),
            message_id=data['message_id'],
            sender_jid=data.get('sender_jid', ''),
            timestamp=timestamp,
            reactor_jid=data.get('reactor_jid'),
            emoji=data.get('emoji'),
            keyword_text=data.get('keyword_text'),
            content=data.get('content') or "",
        )


@dataclass(frozen=True)
class FilterDecision:
    """Outcome of evaluating one candidate rule against one event"""
    rule_id: str
    outcome: FilterOutcome
    reason: Optional[RejectionReason] = None

    @property
    def accepted(self) -> bool:
        return self.outcome == FilterOutcome.ACCEPTED

    @classmethod
    def accept(cls, rule_id: str) -> 'FilterDecision':
        return cls(rule_id=rule_id, outcome=FilterOutcome.ACCEPTED)

    @classmethod
    def reject(cls, rule_id: str, reason: RejectionReason) -> 'FilterDecision':
        return cls(rule_id=rule_id, outcome=FilterOutcome.REJECTED, reason=reason)


@dataclass
class BillDraft:
    vendor: str
    amount: Optional[Decimal]
    currency: str
    category: Optional[str] = None
    description: str = ""
    due_date: Optional[date] = None
    confidence: float = 0.0
    source_span: str = ""
    low_confidence: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    entity_type = EntityType.BILL


@dataclass
class TaskDraft:
    title: str
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[date] = None
    parent_ref: Optional[int] = None
    parent_task_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    description: str = ""
    confidence: float = 0.0
    source_span: str = ""
    low_confidence: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    entity_type = EntityType.TASK


@dataclass
class CalendarEventDraft:
    title: str
    start_time: datetime
    end_time: datetime
    location: Optional[str] = None
    is_virtual: bool = False
    attendees: List[str] = field(default_factory=list)
    description: str = ""
    confidence: float = 0.0
    source_span: str = ""
    low_confidence: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    entity_type = EntityType.CALENDAR_EVENT


EntityDraft = Union[BillDraft, TaskDraft, CalendarEventDraft]


@dataclass
class ExecutionRecord:
    """Durable record of one (rule, triggering message) execution attempt"""

    rule_id: str
    message_id: str
    actor_jid: str = ""
    status: ExecutionStatus = ExecutionStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    instance_id: Optional[str] = None
    chat_id: Optional[str] = None
    entities: List[Dict[str, str]] = field(default_factory=list)
    annotations: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    executed_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    @property
    def is_skipped(self) -> bool:
        return self.status == ExecutionStatus.SKIPPED

    def to_db_model(self) -> ExecutionRecordDB:
        return ExecutionRecordDB(
            id=self.id,
            rule_id=self.rule_id,
            message_id=self.message_id,
            actor_jid=self.actor_jid,
            instance_id=self.instance_id,
            chat_id=self.chat_id,
            status=self.status.value,
            entities=list(self.entities),
            annotations=dict(self.annotations),
            error=self.error,
            executed_at=to_utc_naive(self.executed_at),
            completed_at=to_utc_naive(self.completed_at),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'rule_id': self.rule_id,
            'message_id': self.message_id,
            'actor_jid': self.actor_jid,
            'instance_id': self.instance_id,
            'chat_id': self.chat_id,
            'status': self.status.value,
            'entities': list(self.entities),
            'annotations': dict(self.annotations),
            'error': self.error,
            'executed_at': self.executed_at.isoformat() if self.executed_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class MessageEntityLink:
    entity_type: EntityType
    entity_id: str
    message_id: str
    instance_id: str
    link_type: LinkType = LinkType.TRIGGER
    created_at: Optional[datetime] = None
