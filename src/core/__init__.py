"""
Automation Engine Core Module
Exports the core components for easy imports
"""

from .models import (
    AutomationRule,
    TriggerEvent,
    TriggerType,
    ActionKind,
    FilterDecision,
    FilterOutcome,
    RejectionReason,
    ExecutionRecord,
    ExecutionStatus,
    BillDraft,
    TaskDraft,
    CalendarEventDraft,
    TaskPriority,
    EntityType,
    LinkType,
    MessageEntityLink
)

from .exceptions import (
    AutomationError,
    RuleValidationError,
    ParseFailed,
    ParseAmbiguous,
    PersistenceFailure,
    DuplicateSuppressed,
    InstanceNotFoundError,
    UnitTimeoutError
)
from .database import DatabaseService
from .rule_store import RuleStore
from .execution_ledger import ExecutionLedger
from .trigger_matcher import TriggerMatcher
from .filter_evaluator import FilterEvaluator
from .extraction import ExtractionPipeline, LocaleSettings, ParseContext, ParserStrategy, build_default_pipeline
from .storage import SqlEntityStorage
from .action_executor import ActionExecutor
from .automation_engine import AutomationEngine, RuleOutcome

__all__ = [
    # Models
    'AutomationRule',
    'TriggerEvent',
    'TriggerType',
    'ActionKind',
    'FilterDecision',
    'FilterOutcome',
    'RejectionReason',
    'ExecutionRecord',
    'ExecutionStatus',
    'BillDraft',
    'TaskDraft',
    'CalendarEventDraft',
    'TaskPriority',
    'EntityType',
    'LinkType',
    'MessageEntityLink',

    # Errors
    'AutomationError',
    'RuleValidationError',
    'ParseFailed',
    'ParseAmbiguous',
    'PersistenceFailure',
    'DuplicateSuppressed',
    'InstanceNotFoundError',
    'UnitTimeoutError',

    # Components
    'DatabaseService',
    'RuleStore',
    'ExecutionLedger',
    'TriggerMatcher',
    'FilterEvaluator',
    'ExtractionPipeline',
    'LocaleSettings',
    'ParseContext',
    'ParserStrategy',
    'build_default_pipeline',
    'SqlEntityStorage',
    'ActionExecutor',
    'AutomationEngine',
    'RuleOutcome'
]
