"""
Automation Engine - orchestrates matcher, filters, extraction and execution
Each (event, rule) unit is isolated and time-boxed; events run concurrently
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from src.core.action_executor import ActionExecutor
from src.core.exceptions import AutomationError, UnitTimeoutError
from src.core.execution_ledger import ExecutionLedger
from src.core.extraction import ExtractionPipeline
from src.core.filter_evaluator import FilterEvaluator
from src.core.logging_manager import PerformanceTimer
from src.core.models import AutomationRule, ExecutionRecord, FilterDecision, TriggerEvent
from src.core.trigger_matcher import TriggerMatcher


@dataclass
class RuleOutcome:
    """What happened to one candidate rule for one event

    decision is None when the unit timed out or crashed before filtering finished.
    """
    rule_id: str
    decision: Optional[FilterDecision]
    record: Optional[ExecutionRecord] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rule_id': self.rule_id,
            'outcome': self.decision.outcome.value if self.decision else 'error',
            'reason': self.decision.reason.value if self.decision and self.decision.reason else None,
            'record': self.record.to_dict() if self.record else None,
            'error': self.error,
        }


class AutomationEngine:
    """Event-to-action pipeline: match, filter, extract, execute"""

    def __init__(self, matcher: TriggerMatcher, evaluator: FilterEvaluator,
                 pipeline: ExtractionPipeline, executor: ActionExecutor,
                 ledger: Optional[ExecutionLedger] = None,
                 unit_timeout_seconds: float = 30.0, max_concurrent_events: int = 10,
                 record_skipped: bool = False):
        self.matcher = matcher
        self.evaluator = evaluator
        self.pipeline = pipeline
        self.executor = executor
        self.ledger = ledger
        self.unit_timeout_seconds = unit_timeout_seconds
        self.max_concurrent_events = max_concurrent_events
        self.record_skipped = record_skipped
        self.logger = logging.getLogger(__name__)

    async def process_event(self, event: TriggerEvent) -> List[RuleOutcome]:
        """Run every candidate rule for one event, one unit at a time"""
        with PerformanceTimer(self.logger, "process_event", message_id=event.message_id):
            rules = await self.matcher.match_event(event)
            if not rules:
                self.logger.debug(f"No rules matched {event.type.value} event {event.message_id}")
                return []

            outcomes = []
            for rule in rules:
                outcomes.append(await self._run_unit(event, rule))
            return outcomes

    async def process_events(self, events: Iterable[TriggerEvent]) -> List[List[RuleOutcome]]:
        """Process events concurrently, bounded by max_concurrent_events"""
        semaphore = asyncio.Semaphore(self.max_concurrent_events)

        async def bounded(event: TriggerEvent) -> List[RuleOutcome]:
            async with semaphore:
                return await self.process_event(event)

        return list(await asyncio.gather(*(bounded(event) for event in events)))

    async def _run_unit(self, event: TriggerEvent, rule: AutomationRule) -> RuleOutcome:
        # decision is only reported once filtering finished
        reached: Dict[str, FilterDecision] = {}
        try:
            return await asyncio.wait_for(
                self._execute_unit(event, rule, reached), timeout=self.unit_timeout_seconds
            )
        except asyncio.TimeoutError:
            error = UnitTimeoutError(rule.id, event.message_id, self.unit_timeout_seconds)
            self.logger.error(error.detail, extra={'rule_id': rule.id, 'message_id': event.message_id})
            record = await self._abandon(rule, event, error.error_code.lower())
            return RuleOutcome(rule.id, reached.get('decision'), record=record, error=error.detail)
        except Exception as e:
            detail = e.detail if isinstance(e, AutomationError) else str(e)
            self.logger.error(
                f"Unit failed for rule {rule.id}: {detail}",
                extra={'rule_id': rule.id, 'message_id': event.message_id},
                exc_info=not isinstance(e, AutomationError)
            )
            record = await self._abandon(rule, event, detail)
            return RuleOutcome(rule.id, reached.get('decision'), record=record, error=detail)

    async def _execute_unit(self, event: TriggerEvent, rule: AutomationRule,
                            reached: Dict[str, FilterDecision]) -> RuleOutcome:
        decision = await self.evaluator.evaluate(event, rule)
        reached['decision'] = decision
        if not decision.accepted:
            if self.record_skipped and self.ledger is not None:
                await self.ledger.record_skipped(rule.id, event, decision.reason.value)
            return RuleOutcome(rule.id, decision)

        try:
            drafts = self.pipeline.extract(rule, event)
        except Exception as e:
            # recorded by the executor as a failed parse
            self.logger.error(
                f"Extraction failed for rule {rule.id}: {e}",
                extra={'rule_id': rule.id, 'message_id': event.message_id},
                exc_info=True
            )
            drafts = []
        record = await self.executor.execute(rule, event, drafts)
        return RuleOutcome(rule.id, decision, record=record, error=record.error)

    async def _abandon(self, rule: AutomationRule, event: TriggerEvent, reason: str) -> Optional[ExecutionRecord]:
        try:
            return await self.executor.abandon(rule, event, reason)
        except Exception as e:
            self.logger.error(f"Could not finalize unit for rule {rule.id}: {e}")
            return None
