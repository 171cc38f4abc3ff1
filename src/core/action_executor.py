"""
Action Executor - persists extracted drafts exactly once per (rule, message)
Claim in the ledger, create records and trigger links, finalize, bump counters
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from src.core.exceptions import ParseAmbiguous, ParseFailed, PersistenceFailure
from src.core.execution_ledger import ExecutionLedger
from src.core.models import (
    AutomationRule, BillDraft, CalendarEventDraft, EntityDraft, ExecutionRecord,
    ExecutionStatus, LinkType, TaskDraft, TriggerEvent, utc_now
)
from src.core.rule_store import RuleStore
from src.core.storage import SqlEntityStorage


NO_ENTITY_EXTRACTED = "no_entity_extracted"


class ActionExecutor:
    """Executes one accepted (event, rule) unit against the storage collaborator"""

    def __init__(self, storage: SqlEntityStorage, ledger: ExecutionLedger, rule_store: RuleStore,
                 max_retries: int = 2, retry_backoff_seconds: float = 0.5,
                 clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self.ledger = ledger
        self.rule_store = rule_store
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.clock = clock or utc_now
        self.logger = logging.getLogger(__name__)

    async def execute(self, rule: AutomationRule, event: TriggerEvent,
                      drafts: List[EntityDraft]) -> ExecutionRecord:
        """Run the unit; returns the existing record when (rule, message) already ran"""
        existing = await self.ledger.find_active(rule.id, event.message_id)
        if existing is not None:
            self.logger.info(
                f"Rule {rule.id} already executed for message {event.message_id}",
                extra={'rule_id': rule.id, 'message_id': event.message_id, 'status': existing.status.value}
            )
            return existing

        record, claimed = await self.ledger.claim(rule.id, event, executed_at=self.clock())
        if not claimed:
            return record

        if not drafts:
            failure = ParseFailed(NO_ENTITY_EXTRACTED)
            self.logger.warning(
                f"No entity extracted for rule {rule.id}",
                extra={'rule_id': rule.id, 'message_id': event.message_id, 'error_code': failure.error_code}
            )
            return await self._finish(rule, record, ExecutionStatus.FAILURE, [], {}, failure.detail)

        entities: List[Dict[str, str]] = []
        annotations: Dict[str, Any] = {}
        errors: List[str] = []
        created_ids: Dict[int, str] = {}

        low_confidence = [index for index, draft in enumerate(drafts) if draft.low_confidence]
        if low_confidence:
            ambiguous = ParseAmbiguous(
                f"{len(low_confidence)} of {len(drafts)} drafts below the confidence threshold",
                confidence=min(drafts[index].confidence for index in low_confidence)
            )
            self.logger.info(
                ambiguous.detail,
                extra={'rule_id': rule.id, 'message_id': event.message_id,
                       'error_code': ambiguous.error_code, 'confidence': ambiguous.confidence}
            )
            annotations['low_confidence'] = True
            annotations['low_confidence_drafts'] = low_confidence

        for index, draft in enumerate(drafts):
            if isinstance(draft, TaskDraft) and draft.parent_ref is not None:
                parent_id = created_ids.get(draft.parent_ref)
                if parent_id is None:
                    self.logger.warning(f"Parent draft {draft.parent_ref} was not created, keeping sub-task top level")
                draft.parent_task_id = parent_id

            try:
                entity_id, meeting_link = await self._with_retries(
                    lambda: self._create(rule, event, draft), f"create {draft.entity_type.value}"
                )
            except PersistenceFailure as e:
                errors.append(f"draft {index}: {e.detail}")
                continue

            # the entity exists from here on, even if linking fails
            created_ids[index] = entity_id
            entity = {'entity_type': draft.entity_type.value, 'entity_id': entity_id}
            entities.append(entity)
            if meeting_link:
                annotations.setdefault('meeting_links', []).append(meeting_link)

            try:
                await self._with_retries(
                    lambda: self.storage.create_message_entity_link(
                        draft.entity_type, entity_id, event.message_id, event.instance_id, LinkType.TRIGGER
                    ),
                    "create message link"
                )
            except PersistenceFailure as e:
                errors.append(f"draft {index}: link for {draft.entity_type.value} {entity_id}: {e.detail}")
                annotations.setdefault('unlinked_entities', []).append(entity)

        if errors:
            return await self._finish(rule, record, ExecutionStatus.FAILURE, entities, annotations, "; ".join(errors))
        return await self._finish(rule, record, ExecutionStatus.SUCCESS, entities, annotations, None)

    async def abandon(self, rule: AutomationRule, event: TriggerEvent, reason: str) -> Optional[ExecutionRecord]:
        """Mark a still-pending claim as failed (timed out or crashed unit)"""
        record = await self.ledger.find_active(rule.id, event.message_id)
        if record is None or record.status != ExecutionStatus.PENDING:
            return record
        return await self._finish(rule, record, ExecutionStatus.FAILURE, record.entities, record.annotations, reason)

    async def _create(self, rule: AutomationRule, event: TriggerEvent, draft: EntityDraft):
        kwargs = {'instance_id': event.instance_id, 'message_id': event.message_id, 'rule_id': rule.id}
        if isinstance(draft, TaskDraft):
            return await self.storage.create_task(draft, chat_id=event.chat_id, **kwargs), None
        if isinstance(draft, BillDraft):
            return await self.storage.create_bill_payable(draft, **kwargs), None
        if isinstance(draft, CalendarEventDraft):
            return await self.storage.create_calendar_event(draft, **kwargs)
        raise TypeError(f"Unsupported draft type: {type(draft).__name__}")

    async def _with_retries(self, operation, description: str):
        attempt = 0
        while True:
            try:
                return await operation()
            except PersistenceFailure as e:
                if attempt >= self.max_retries:
                    self.logger.error(f"{description} failed after {attempt + 1} attempts: {e.detail}")
                    raise
                delay = self.retry_backoff_seconds * 2 ** attempt
                self.logger.warning(f"{description} failed, retrying in {delay}s: {e.detail}")
                await asyncio.sleep(delay)
                attempt += 1

    async def _finish(self, rule: AutomationRule, record: ExecutionRecord, status: ExecutionStatus,
                      entities: List[Dict[str, str]], annotations: Dict[str, Any],
                      error: Optional[str]) -> ExecutionRecord:
        now = self.clock()
        record = await self.ledger.complete(
            record, status, entities=entities, annotations=annotations, error=error, completed_at=now
        )
        await self.rule_store.update_rule_counters(rule.id, status, executed_at=now)

        log = self.logger.info if status == ExecutionStatus.SUCCESS else self.logger.warning
        log(
            f"Rule {rule.id} {status.value}: {len(entities)} entities",
            extra={
                'rule_id': rule.id,
                'message_id': record.message_id,
                'status': status.value,
                'entity_count': len(entities),
                'error': error,
            }
        )
        return record
